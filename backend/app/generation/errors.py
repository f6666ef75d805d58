"""Error taxonomy for itinerary generation.

Executor-level errors bubble unmodified through the dispatcher and the
pipeline. Only the coordinator turns them into user-visible messages via
``user_message``.
"""


class GenerationError(Exception):
    """Base class for all generation failures."""

    kind = "unknown"
    user_message = "Something went wrong while creating your itinerary. Please try again."


class GenerationCancelledError(GenerationError):
    """Run was cancelled by the user or superseded by a newer run.

    Not a failure: callers must not show error UI for it.
    """

    kind = "cancelled"
    user_message = "Itinerary generation was cancelled."


class TransientServiceError(GenerationError):
    """Network, rate-limit or gateway failure that survived all retries."""

    kind = "transient"
    user_message = (
        "The itinerary service is temporarily unavailable. Please try again in a moment."
    )


class PermanentServiceError(GenerationError):
    """Auth, quota or malformed-request failure. Never retried."""

    kind = "permanent"
    user_message = "The itinerary service rejected the request. Please check your settings."

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ParseError(GenerationError):
    """Response could not be interpreted. Treated as permanent."""

    kind = "parse"
    user_message = "We received an unexpected response while planning your trip. Please retry."


class EmptyResultError(GenerationError):
    """Pipeline finished but produced no usable days."""

    kind = "empty_result"
    user_message = "No itinerary days were generated. Try adjusting your trip details."


class TripValidationError(GenerationError):
    """Request violates trip invariants. Raised before any network call."""

    kind = "validation"

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return str(self)


def user_message_for(error: BaseException) -> str:
    """Map any terminal error to a human-readable message."""
    if isinstance(error, GenerationError):
        return error.user_message
    return GenerationError.user_message
