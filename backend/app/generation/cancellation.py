"""Cooperative cancellation token passed through every call boundary."""

import asyncio
from dataclasses import dataclass, field

from backend.app.generation.errors import GenerationCancelledError


@dataclass
class CancelToken:
    """Token for cancellation signaling.

    ``cancelled`` is checked at suspension points; ``wait()`` lets an
    in-flight request be abandoned as soon as ``cancel()`` is called.
    """

    cancelled: bool = False
    reason: str = "run cancelled"
    _event: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.cancelled:
            self._event.set()

    def cancel(self, reason: str | None = None) -> None:
        """Signal cancellation. Idempotent."""
        if reason:
            self.reason = reason
        self.cancelled = True
        self._event.set()

    def throw_if_cancelled(self) -> None:
        """Raise GenerationCancelledError if cancelled."""
        if self.cancelled:
            raise GenerationCancelledError(self.reason)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()
