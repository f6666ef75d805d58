"""Generation coordinator - owns the single in-flight run and its state.

State machine: idle -> starting -> loading -> success | error. error returns
to idle after a fixed timeout or an explicit reset; cancel returns any state
to idle. Starting a new run cancels the previous one first.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from backend.app.config import Settings, get_settings
from backend.app.db.repositories import TripRepository
from backend.app.generation.cancellation import CancelToken
from backend.app.generation.errors import (
    GenerationCancelledError,
    GenerationError,
    TripValidationError,
    user_message_for,
)
from backend.app.generation.pipeline import GenerationPipeline, ProgressCallback, validate_request
from backend.app.models.itinerary import Itinerary
from backend.app.models.request import GenerationRequest
from backend.app.models.state import GenerationState, GenerationStatus

logger = logging.getLogger(__name__)

StateListener = Callable[[GenerationState], None]
RunFactory = Callable[[ProgressCallback], Awaitable[Itinerary]]


def is_milestone(progress: int) -> bool:
    """Milestone progress values bypass the debounce buffer."""
    return progress % 25 == 0 or progress in (0, 100)


class GenerationCoordinator:
    """Caller-facing API for itinerary generation and updates.

    Must be driven from a running event loop; ``start_generation`` and
    ``start_update`` return immediately and callers observe progress through
    ``subscribe``.
    """

    def __init__(
        self,
        pipeline: GenerationPipeline,
        repository: TripRepository | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._pipeline = pipeline
        self._repository = repository
        self._max_days = settings.max_trip_days
        self._debounce_seconds = settings.progress_debounce_ms / 1000
        self._autoclear_seconds = settings.error_autoclear_seconds

        self._state = GenerationState()
        self._listeners: list[StateListener] = []
        self._run_id = 0
        self._token: CancelToken | None = None
        self._task: asyncio.Task[None] | None = None
        self._last_progress = 0
        self._pending_progress: tuple[int, str] | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._autoclear_handle: asyncio.TimerHandle | None = None

        self.result: Itinerary | None = None
        self.saved_id: str | None = None

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def task(self) -> asyncio.Task[None] | None:
        """Task running the current (or last) operation."""
        return self._task

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start_generation(self, request: GenerationRequest) -> None:
        """Start generating an itinerary, cancelling any run in flight."""
        run_id, token = self._begin_run()
        self._transition(
            GenerationState(
                status=GenerationStatus.starting,
                progress=0,
                step="Initializing itinerary creation",
            )
        )

        # Validation happens here so invalid requests never reach the network
        try:
            validate_request(request, self._max_days)
        except TripValidationError as e:
            logger.info(f"[coordinator] rejected request: {e}")
            self._fail(run_id, e)
            return

        logger.info(
            f"[coordinator] run {run_id}: generating itinerary for {request.destination} "
            f"({request.start_date} to {request.end_date})"
        )
        self._task = asyncio.get_running_loop().create_task(
            self._run(
                run_id,
                token,
                lambda on_progress: self._pipeline.run(request, token, on_progress),
            )
        )

    def start_update(self, itinerary: Itinerary, instruction: str) -> None:
        """Start re-synthesizing ``itinerary`` from a free-text change request."""
        run_id, token = self._begin_run()
        self._transition(
            GenerationState(
                status=GenerationStatus.starting,
                progress=0,
                step="Preparing your update",
            )
        )
        logger.info(f"[coordinator] run {run_id}: updating itinerary {itinerary.itinerary_id}")
        self._task = asyncio.get_running_loop().create_task(
            self._run(
                run_id,
                token,
                lambda on_progress: self._pipeline.run_update(
                    itinerary, instruction, token, on_progress
                ),
            )
        )

    def cancel(self) -> None:
        """Abort the in-flight run (if any) and return to idle silently."""
        self._abandon_run("cancelled by user")
        self._transition(GenerationState())

    def reset(self) -> None:
        """Clear an error (or any other state) back to idle."""
        self._abandon_run("reset")
        self._transition(GenerationState())

    def close(self) -> None:
        """Cancel in-flight work and pending timers."""
        self._abandon_run("coordinator closed")
        self._cancel_debounce()

    async def _run(self, run_id: int, token: CancelToken, start: RunFactory) -> None:
        def on_progress(progress: int, step: str) -> None:
            self._on_progress(run_id, progress, step)

        try:
            itinerary = await start(on_progress)
        except GenerationCancelledError:
            logger.info(f"[coordinator] run {run_id} cancelled")
            if self._is_current(run_id):
                self._transition(GenerationState())
            return
        except GenerationError as e:
            if token.cancelled or not self._is_current(run_id):
                return
            logger.warning(f"[coordinator] run {run_id} failed ({e.kind}): {e}")
            self._fail(run_id, e)
            return
        except Exception as e:
            if token.cancelled or not self._is_current(run_id):
                return
            logger.exception(f"[coordinator] run {run_id} failed unexpectedly")
            self._fail(run_id, e)
            return

        if token.cancelled or not self._is_current(run_id):
            return

        self.result = itinerary
        self._last_progress = 100
        self._transition(
            GenerationState(status=GenerationStatus.success, progress=100, step="Complete")
        )
        await self._persist(itinerary, token)

    async def _persist(self, itinerary: Itinerary, token: CancelToken) -> None:
        if self._repository is None or token.cancelled:
            return
        try:
            self.saved_id = await self._repository.save_itinerary(itinerary)
            logger.info(
                f'[coordinator] saved itinerary "{itinerary.title}" with id {self.saved_id}'
            )
        except Exception:
            # Save failures never change the reported outcome
            logger.exception(f"[coordinator] failed to save itinerary {itinerary.itinerary_id}")

    def _begin_run(self) -> tuple[int, CancelToken]:
        self._abandon_run("superseded by a new run")
        self._token = CancelToken()
        self._last_progress = 0
        return self._run_id, self._token

    def _abandon_run(self, reason: str) -> None:
        if self._token is not None and not self._token.cancelled:
            self._token.cancel(reason)
        self._run_id += 1
        self._cancel_autoclear()

    def _is_current(self, run_id: int) -> bool:
        return run_id == self._run_id

    def _on_progress(self, run_id: int, progress: int, step: str) -> None:
        if not self._is_current(run_id):
            return
        progress = max(0, min(100, int(progress)))
        # Progress never goes backwards within a run
        progress = max(progress, self._last_progress)
        self._last_progress = progress

        if is_milestone(progress):
            self._cancel_debounce()
            self._publish(self._loading_state(progress, step))
            return

        self._pending_progress = (progress, step)
        if self._debounce_handle is None:
            self._debounce_handle = asyncio.get_running_loop().call_later(
                self._debounce_seconds, self._flush_progress, run_id
            )

    def _flush_progress(self, run_id: int) -> None:
        self._debounce_handle = None
        pending, self._pending_progress = self._pending_progress, None
        if pending is None or not self._is_current(run_id):
            return
        self._publish(self._loading_state(*pending))

    def _loading_state(self, progress: int, step: str) -> GenerationState:
        return GenerationState(status=GenerationStatus.loading, progress=progress, step=step)

    def _fail(self, run_id: int, error: BaseException) -> None:
        message = user_message_for(error)
        kind = error.kind if isinstance(error, GenerationError) else "unknown"
        self._transition(
            GenerationState(
                status=GenerationStatus.error,
                progress=self._last_progress,
                step=message,
                error_message=message,
                error_kind=kind,
            )
        )
        self._autoclear_handle = asyncio.get_running_loop().call_later(
            self._autoclear_seconds, self._auto_clear, run_id
        )

    def _auto_clear(self, run_id: int) -> None:
        self._autoclear_handle = None
        if self._is_current(run_id) and self._state.status == GenerationStatus.error:
            logger.debug("[coordinator] clearing error state")
            self._transition(GenerationState())

    def _transition(self, state: GenerationState) -> None:
        self._cancel_debounce()
        self._publish(state)

    def _cancel_debounce(self) -> None:
        self._pending_progress = None
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _cancel_autoclear(self) -> None:
        if self._autoclear_handle is not None:
            self._autoclear_handle.cancel()
            self._autoclear_handle = None

    def _publish(self, state: GenerationState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("[coordinator] state listener failed")
