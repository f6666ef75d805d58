"""Async request executor with classification-driven retries and cancellation.

Implements a single outbound call to the generative service with:
- Exponential backoff for transient failures (network, 408, 429, 502/503/504,
  or a timeout or capacity message on any status)
- Immediate surfacing of permanent failures (auth, quota, malformed request)
- Per-attempt timeout
- Cooperative cancellation, checked before each attempt and raced against
  the in-flight call
- JSON-first response parsing with an optional custom fallback parser
- Metrics and structured logging
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

import openai

from backend.app.config import Settings
from backend.app.generation.cancellation import CancelToken
from backend.app.generation.errors import (
    GenerationCancelledError,
    ParseError,
    PermanentServiceError,
    TransientServiceError,
)
from backend.app.llm.client import GenerativeTextService

logger = logging.getLogger(__name__)

T = TypeVar("T")

ResponseFormat = Literal["json_object", "text"]

TRANSIENT_STATUS_CODES = frozenset({408, 429, 502, 503, 504})
TRANSIENT_MESSAGE_MARKERS = ("timeout", "timed out", "capacity", "rate limit")
QUOTA_ERROR_CODES = frozenset({"insufficient_quota"})


class AttemptTimeoutError(TimeoutError):
    """A single attempt exceeded its timeout."""

    pass


@dataclass(frozen=True)
class PromptTask:
    """One outbound generation request.

    ``cache_key`` is the cache identity of the request and must stay stable
    across retries of the same logical request. ``label`` names the stage for
    logs and metrics.
    """

    prompt: str
    label: str = "request"
    model: str | None = None
    temperature: float = 0.7
    cache_key: str | None = None
    result_parser: Callable[[str], Any] | None = None
    response_format: ResponseFormat = "json_object"

    def __post_init__(self) -> None:
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"temperature must be within [0, 1], got {self.temperature}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for the executor."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    backoff_factor: float = 2.0
    attempt_timeout_ms: int = 60000

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay_ms=settings.retry_base_delay_ms,
            backoff_factor=settings.retry_backoff_factor,
            attempt_timeout_ms=settings.request_timeout_ms,
        )

    def delay_seconds(self, retry_index: int) -> float:
        """Backoff before retry number ``retry_index`` (0-based)."""
        return self.base_delay_ms * (self.backoff_factor**retry_index) / 1000


def _status_of(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def is_transient(error: BaseException) -> bool:
    """Classify a failed attempt as retryable or not."""
    # Quota exhaustion arrives as a 429 but will not recover on retry
    if getattr(error, "code", None) in QUOTA_ERROR_CODES:
        return False
    if isinstance(error, (TimeoutError, openai.APIConnectionError, ConnectionError)):
        return True
    if isinstance(error, openai.RateLimitError):
        return True
    if _status_of(error) in TRANSIENT_STATUS_CODES:
        return True
    # Any status, including 500, may carry a timeout or capacity message
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


def _error_reason(error: BaseException) -> str:
    if isinstance(error, TimeoutError):
        return "timeout"
    status = _status_of(error)
    if status is not None:
        return f"http_{status}"
    return type(error).__name__


# Metrics interface (to be implemented by actual metrics system)
class RequestMetrics:
    """Interface for request metrics."""

    def record_latency(self, stage: str, outcome: str, latency_ms: float) -> None:
        """Record request latency."""
        pass

    def inc_error(self, stage: str, reason: str) -> None:
        """Increment error counter."""
        pass

    def inc_cache_hit(self, stage: str) -> None:
        """Increment cache hit counter."""
        pass

    def inc_cancelled(self, stage: str, phase: str) -> None:
        """Increment cancellation counter."""
        pass

    def observe_batch(self, stage: str, size: int) -> None:
        """Record how many requests a batch dispatched."""
        pass


# Logging interface
class RequestLogger:
    """Interface for structured logging."""

    def log_attempt(
        self,
        label: str,
        attempt: int,
        outcome: str,
        latency_ms: float,
        cache_hit: bool = False,
        error_reason: str | None = None,
    ) -> None:
        """Log request attempt."""
        pass


class RetryingRequestExecutor:
    """Runs one PromptTask against the generative service."""

    def __init__(
        self,
        service: GenerativeTextService,
        policy: RetryPolicy | None = None,
        *,
        default_model: str = "gpt-4-turbo-preview",
        metrics: RequestMetrics | None = None,
        request_logger: RequestLogger | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            service: Generative text service boundary
            policy: Retry policy (defaults to 3 retries, 1s base, x2 backoff)
            default_model: Model used when a task has no model hint
            metrics: Metrics recorder (optional, defaults to no-op)
            request_logger: Structured logger (optional, defaults to no-op)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
        """
        self._service = service
        self._policy = policy or RetryPolicy()
        self._default_model = default_model
        self._metrics = metrics or RequestMetrics()
        self._logger = request_logger or RequestLogger()
        self._sleep = sleep_fn or asyncio.sleep

    @property
    def metrics(self) -> RequestMetrics:
        return self._metrics

    @property
    def request_logger(self) -> RequestLogger:
        return self._logger

    async def execute(self, task: PromptTask, cancel_token: CancelToken) -> Any:
        """Execute task with retries.

        Returns:
            Parsed JSON, the custom parser's result, or raw text

        Raises:
            GenerationCancelledError: Token cancelled before or during an attempt
            TransientServiceError: Retryable failure persisted after all retries
            PermanentServiceError: Non-retryable failure
            ParseError: Response could not be interpreted
        """
        last_error: BaseException | None = None
        attempts = self._policy.max_retries + 1

        for attempt in range(attempts):
            # Check cancellation before each attempt
            if cancel_token.cancelled:
                self._metrics.inc_cancelled(task.label, "queued")
                cancel_token.throw_if_cancelled()

            attempt_start = time.monotonic()
            try:
                text = await self._race(
                    self._service.submit(
                        task.prompt,
                        model=task.model or self._default_model,
                        temperature=task.temperature,
                        response_format=task.response_format,
                    ),
                    cancel_token,
                    timeout=self._policy.attempt_timeout_ms / 1000,
                )
            except GenerationCancelledError:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                self._metrics.record_latency(task.label, "cancelled", elapsed_ms)
                self._metrics.inc_cancelled(task.label, "attempt")
                self._logger.log_attempt(
                    task.label, attempt + 1, "cancelled", elapsed_ms, error_reason="cancelled"
                )
                raise
            except Exception as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                reason = _error_reason(e)
                self._metrics.inc_error(task.label, reason)
                self._metrics.record_latency(task.label, "error", elapsed_ms)
                self._logger.log_attempt(
                    task.label, attempt + 1, "error", elapsed_ms, error_reason=reason
                )

                if not is_transient(e):
                    raise PermanentServiceError(
                        f"{task.label} request failed: {e}", status=_status_of(e)
                    ) from e

                last_error = e
                if attempt < self._policy.max_retries:
                    delay = self._policy.delay_seconds(attempt)
                    logger.warning(
                        f"{task.label} failed (attempt {attempt + 1}/{attempts}), "
                        f"retrying in {delay:.2f}s: {reason}"
                    )
                    try:
                        cancel_token.throw_if_cancelled()
                        await self._race(self._sleep(delay), cancel_token)
                    except GenerationCancelledError:
                        self._metrics.inc_cancelled(task.label, "backoff")
                        raise
                continue

            elapsed_ms = (time.monotonic() - attempt_start) * 1000
            self._metrics.record_latency(task.label, "success", elapsed_ms)
            self._logger.log_attempt(task.label, attempt + 1, "success", elapsed_ms)
            return self._parse(task, text)

        # All attempts exhausted
        raise TransientServiceError(
            f"{task.label} failed after {attempts} attempts: {last_error}"
        ) from last_error

    async def _race(
        self,
        awaitable: Awaitable[T],
        cancel_token: CancelToken,
        timeout: float | None = None,
    ) -> T:
        """Await ``awaitable`` unless the token is cancelled or the timeout expires."""
        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(cancel_token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, watcher}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()

        if cancel_token.cancelled:
            work.cancel()
            if work.done() and not work.cancelled():
                work.exception()
            raise GenerationCancelledError(cancel_token.reason)
        if work in done:
            return work.result()
        work.cancel()
        raise AttemptTimeoutError(f"attempt timed out after {timeout}s")

    def _parse(self, task: PromptTask, text: str | None) -> Any:
        if text is None or not text.strip():
            raise ParseError(f"Empty response for {task.label}")

        if task.response_format == "text":
            return text.strip()

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        if task.result_parser is not None:
            try:
                return task.result_parser(text)
            except ParseError:
                raise
            except Exception as e:
                raise ParseError(f"Could not parse {task.label} response: {e}") from e

        logger.warning(
            f"Parse anomaly: {task.label} response is not JSON, returning raw text "
            f"({len(text)} chars)"
        )
        return text
