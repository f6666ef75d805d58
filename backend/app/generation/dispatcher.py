"""Concurrent fan-out of prompt tasks through the executor and cache."""

import asyncio
import logging
from typing import Any

from backend.app.generation.cache import ResponseCache
from backend.app.generation.cancellation import CancelToken
from backend.app.generation.executor import PromptTask, RetryingRequestExecutor

logger = logging.getLogger(__name__)

_MISS = object()


class BatchDispatcher:
    """Dispatches a batch of independent tasks and collects ordered results.

    No concurrency cap is applied here; callers chunk large batches themselves.
    """

    def __init__(
        self,
        executor: RetryingRequestExecutor,
        cache: ResponseCache,
        cache_ttl_seconds: int | None = None,
    ) -> None:
        self._executor = executor
        self._cache = cache
        self._cache_ttl_seconds = cache_ttl_seconds

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    async def dispatch(
        self,
        tasks: list[PromptTask],
        *,
        cancel_token: CancelToken,
        use_cache: bool = True,
    ) -> list[Any]:
        """Run all tasks and return results aligned with ``tasks``.

        Fail-fast: the first unrecovered error cancels the remaining tasks and
        propagates unmodified. Keyed results are cached only after the whole
        batch succeeds and only if the token was not cancelled.
        """
        cancel_token.throw_if_cancelled()

        results: list[Any] = [_MISS] * len(tasks)
        if use_cache:
            for index, task in enumerate(tasks):
                if task.cache_key is None:
                    continue
                cached = self._cache.get(task.cache_key)
                if cached is not None:
                    results[index] = cached
                    self._executor.metrics.inc_cache_hit(task.label)
                    self._executor.request_logger.log_attempt(
                        task.label, 0, "cache_hit", 0.0, cache_hit=True
                    )

        pending_indexes = [i for i, r in enumerate(results) if r is _MISS]
        if not pending_indexes:
            logger.debug(f"Batch of {len(tasks)} served entirely from cache")
            return results

        self._executor.metrics.observe_batch(tasks[pending_indexes[0]].label, len(pending_indexes))
        running: dict[asyncio.Task[Any], int] = {}
        for index in pending_indexes:
            cancel_token.throw_if_cancelled()
            future = asyncio.ensure_future(self._executor.execute(tasks[index], cancel_token))
            running[future] = index

        try:
            done, pending = await asyncio.wait(running, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for future in running:
                future.cancel()
            raise

        failed = next((f for f in done if f.exception() is not None), None)
        if failed is not None:
            for future in pending:
                future.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            # Mark sibling exceptions as retrieved
            for future in done:
                if future is not failed:
                    future.exception()
            error = failed.exception()
            assert error is not None
            logger.warning(
                f"Batch failed on task {running[failed]} ({tasks[running[failed]].label}): "
                f"{type(error).__name__}"
            )
            raise error

        for future, index in running.items():
            results[index] = future.result()

        cancel_token.throw_if_cancelled()
        if use_cache:
            for index in pending_indexes:
                key = tasks[index].cache_key
                if key is not None:
                    self._cache.set(key, results[index], self._cache_ttl_seconds)

        return results
