"""In-memory TTL cache for generative service responses.

Keys are caller-assigned and encode the semantic identity of a request
(destination, dates, interests, stage), never the prompt text. Entries are
immutable once stored and evicted lazily when read after expiry.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600


@dataclass(frozen=True)
class CacheEntry:
    """Cached response with metadata."""

    value: Any
    stored_at: datetime
    ttl_seconds: int

    def is_fresh(self, now: datetime) -> bool:
        """Check if cache entry is still valid."""
        return (now - self.stored_at).total_seconds() < self.ttl_seconds


class ResponseCache:
    """Keyed, time-bounded memoization of generation results."""

    def __init__(
        self,
        name: str = "generation",
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.name = name
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock or datetime.now
        self._entries: dict[str, CacheEntry] = {}

    @staticmethod
    def make_key(*parts: object) -> str:
        """Join deterministic request parameters into a cache key."""
        return ":".join(str(p) for p in parts)

    def get(self, key: str) -> Any | None:
        """Get cached value if fresh, None otherwise."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            # Expired - remove
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store value with TTL. Last writer wins."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl_seconds=ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(
                f"[{self.name} cache] purged {len(expired)} expired entries, "
                f"{len(self._entries)} remaining"
            )
        return len(expired)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
