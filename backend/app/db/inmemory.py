"""In-memory implementation of the KeyValueStore interface."""

import copy
import uuid
from typing import Any


class InMemoryKeyValueStore:
    """In-memory implementation of KeyValueStore."""

    def __init__(self) -> None:
        self._records: dict[str, tuple[str, dict[str, Any]]] = {}
        self.save_calls = 0

    async def load(self, key: str) -> dict[str, Any] | None:
        """Load payload stored under key."""
        record = self._records.get(key)
        if record is None:
            return None
        return copy.deepcopy(record[1])

    async def save(self, key: str, payload: dict[str, Any]) -> str:
        """Create or replace the payload under key."""
        self.save_calls += 1
        existing = self._records.get(key)
        record_id = existing[0] if existing else str(uuid.uuid4())
        self._records[key] = (record_id, copy.deepcopy(payload))
        return record_id

    async def delete(self, key: str) -> None:
        """Delete the record under key."""
        self._records.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._records)
