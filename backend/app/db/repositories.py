"""Persistence boundary for saved trips and user preferences."""

import logging
from typing import Any, Protocol

from backend.app.models.itinerary import Itinerary
from backend.app.models.request import TravelPreferences

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Generic key/value persistence with opaque JSON payloads."""

    async def load(self, key: str) -> dict[str, Any] | None:
        """Load payload stored under key.

        Args:
            key: Record key

        Returns:
            Payload or None if absent
        """
        ...

    async def save(self, key: str, payload: dict[str, Any]) -> str:
        """Create or replace the payload under key.

        Args:
            key: Record key
            payload: JSON-serializable payload

        Returns:
            Record ID (stable across saves of the same key)
        """
        ...

    async def delete(self, key: str) -> None:
        """Delete the record under key. Missing keys are ignored."""
        ...


class TripRepository:
    """Typed access to itineraries and preferences over a KeyValueStore."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @staticmethod
    def itinerary_key(itinerary_id: str) -> str:
        return f"itineraries/{itinerary_id}"

    @staticmethod
    def preferences_key(user_id: str) -> str:
        return f"preferences/{user_id}"

    async def save_itinerary(self, itinerary: Itinerary) -> str:
        """Save itinerary; saving the same itinerary again replaces it."""
        return await self._store.save(
            self.itinerary_key(itinerary.itinerary_id), itinerary.model_dump(mode="json")
        )

    async def load_itinerary(self, itinerary_id: str) -> Itinerary | None:
        payload = await self._store.load(self.itinerary_key(itinerary_id))
        if payload is None:
            return None
        return Itinerary.model_validate(payload)

    async def delete_itinerary(self, itinerary_id: str) -> None:
        await self._store.delete(self.itinerary_key(itinerary_id))

    async def save_preferences(self, user_id: str, preferences: TravelPreferences) -> str:
        return await self._store.save(
            self.preferences_key(user_id), preferences.model_dump(mode="json")
        )

    async def load_preferences(self, user_id: str) -> TravelPreferences | None:
        """Load saved preferences, or None if missing or unreadable."""
        payload = await self._store.load(self.preferences_key(user_id))
        if payload is None:
            return None
        try:
            return TravelPreferences.model_validate(payload)
        except ValueError:
            logger.warning(f"Ignoring unreadable preferences for user {user_id}")
            return None
