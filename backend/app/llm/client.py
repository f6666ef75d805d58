"""Generative text service boundary with OpenAI integration.

Security: Reads API key from settings/environment only, never hardcoded.
Provides a deterministic stub when no key is present for testing and evals.
"""

import json
import logging
from typing import Any, Protocol

from openai import AsyncOpenAI

from backend.app.config import Settings, get_settings
from backend.app.llm.prompts import PromptKind, parse_prompt

logger = logging.getLogger(__name__)

_DAY_TIMES = ["09:00", "11:30", "13:00", "15:00", "17:30", "19:30", "21:00"]


class GenerativeTextService(Protocol):
    """Protocol for generative text service implementations."""

    async def submit(
        self,
        prompt: str,
        *,
        model: str,
        temperature: float,
        response_format: str,
    ) -> str:
        """Send one prompt and return the raw response text.

        Args:
            prompt: Rendered prompt
            model: Model name
            temperature: Sampling temperature in [0, 1]
            response_format: "json_object" or "text"

        Returns:
            Response body text (may be empty)
        """
        ...


class DeterministicStubClient:
    """Deterministic stub service for testing (no API key required).

    Echoes structured inputs back in the shape each prompt kind asks for.
    """

    async def submit(
        self,
        prompt: str,
        *,
        model: str,
        temperature: float,
        response_format: str,
    ) -> str:
        """Generate deterministic stub response."""
        kind, payload = parse_prompt(prompt)
        if kind is None:
            return "{}" if response_format == "json_object" else ""
        if kind == PromptKind.describe:
            return self._describe(payload)
        return json.dumps(self._respond(kind, payload))

    def _respond(self, kind: PromptKind, payload: dict[str, Any]) -> dict[str, Any]:
        destination = payload.get("destination", "")
        if kind == PromptKind.attractions:
            interests = payload.get("interests") or ["sights"]
            return {
                "attractions": [
                    {
                        "name": f"{destination} {interests[i % len(interests)]} spot {i + 1}",
                        "description": f"A popular {interests[i % len(interests)]} stop.",
                        "duration": "2",
                        "bestTime": "morning" if i % 2 == 0 else "afternoon",
                        "address": f"{destination} centre",
                        "type": "landmark",
                    }
                    for i in range(int(payload.get("count", 0)))
                ]
            }
        if kind == PromptKind.dining:
            return {
                "restaurants": [
                    {
                        "name": f"{destination} kitchen {i + 1}",
                        "cuisine": "local",
                        "priceRange": "$$",
                        "specialtyDish": "house special",
                        "location": f"{destination} old town",
                        "bestMealTime": "lunch" if i % 2 == 0 else "dinner",
                    }
                    for i in range(int(payload.get("count", 0)))
                ]
            }
        if kind == PromptKind.day_plan:
            ordered = []
            for i, candidate in enumerate(payload.get("activities", [])):
                is_meal = "cuisine" in candidate
                ordered.append(
                    {
                        "title": candidate.get("name", f"Activity {i + 1}"),
                        "description": candidate.get("description")
                        or f"{candidate.get('cuisine', 'Local')} cuisine",
                        "location": candidate.get("address") or candidate.get("location", ""),
                        "time": _DAY_TIMES[i % len(_DAY_TIMES)],
                        "type": "food" if is_meal else candidate.get("type", "activity"),
                    }
                )
            return {"orderedActivities": ordered}
        if kind in (PromptKind.balance, PromptKind.personalize, PromptKind.update):
            return dict(payload.get("itinerary", {}))
        if kind == PromptKind.categorize:
            return {
                "categories": [
                    {
                        "id": a.get("id"),
                        "category": "Food" if a.get("type") == "food" else "Sightseeing",
                        "subcategory": "restaurant" if a.get("type") == "food" else "landmark",
                    }
                    for a in payload.get("activities", [])
                ]
            }
        return {}

    def _describe(self, payload: dict[str, Any]) -> str:
        activity = payload.get("activity", "This place")
        description = payload.get("description") or "A local favourite."
        return f"{activity}: {description}"


class OpenAIClient:
    """OpenAI-backed generative text service."""

    def __init__(self, api_key: str, timeout_seconds: float = 60.0):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from environment)
            timeout_seconds: Transport timeout per request

        Retries are owned by the executor, so the SDK's own retries are disabled.
        """
        self.client = AsyncOpenAI(api_key=api_key, max_retries=0, timeout=timeout_seconds)

    async def submit(
        self,
        prompt: str,
        *,
        model: str,
        temperature: float,
        response_format: str,
    ) -> str:
        """Send prompt to chat completions and return message content."""
        kwargs: dict[str, Any] = {}
        if response_format == "json_object":
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            **kwargs,
        )
        return response.choices[0].message.content or ""


def get_llm_client(settings: Settings | None = None) -> GenerativeTextService:
    """Factory function to get appropriate service based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    settings = settings or get_settings()
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for itinerary generation")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            timeout_seconds=settings.request_timeout_ms / 1000,
        )
    else:
        logger.warning("No OpenAI API key configured, using deterministic stub client")
        return DeterministicStubClient()
