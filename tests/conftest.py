"""Shared pytest fixtures for all test suites."""

from datetime import date

import pytest

from backend.app.config import Settings
from backend.app.generation.cache import ResponseCache
from backend.app.generation.dispatcher import BatchDispatcher
from backend.app.generation.executor import RetryingRequestExecutor, RetryPolicy
from backend.app.generation.pipeline import GenerationPipeline
from backend.app.models.request import GenerationRequest, Option, Pace, TravelPreferences
from tests.fakes import FakeService


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def settings() -> Settings:
    """Fast settings for tests: no backoff, short timers."""
    return Settings(
        openai_api_key=None,
        retry_base_delay_ms=0,
        progress_debounce_ms=20,
        error_autoclear_seconds=0.2,
    )


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def cache() -> ResponseCache:
    return ResponseCache()


@pytest.fixture
def pipeline(service: FakeService, cache: ResponseCache, settings: Settings) -> GenerationPipeline:
    """Pipeline over the fake service with a fresh cache."""
    executor = RetryingRequestExecutor(
        service, RetryPolicy.from_settings(settings), sleep_fn=no_sleep
    )
    return GenerationPipeline(BatchDispatcher(executor, cache), settings)


@pytest.fixture
def lisbon_request() -> GenerationRequest:
    """Three-day Lisbon trip for food and history."""
    return GenerationRequest(
        destination="Lisbon",
        start_date=date(2025, 6, 1),
        end_date=date(2025, 6, 3),
        interests=[Option(id="food", label="Food"), Option(id="history", label="History")],
        preferences=TravelPreferences(
            travel_style="cultural",
            travel_group="couple",
            budget="mid-range",
            transport_mode="walking",
            dietary_preferences=[Option(id="pescatarian", label="Pescatarian")],
            pace=Pace.moderate,
        ),
    )
