"""Unit tests for the generation coordinator state machine."""

import asyncio
from datetime import date

import pytest

from backend.app.db.inmemory import InMemoryKeyValueStore
from backend.app.db.repositories import TripRepository
from backend.app.generation.coordinator import GenerationCoordinator, is_milestone
from backend.app.generation.errors import PermanentServiceError
from backend.app.llm.prompts import PromptKind
from backend.app.models.itinerary import Activity, DayPlan, Itinerary
from backend.app.models.state import GenerationState, GenerationStatus
from tests.fakes import FakeHTTPError


class Recorder:
    """Collects published states."""

    def __init__(self) -> None:
        self.states: list[GenerationState] = []

    def __call__(self, state: GenerationState) -> None:
        self.states.append(state)

    @property
    def statuses(self) -> list[GenerationStatus]:
        return [s.status for s in self.states]

    def progress_for(self, status: GenerationStatus) -> list[int]:
        return [s.progress for s in self.states if s.status == status]


class FailingStore(InMemoryKeyValueStore):
    async def save(self, key, payload):
        raise ConnectionError("store offline")


def _sample_itinerary() -> Itinerary:
    return Itinerary(
        itinerary_id="trip-1",
        title="Porto: Jun 1 - Jun 1, 2025",
        destination="Porto",
        start_date=date(2025, 6, 1),
        end_date=date(2025, 6, 1),
        days=[
            DayPlan(
                day_number=1,
                date=date(2025, 6, 1),
                activities=[Activity(id="a1", title="Ribeira walk", time="10:00")],
            )
        ],
    )


class ScriptedPipeline:
    """Reports a fixed progress script, then returns an itinerary."""

    def __init__(self, script: list[tuple[int, float]]) -> None:
        self.script = script

    async def run(self, request, cancel_token, on_progress):
        for progress, pause in self.script:
            on_progress(progress, f"step {progress}")
            if pause:
                await asyncio.sleep(pause)
        return _sample_itinerary()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def coordinator(pipeline, store, settings) -> GenerationCoordinator:
    coordinator = GenerationCoordinator(pipeline, TripRepository(store), settings)
    yield coordinator
    coordinator.close()


@pytest.fixture
def recorder(coordinator) -> Recorder:
    recorder = Recorder()
    coordinator.subscribe(recorder)
    return recorder


def test_milestones() -> None:
    assert [p for p in range(0, 101, 5) if is_milestone(p)] == [0, 25, 50, 75, 100]


@pytest.mark.asyncio
async def test_successful_generation_flow(coordinator, recorder, store, lisbon_request) -> None:
    coordinator.start_generation(lisbon_request)
    assert coordinator.state.status == GenerationStatus.starting

    await coordinator.task

    assert recorder.statuses[0] == GenerationStatus.starting
    assert GenerationStatus.loading in recorder.statuses
    assert recorder.statuses[-1] == GenerationStatus.success
    assert coordinator.state.progress == 100
    assert coordinator.state.step == "Complete"
    loading = recorder.progress_for(GenerationStatus.loading)
    assert loading == sorted(loading)

    assert coordinator.result is not None
    assert len(coordinator.result.days) == 3
    assert store.save_calls == 1
    assert coordinator.saved_id is not None
    assert store.keys() == [f"itineraries/{coordinator.result.itinerary_id}"]


@pytest.mark.asyncio
async def test_cancel_mid_run_returns_to_idle_without_saving(
    coordinator, recorder, service, cache, store, lisbon_request
) -> None:
    service.gates[PromptKind.attractions] = asyncio.Event()

    coordinator.start_generation(lisbon_request)
    await service.started[PromptKind.attractions].wait()
    coordinator.cancel()

    assert coordinator.state == GenerationState()
    await asyncio.wait_for(coordinator.task, timeout=1.0)

    assert coordinator.state.status == GenerationStatus.idle
    assert GenerationStatus.error not in recorder.statuses
    assert len(cache) == 0
    assert store.save_calls == 0
    assert coordinator.result is None


@pytest.mark.asyncio
async def test_transient_failure_is_retried_silently(
    coordinator, recorder, service, lisbon_request
) -> None:
    service.failures[PromptKind.attractions] = [FakeHTTPError(503)]

    coordinator.start_generation(lisbon_request)
    await coordinator.task

    assert coordinator.state.status == GenerationStatus.success
    assert GenerationStatus.error not in recorder.statuses
    assert service.count(PromptKind.attractions) == 2


@pytest.mark.asyncio
async def test_permanent_failure_reports_error_then_auto_clears(
    coordinator, recorder, service, store, lisbon_request
) -> None:
    service.failures[PromptKind.day_plan] = [FakeHTTPError(401, "invalid api key")]

    coordinator.start_generation(lisbon_request)
    await coordinator.task

    state = coordinator.state
    assert state.status == GenerationStatus.error
    assert state.error_kind == "permanent"
    assert state.error_message == PermanentServiceError.user_message
    assert state.progress == 15
    assert store.save_calls == 0

    await asyncio.sleep(0.3)
    assert coordinator.state.status == GenerationStatus.idle


@pytest.mark.asyncio
async def test_reset_clears_error_immediately(coordinator, service, lisbon_request) -> None:
    service.failures[PromptKind.attractions] = [FakeHTTPError(400)]

    coordinator.start_generation(lisbon_request)
    await coordinator.task
    assert coordinator.state.status == GenerationStatus.error

    coordinator.reset()

    assert coordinator.state == GenerationState()


@pytest.mark.asyncio
async def test_invalid_request_fails_synchronously(
    coordinator, recorder, service, lisbon_request
) -> None:
    request = lisbon_request.model_copy(update={"end_date": date(2025, 6, 20)})

    coordinator.start_generation(request)

    assert coordinator.task is None
    assert coordinator.state.status == GenerationStatus.error
    assert coordinator.state.error_kind == "validation"
    assert coordinator.state.error_message == "Itineraries cannot exceed 14 days"
    assert recorder.statuses == [GenerationStatus.starting, GenerationStatus.error]
    assert service.calls == []


@pytest.mark.asyncio
async def test_stale_auto_clear_does_not_reset_new_run(
    coordinator, service, lisbon_request
) -> None:
    bad = lisbon_request.model_copy(update={"end_date": date(2025, 5, 1)})
    coordinator.start_generation(bad)
    assert coordinator.state.status == GenerationStatus.error

    service.gates[PromptKind.attractions] = asyncio.Event()
    coordinator.start_generation(lisbon_request)
    await asyncio.sleep(0.3)

    assert coordinator.state.status in (GenerationStatus.starting, GenerationStatus.loading)
    service.gates[PromptKind.attractions].set()
    await coordinator.task
    assert coordinator.state.status == GenerationStatus.success


@pytest.mark.asyncio
async def test_new_run_supersedes_previous(coordinator, service, store, lisbon_request) -> None:
    gate = asyncio.Event()
    service.gates[PromptKind.attractions] = gate

    coordinator.start_generation(lisbon_request)
    first = coordinator.task
    await service.started[PromptKind.attractions].wait()

    porto = lisbon_request.model_copy(update={"destination": "Porto"})
    coordinator.start_generation(porto)
    second = coordinator.task
    gate.set()

    await asyncio.wait_for(asyncio.gather(first, second), timeout=2.0)

    assert coordinator.state.status == GenerationStatus.success
    assert coordinator.result.destination == "Porto"
    assert store.save_calls == 1


@pytest.mark.asyncio
async def test_update_keeps_itinerary_identity(coordinator, store) -> None:
    original = _sample_itinerary()

    coordinator.start_update(original, "Add a port wine tasting")
    await coordinator.task

    assert coordinator.state.status == GenerationStatus.success
    assert coordinator.result.itinerary_id == "trip-1"
    assert store.keys() == ["itineraries/trip-1"]


@pytest.mark.asyncio
async def test_save_failure_does_not_change_outcome(pipeline, settings, lisbon_request) -> None:
    coordinator = GenerationCoordinator(pipeline, TripRepository(FailingStore()), settings)

    coordinator.start_generation(lisbon_request)
    await coordinator.task

    assert coordinator.state.status == GenerationStatus.success
    assert coordinator.saved_id is None
    coordinator.close()


@pytest.mark.asyncio
async def test_progress_is_debounced_and_monotonic(settings, lisbon_request) -> None:
    pipeline = ScriptedPipeline([(0, 0), (10, 0), (20, 0.06), (25, 0), (10, 0)])
    coordinator = GenerationCoordinator(pipeline, None, settings)
    recorder = Recorder()
    coordinator.subscribe(recorder)

    coordinator.start_generation(lisbon_request)
    await coordinator.task

    # 10 is superseded before the debounce fires; the late 10 is clamped to 25
    assert recorder.progress_for(GenerationStatus.loading) == [0, 20, 25, 25]
    assert recorder.statuses[-1] == GenerationStatus.success


@pytest.mark.asyncio
async def test_unsubscribe_and_failing_listener(coordinator, lisbon_request) -> None:
    received: list[GenerationState] = []

    def broken(state: GenerationState) -> None:
        raise RuntimeError("listener bug")

    coordinator.subscribe(broken)
    unsubscribe = coordinator.subscribe(received.append)

    coordinator.start_generation(lisbon_request)
    await coordinator.task
    assert received[-1].status == GenerationStatus.success

    unsubscribe()
    coordinator.reset()
    assert received[-1].status == GenerationStatus.success
