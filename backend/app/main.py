"""Composition root - wires the generation core from settings."""

from backend.app.config import Settings, get_settings
from backend.app.db.inmemory import InMemoryKeyValueStore
from backend.app.db.repositories import KeyValueStore, TripRepository
from backend.app.generation.cache import ResponseCache
from backend.app.generation.coordinator import GenerationCoordinator
from backend.app.generation.dispatcher import BatchDispatcher
from backend.app.generation.executor import RetryingRequestExecutor, RetryPolicy
from backend.app.generation.pipeline import GenerationPipeline
from backend.app.llm.client import GenerativeTextService, get_llm_client
from backend.app.utils.logging import StructuredRequestLogger
from backend.app.utils.metrics import PrometheusRequestMetrics


def build_pipeline(
    settings: Settings | None = None,
    *,
    service: GenerativeTextService | None = None,
    cache: ResponseCache | None = None,
) -> GenerationPipeline:
    """Build a pipeline with Prometheus metrics and structured logging."""
    settings = settings or get_settings()
    executor = RetryingRequestExecutor(
        service or get_llm_client(settings),
        RetryPolicy.from_settings(settings),
        default_model=settings.openai_model,
        metrics=PrometheusRequestMetrics(),
        request_logger=StructuredRequestLogger(),
    )
    if cache is None:
        cache = ResponseCache(default_ttl_seconds=settings.generation_cache_ttl_seconds)
    dispatcher = BatchDispatcher(executor, cache, settings.generation_cache_ttl_seconds)
    return GenerationPipeline(dispatcher, settings)


def build_coordinator(
    settings: Settings | None = None,
    *,
    service: GenerativeTextService | None = None,
    cache: ResponseCache | None = None,
    store: KeyValueStore | None = None,
) -> GenerationCoordinator:
    """Build a coordinator backed by ``store`` (in-memory by default)."""
    settings = settings or get_settings()
    pipeline = build_pipeline(settings, service=service, cache=cache)
    repository = TripRepository(store or InMemoryKeyValueStore())
    return GenerationCoordinator(pipeline, repository, settings)
