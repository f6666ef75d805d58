"""Prometheus metrics for generative service requests."""

from prometheus_client import Counter, Histogram

# Request execution metrics
llm_request_latency_ms = Histogram(
    "llm_request_latency_ms",
    "Generative service request latency in milliseconds",
    ["stage", "outcome"],
    buckets=[100, 250, 500, 1000, 2000, 4000, 8000, 16000, 32000, 64000],
)

llm_request_errors_total = Counter(
    "llm_request_errors_total",
    "Total generative service request errors",
    ["stage", "reason"],
)

response_cache_hits_total = Counter(
    "response_cache_hits_total",
    "Total response cache hits",
    ["stage"],
)

# Requests stopped by a cancel token, by the phase it interrupted
llm_request_cancellations_total = Counter(
    "llm_request_cancellations_total",
    "Total generative service requests stopped by a cancel token",
    ["stage", "phase"],
)

# Requests actually sent per fan-out, after cache hits are removed
generation_batch_size = Histogram(
    "generation_batch_size",
    "Requests dispatched concurrently per batch",
    ["stage"],
    buckets=[1, 2, 3, 5, 8, 14, 20],
)


class PrometheusRequestMetrics:
    """Prometheus-based request metrics implementation."""

    def record_latency(self, stage: str, outcome: str, latency_ms: float) -> None:
        """Record request latency."""
        llm_request_latency_ms.labels(stage=stage, outcome=outcome).observe(latency_ms)

    def inc_error(self, stage: str, reason: str) -> None:
        """Increment error counter."""
        llm_request_errors_total.labels(stage=stage, reason=reason).inc()

    def inc_cache_hit(self, stage: str) -> None:
        """Increment cache hit counter."""
        response_cache_hits_total.labels(stage=stage).inc()

    def inc_cancelled(self, stage: str, phase: str) -> None:
        """Increment cancellation counter."""
        llm_request_cancellations_total.labels(stage=stage, phase=phase).inc()

    def observe_batch(self, stage: str, size: int) -> None:
        """Record how many requests a batch dispatched."""
        generation_batch_size.labels(stage=stage).observe(size)
