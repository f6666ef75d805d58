"""Structured logging for generative service requests."""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class StructuredRequestLogger:
    """Structured logger for request attempts."""

    def log_attempt(
        self,
        label: str,
        attempt: int,
        outcome: str,
        latency_ms: float,
        cache_hit: bool = False,
        error_reason: str | None = None,
    ) -> None:
        """Log request attempt with structured data."""
        log_data: dict[str, Any] = {
            "task": label,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
            "cache_hit": cache_hit,
        }

        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"LLM request: {label} - {outcome}"

        if outcome in ("success", "cache_hit"):
            logger.info(log_msg, extra={"structured": log_data})
        elif outcome == "cancelled":
            logger.debug(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
