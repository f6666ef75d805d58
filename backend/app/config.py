"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Generative service
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4-turbo-preview"

    # Trip limits
    max_trip_days: int = 14

    # Cache TTLs (hours)
    generation_cache_ttl_hours: int = 24

    # Retry policy
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_backoff_factor: float = 2.0

    # Timeouts (milliseconds)
    request_timeout_ms: int = 60000

    # Caller-level batching
    enrich_activities: bool = True
    description_batch_size: int = 5
    categorization_batch_size: int = 20

    # Coordinator timing
    progress_debounce_ms: int = 150
    error_autoclear_seconds: float = 10.0

    @property
    def generation_cache_ttl_seconds(self) -> int:
        return self.generation_cache_ttl_hours * 3600


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
