"""Client-visible generation state."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class GenerationStatus(str, Enum):
    """Lifecycle status of the current generation or update."""

    idle = "idle"
    starting = "starting"
    loading = "loading"
    success = "success"
    error = "error"


class GenerationState(BaseModel):
    """Immutable snapshot published to observers."""

    model_config = ConfigDict(frozen=True)

    status: GenerationStatus = GenerationStatus.idle
    progress: int = Field(0, ge=0, le=100)
    step: str = ""
    error_message: str | None = None
    error_kind: str | None = None
