"""Request models - trip description and traveller preferences."""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class Pace(str, Enum):
    """Preferred trip pace."""

    slow = "slow"
    moderate = "moderate"
    fast = "fast"


class Option(BaseModel):
    """Selectable option with a stable id and a display label."""

    id: str
    label: str


def _dedupe_options(options: list[Option]) -> list[Option]:
    """Drop repeated ids, keeping the first occurrence and input order."""
    seen: set[str] = set()
    unique: list[Option] = []
    for option in options:
        if option.id in seen:
            continue
        seen.add(option.id)
        unique.append(option)
    return unique


class TravelPreferences(BaseModel):
    """How the traveller likes to travel."""

    travel_style: str = "balanced"
    travel_group: str = "solo"
    budget: str = "mid-range"
    transport_mode: str = "public transport"
    dietary_preferences: list[Option] = Field(default_factory=list)
    pace: Pace = Pace.moderate

    @field_validator("dietary_preferences")
    @classmethod
    def dedupe_dietary(cls, v: list[Option]) -> list[Option]:
        """Treat dietary preferences as a set keyed by id."""
        return _dedupe_options(v)


class GenerationRequest(BaseModel):
    """Everything needed to generate an itinerary from scratch.

    Trip invariants (non-blank destination, date ordering, day-count ceiling)
    are not enforced at construction; ``validate_request`` checks them so the
    coordinator can report them through its error state.
    """

    destination: str
    start_date: date
    end_date: date
    interests: list[Option] = Field(default_factory=list)
    preferences: TravelPreferences = Field(default_factory=TravelPreferences)

    @field_validator("destination")
    @classmethod
    def strip_destination(cls, v: str) -> str:
        return v.strip()

    @field_validator("interests")
    @classmethod
    def dedupe_interests(cls, v: list[Option]) -> list[Option]:
        """Interests form an ordered set keyed by id."""
        return _dedupe_options(v)

    @property
    def day_count(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @property
    def interest_labels(self) -> list[str]:
        return [i.label for i in self.interests]

    @property
    def dietary_labels(self) -> list[str]:
        return [d.label for d in self.preferences.dietary_preferences]
