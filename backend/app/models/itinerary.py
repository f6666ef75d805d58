"""Itinerary models - final output for user consumption."""

from datetime import date

from pydantic import BaseModel, Field


class Activity(BaseModel):
    """Single activity in itinerary."""

    id: str | None = None
    title: str
    description: str = ""
    location: str = ""
    time: str = ""
    type: str = "activity"
    category: str | None = None
    subcategory: str | None = None


class DayPlan(BaseModel):
    """Itinerary for a single day."""

    day_number: int = Field(..., ge=1)
    date: date
    activities: list[Activity] = Field(default_factory=list)


class Itinerary(BaseModel):
    """Complete itinerary, draft or final."""

    itinerary_id: str
    title: str = ""
    destination: str
    start_date: date
    end_date: date
    days: list[DayPlan] = Field(default_factory=list)

    @property
    def day_count(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def all_activities(self) -> list[Activity]:
        """Activities across all days, in day order."""
        return [activity for day in self.days for activity in day.activities]


def itinerary_title(destination: str, start: date, end: date) -> str:
    """Human-readable trip title, e.g. ``Lisbon: Jun 1 - Jun 3, 2025``."""
    start_label = f"{start.strftime('%b')} {start.day}"
    end_label = f"{end.strftime('%b')} {end.day}, {end.year}"
    if start.year != end.year:
        start_label = f"{start_label}, {start.year}"
    return f"{destination}: {start_label} - {end_label}"
