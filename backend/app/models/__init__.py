"""Models package - re-exports for convenience."""

from backend.app.models.itinerary import Activity, DayPlan, Itinerary, itinerary_title
from backend.app.models.request import GenerationRequest, Option, Pace, TravelPreferences
from backend.app.models.state import GenerationState, GenerationStatus

__all__ = [
    "Activity",
    "DayPlan",
    "GenerationRequest",
    "GenerationState",
    "GenerationStatus",
    "Itinerary",
    "Option",
    "Pace",
    "TravelPreferences",
    "itinerary_title",
]
