"""Prompt templates for itinerary generation.

Every prompt is an instruction block followed by ``Input JSON:`` and a JSON
document carrying the request data, so responses can be tied back to inputs.
"""

import json
from enum import Enum
from typing import Any

INPUT_MARKER = "Input JSON:\n"


class PromptKind(str, Enum):
    """Kind of prompt, used for stage labels and by the stub client."""

    attractions = "attractions"
    dining = "dining"
    day_plan = "day_plan"
    balance = "balance"
    personalize = "personalize"
    update = "update"
    describe = "describe"
    categorize = "categorize"


_INSTRUCTIONS: dict[PromptKind, str] = {
    PromptKind.attractions: (
        "As a travel expert, recommend `count` must-visit attractions in `destination` "
        "matching `interests`. For each give name, description (2-3 sentences), "
        "duration (hours), bestTime, address and type (museum, landmark, nature, ...).\n"
        'Respond as JSON: {"attractions": [{"name", "description", "duration", '
        '"bestTime", "address", "type"}]}'
    ),
    PromptKind.dining: (
        "As a food expert, recommend `count` restaurants in `destination` suited to "
        "`dietaryPreferences`. For each give name, cuisine, priceRange ($ to $$$), "
        "specialtyDish, location and bestMealTime.\n"
        'Respond as JSON: {"restaurants": [{"name", "cuisine", "priceRange", '
        '"specialtyDish", "location", "bestMealTime"}]}'
    ),
    PromptKind.day_plan: (
        "Create a logical plan for day `dayNumber` in `destination` using `activities`. "
        "Order them by opening hours, geographic proximity, meal times "
        "(`dietaryPreferences`) and transit time (`transportMode`), keeping a "
        "`pace` pace with short breaks.\n"
        'Respond as JSON: {"orderedActivities": [{"title", "description", "location", '
        '"time", "type", "notes"}]}'
    ),
    PromptKind.balance: (
        "Review the draft `itinerary` and fix days that are too crowded or too empty, "
        "poor activity distribution, inefficient routing, unrealistic timing and "
        "missing meals or rest. Keep every day and keep activity ids.\n"
        "Respond as JSON with the same structure as the input itinerary."
    ),
    PromptKind.personalize: (
        "Personalize `itinerary` for a `travelStyle` trip with `travelGroup` on a "
        "`budget` budget, favouring `interests` at a `pace` pace, and adjust meals "
        "to `dietaryPreferences`. Add tips where useful. Keep every day and keep "
        "activity ids.\n"
        "Respond as JSON with the same structure as the input itinerary."
    ),
    PromptKind.update: (
        "Apply the traveller's `instruction` to `itinerary`. Change only what the "
        "instruction asks for and keep activity ids of untouched activities.\n"
        "Respond as JSON with the same structure as the input itinerary."
    ),
    PromptKind.describe: (
        "Rewrite the description of `activity` in `destination` as a vivid 2-3 sentence "
        "text under 80 words with one interesting fact and one thing to notice. "
        "Respond with plain text only."
    ),
    PromptKind.categorize: (
        "Assign a category and subcategory to each of `activities`. Categories: "
        "Sightseeing, Cultural, Active, Food, Nature, Entertainment, Transportation, "
        "Accommodation, Relaxation.\n"
        'Respond as JSON: {"categories": [{"id", "category", "subcategory"}]}'
    ),
}


def render_prompt(kind: PromptKind, payload: dict[str, Any]) -> str:
    """Render instructions for ``kind`` followed by the JSON payload."""
    header = f"[{kind.value}]\n"
    body = json.dumps(payload, default=str, ensure_ascii=False, sort_keys=True)
    return f"{header}{_INSTRUCTIONS[kind]}\n\n{INPUT_MARKER}{body}"


def parse_prompt(prompt: str) -> tuple[PromptKind | None, dict[str, Any]]:
    """Recover kind and payload from a rendered prompt."""
    kind: PromptKind | None = None
    if prompt.startswith("["):
        tag = prompt[1 : prompt.find("]")]
        try:
            kind = PromptKind(tag)
        except ValueError:
            kind = None

    _, _, raw = prompt.partition(INPUT_MARKER)
    try:
        payload = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        payload = {}
    return kind, payload if isinstance(payload, dict) else {}
