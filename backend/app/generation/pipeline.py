"""Multi-stage itinerary generation pipeline.

Stages run strictly in sequence; tasks within a stage run concurrently:

1. Candidates - attractions and dining options (one batch, cached)
2. Per-day synthesis - one task per day (one batch, cached per day)
3. Balancing - whole-trip rebalance (cached)
4. Personalization - preference framing (never cached)
5. Enrichment - description rewrite and categorization (cached, optional)
"""

import logging
import uuid
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

from backend.app.config import Settings, get_settings
from backend.app.generation.cancellation import CancelToken
from backend.app.generation.dispatcher import BatchDispatcher
from backend.app.generation.errors import EmptyResultError, TripValidationError
from backend.app.generation.executor import PromptTask
from backend.app.llm.prompts import PromptKind, render_prompt
from backend.app.models.itinerary import Activity, DayPlan, Itinerary, itinerary_title
from backend.app.models.request import GenerationRequest
from backend.app.utils.jsonify import as_dict_list, extract_json

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

MAX_ATTRACTIONS = 15
MAX_RESTAURANTS = 10


def validate_request(request: GenerationRequest, max_days: int = 14) -> int:
    """Check trip invariants and return the day count.

    Raises:
        TripValidationError: Blank destination, reversed dates or too many days
    """
    if not request.destination:
        raise TripValidationError("Destination is required")
    if request.end_date < request.start_date:
        raise TripValidationError("End date must be after start date")
    day_count = request.day_count
    if day_count > max_days:
        raise TripValidationError(f"Itineraries cannot exceed {max_days} days")
    return day_count


def attraction_count(day_count: int) -> int:
    return min(day_count * 3, MAX_ATTRACTIONS)


def restaurant_count(day_count: int) -> int:
    return min(day_count * 2, MAX_RESTAURANTS)


def pick_day_candidates(
    day_index: int,
    attractions: list[dict[str, Any]],
    restaurants: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Two attractions and one restaurant for a 0-based day.

    Indices wrap around when there are fewer candidates than days need.
    """
    picks: list[dict[str, Any]] = []
    if attractions:
        first = (day_index * 2) % len(attractions)
        picks.append(attractions[first])
        second = (day_index * 2 + 1) % len(attractions)
        if second != first:
            picks.append(attractions[second])
    if restaurants:
        picks.append(restaurants[day_index % len(restaurants)])
    return picks


def _new_activity_id() -> str:
    return f"act-{uuid.uuid4().hex[:12]}"


def ensure_unique_activity_ids(itinerary: Itinerary) -> int:
    """Assign missing ids and re-id later duplicates. Returns ids changed."""
    seen: set[str] = set()
    changed = 0
    for activity in itinerary.all_activities():
        if activity.id is None or activity.id in seen:
            new_id = _new_activity_id()
            while new_id in seen:
                new_id = _new_activity_id()
            if activity.id is not None:
                logger.debug(f"Activity id collision on {activity.id}, reassigned {new_id}")
            activity.id = new_id
            changed += 1
        seen.add(activity.id)
    return changed


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def activity_from_dict(item: dict[str, Any]) -> Activity | None:
    """Build an Activity from loosely shaped model output."""
    title = _text(item.get("title") or item.get("name"))
    if not title:
        return None
    raw_id = item.get("id")
    return Activity(
        id=_text(raw_id) or None,
        title=title,
        description=_text(item.get("description") or item.get("notes")),
        location=_text(item.get("location") or item.get("address")),
        time=_text(item.get("time") or item.get("startTime")),
        type=_text(item.get("type")) or "activity",
        category=_text(item.get("category")) or None,
        subcategory=_text(item.get("subcategory")) or None,
    )


def _activities_from(items: list[dict[str, Any]]) -> list[Activity]:
    activities = (activity_from_dict(item) for item in items)
    return [a for a in activities if a is not None]


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _itinerary_payload(itinerary: Itinerary) -> dict[str, Any]:
    return itinerary.model_dump(mode="json", exclude={"itinerary_id", "title"})


class GenerationPipeline:
    """Composes dispatcher batches into a complete itinerary."""

    def __init__(self, dispatcher: BatchDispatcher, settings: Settings | None = None) -> None:
        self._dispatcher = dispatcher
        self._settings = settings or get_settings()

    async def run(
        self,
        request: GenerationRequest,
        cancel_token: CancelToken,
        on_progress: ProgressCallback | None = None,
    ) -> Itinerary:
        """Generate an itinerary from scratch.

        Raises:
            TripValidationError: Before any network call
            EmptyResultError: Final itinerary has no days
            GenerationCancelledError, TransientServiceError,
            PermanentServiceError, ParseError: From the executor, unmodified
        """
        report = on_progress or (lambda progress, step: None)
        report(0, "Preparing your itinerary...")
        day_count = validate_request(request, self._settings.max_trip_days)
        report(5, "Analyzing your destination...")

        base_key = self._base_key(request)
        logger.info(
            f"[pipeline] generating {day_count}-day itinerary for {request.destination}"
        )

        attractions, restaurants = await self._gather_candidates(
            request, day_count, base_key, cancel_token
        )
        report(15, "Finding the best attractions for you...")

        draft = await self._synthesize_days(
            request, day_count, base_key, attractions, restaurants, cancel_token
        )
        report(35, "Building your day-by-day plan...")

        balanced = await self._balance(draft, base_key, cancel_token)
        report(55, "Balancing your schedule...")

        personalized = await self._personalize(balanced, request, cancel_token)
        report(70, "Personalizing your trip...")

        if self._settings.enrich_activities:
            await self._enhance_descriptions(personalized, cancel_token)
            report(80, "Adding rich descriptions to activities...")
            await self._categorize(personalized, cancel_token)
            report(90, "Categorizing activities...")

        cancel_token.throw_if_cancelled()
        report(100, "Your itinerary is ready!")
        return personalized

    async def run_update(
        self,
        itinerary: Itinerary,
        instruction: str,
        cancel_token: CancelToken,
        on_progress: ProgressCallback | None = None,
    ) -> Itinerary:
        """Re-synthesize an existing itinerary according to a change request."""
        report = on_progress or (lambda progress, step: None)
        report(0, "Reading your change request...")
        if not instruction.strip():
            raise TripValidationError("Describe what you would like to change")
        if not itinerary.days:
            raise TripValidationError(
                "No itinerary to update. Please generate an itinerary first."
            )
        report(10, "Updating your itinerary...")

        task = PromptTask(
            prompt=render_prompt(
                PromptKind.update,
                {"instruction": instruction.strip(), "itinerary": _itinerary_payload(itinerary)},
            ),
            label=PromptKind.update.value,
            temperature=0.7,
            result_parser=extract_json,
        )
        [response] = await self._dispatcher.dispatch(
            [task], cancel_token=cancel_token, use_cache=False
        )
        report(75, "Applying your changes...")

        updated = self._coerce_itinerary(
            response, itinerary, stage="update", allow_trip_changes=True
        )
        cancel_token.throw_if_cancelled()
        report(100, "Your itinerary has been updated!")
        return updated

    def _base_key(self, request: GenerationRequest) -> str:
        interests = ",".join(i.id for i in request.interests)
        return self._dispatcher.cache.make_key(
            "itinerary",
            request.destination.lower(),
            request.start_date.isoformat(),
            request.end_date.isoformat(),
            interests,
        )

    async def _gather_candidates(
        self,
        request: GenerationRequest,
        day_count: int,
        base_key: str,
        cancel_token: CancelToken,
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        dietary_ids = ",".join(sorted(d.id for d in request.preferences.dietary_preferences))
        tasks = [
            PromptTask(
                prompt=render_prompt(
                    PromptKind.attractions,
                    {
                        "destination": request.destination,
                        "count": attraction_count(day_count),
                        "interests": request.interest_labels,
                    },
                ),
                label=PromptKind.attractions.value,
                temperature=0.8,
                cache_key=f"{base_key}:attractions",
                result_parser=extract_json,
            ),
            PromptTask(
                prompt=render_prompt(
                    PromptKind.dining,
                    {
                        "destination": request.destination,
                        "count": restaurant_count(day_count),
                        "dietaryPreferences": request.dietary_labels,
                    },
                ),
                label=PromptKind.dining.value,
                temperature=0.8,
                cache_key=f"{base_key}:dining:{dietary_ids}",
                result_parser=extract_json,
            ),
        ]
        attractions_raw, restaurants_raw = await self._dispatcher.dispatch(
            tasks, cancel_token=cancel_token
        )
        attractions = as_dict_list(attractions_raw, ("attractions", "items"))
        restaurants = as_dict_list(restaurants_raw, ("restaurants", "items"))
        if len(attractions) < day_count * 2 or not restaurants:
            logger.warning(
                f"[pipeline] few candidates for {day_count} days "
                f"({len(attractions)} attractions, {len(restaurants)} restaurants), reusing"
            )
        return attractions, restaurants

    async def _synthesize_days(
        self,
        request: GenerationRequest,
        day_count: int,
        base_key: str,
        attractions: list[dict[str, Any]],
        restaurants: list[dict[str, Any]],
        cancel_token: CancelToken,
    ) -> Itinerary:
        tasks = []
        for i in range(day_count):
            tasks.append(
                PromptTask(
                    prompt=render_prompt(
                        PromptKind.day_plan,
                        {
                            "dayNumber": i + 1,
                            "date": (request.start_date + timedelta(days=i)).isoformat(),
                            "destination": request.destination,
                            "activities": pick_day_candidates(i, attractions, restaurants),
                            "dietaryPreferences": request.dietary_labels,
                            "transportMode": request.preferences.transport_mode,
                            "pace": request.preferences.pace.value,
                        },
                    ),
                    label=PromptKind.day_plan.value,
                    temperature=0.7,
                    cache_key=f"{base_key}:day{i + 1}",
                    result_parser=extract_json,
                )
            )
        day_results = await self._dispatcher.dispatch(tasks, cancel_token=cancel_token)

        draft = Itinerary(
            itinerary_id=uuid.uuid4().hex,
            title=itinerary_title(request.destination, request.start_date, request.end_date),
            destination=request.destination,
            start_date=request.start_date,
            end_date=request.end_date,
            days=[
                DayPlan(
                    day_number=i + 1,
                    date=request.start_date + timedelta(days=i),
                    activities=_activities_from(
                        as_dict_list(result, ("orderedActivities", "activities"))
                    ),
                )
                for i, result in enumerate(day_results)
            ],
        )
        ensure_unique_activity_ids(draft)
        return draft

    async def _balance(
        self, draft: Itinerary, base_key: str, cancel_token: CancelToken
    ) -> Itinerary:
        task = PromptTask(
            prompt=render_prompt(PromptKind.balance, {"itinerary": _itinerary_payload(draft)}),
            label=PromptKind.balance.value,
            temperature=0.7,
            cache_key=f"{base_key}:balanced",
            result_parser=extract_json,
        )
        [response] = await self._dispatcher.dispatch([task], cancel_token=cancel_token)
        return self._coerce_itinerary(response, draft, stage="balance")

    async def _personalize(
        self, balanced: Itinerary, request: GenerationRequest, cancel_token: CancelToken
    ) -> Itinerary:
        prefs = request.preferences
        task = PromptTask(
            prompt=render_prompt(
                PromptKind.personalize,
                {
                    "itinerary": _itinerary_payload(balanced),
                    "travelStyle": prefs.travel_style,
                    "travelGroup": prefs.travel_group,
                    "budget": prefs.budget,
                    "interests": request.interest_labels,
                    "pace": prefs.pace.value,
                    "dietaryPreferences": request.dietary_labels,
                },
            ),
            label=PromptKind.personalize.value,
            temperature=0.8,
            result_parser=extract_json,
        )
        # Personalization must reflect the latest preferences
        [response] = await self._dispatcher.dispatch(
            [task], cancel_token=cancel_token, use_cache=False
        )
        return self._coerce_itinerary(response, balanced, stage="personalize")

    async def _enhance_descriptions(self, itinerary: Itinerary, cancel_token: CancelToken) -> None:
        activities = itinerary.all_activities()
        batch_size = max(1, self._settings.description_batch_size)

        # Chunked to keep concurrent requests under provider rate limits
        for start in range(0, len(activities), batch_size):
            batch = activities[start : start + batch_size]
            tasks = [
                PromptTask(
                    prompt=render_prompt(
                        PromptKind.describe,
                        {
                            "activity": activity.title,
                            "description": activity.description,
                            "destination": itinerary.destination,
                        },
                    ),
                    label=PromptKind.describe.value,
                    temperature=0.8,
                    cache_key=f"description:{itinerary.destination.lower()}:{activity.id}",
                    response_format="text",
                )
                for activity in batch
            ]
            descriptions = await self._dispatcher.dispatch(tasks, cancel_token=cancel_token)
            for activity, description in zip(batch, descriptions):
                if isinstance(description, str) and description:
                    activity.description = description

    async def _categorize(self, itinerary: Itinerary, cancel_token: CancelToken) -> None:
        activities = itinerary.all_activities()
        if not activities:
            return
        batch_size = max(1, self._settings.categorization_batch_size)
        batches = [activities[i : i + batch_size] for i in range(0, len(activities), batch_size)]
        tasks = [
            PromptTask(
                prompt=render_prompt(
                    PromptKind.categorize,
                    {
                        "activities": [
                            {
                                "id": a.id,
                                "title": a.title,
                                "description": a.description,
                                "type": a.type,
                            }
                            for a in batch
                        ]
                    },
                ),
                label=PromptKind.categorize.value,
                temperature=0.3,
                cache_key=f"categorization:{','.join(str(a.id) for a in batch)}",
                result_parser=extract_json,
            )
            for batch in batches
        ]
        results = await self._dispatcher.dispatch(tasks, cancel_token=cancel_token)

        categories: dict[str, dict[str, Any]] = {}
        for result in results:
            for entry in as_dict_list(result, ("categories", "activities")):
                if entry.get("id") is not None:
                    categories[str(entry["id"])] = entry
        for activity in activities:
            entry = categories.get(str(activity.id), {})
            activity.category = _text(entry.get("category")) or "Activity"
            activity.subcategory = _text(entry.get("subcategory"))

    def _coerce_itinerary(
        self,
        response: Any,
        fallback: Itinerary,
        *,
        stage: str,
        allow_trip_changes: bool = False,
    ) -> Itinerary:
        """Normalize a model itinerary against the previous stage's result.

        A response without a ``days`` array falls back to ``fallback``. An
        empty ``days`` array is an EmptyResultError. Missing days are taken
        from ``fallback``; extra days are dropped.
        """
        data = response
        if isinstance(data, dict) and isinstance(data.get("itinerary"), dict):
            data = data["itinerary"]
        days_data = data.get("days") if isinstance(data, dict) else None
        if not isinstance(days_data, list):
            logger.warning(f"[pipeline] {stage} response has no days, keeping previous result")
            return fallback.model_copy(deep=True)
        if not days_data:
            raise EmptyResultError(f"{stage} produced an itinerary with no days")

        destination = fallback.destination
        start, end = fallback.start_date, fallback.end_date
        if allow_trip_changes:
            destination = _text(data.get("destination")) or destination
            new_start = _parse_date(data.get("start_date") or data.get("startDate"))
            new_end = _parse_date(data.get("end_date") or data.get("endDate"))
            if new_start and new_end and new_end >= new_start:
                start, end = new_start, new_end
            if (end - start).days + 1 > self._settings.max_trip_days:
                raise TripValidationError(
                    f"Itineraries cannot exceed {self._settings.max_trip_days} days"
                )

        day_count = (end - start).days + 1
        by_number: dict[int, list[Activity]] = {}
        for position, day in enumerate(days_data):
            if not isinstance(day, dict):
                continue
            raw_number = day.get("day_number") or day.get("dayNumber") or position + 1
            try:
                number = int(raw_number)
            except (TypeError, ValueError):
                number = position + 1
            if 1 <= number <= day_count and number not in by_number:
                by_number[number] = _activities_from(as_dict_list(day.get("activities"), ()))

        # fallback may be the caller's itinerary, so borrowed activities are copied
        previous = {
            d.day_number: [a.model_copy() for a in d.activities] for d in fallback.days
        }
        days = [
            DayPlan(
                day_number=n,
                date=start + timedelta(days=n - 1),
                activities=by_number.get(n, previous.get(n, [])),
            )
            for n in range(1, day_count + 1)
        ]
        if not by_number:
            raise EmptyResultError(f"{stage} produced no usable days")

        itinerary = Itinerary(
            itinerary_id=fallback.itinerary_id,
            title=itinerary_title(destination, start, end),
            destination=destination,
            start_date=start,
            end_date=end,
            days=days,
        )
        reassigned = ensure_unique_activity_ids(itinerary)
        if reassigned:
            logger.info(f"[pipeline] {stage}: assigned {reassigned} activity ids")
        return itinerary
