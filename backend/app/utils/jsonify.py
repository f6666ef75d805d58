"""Helpers for pulling JSON out of free-form model output."""

import json
import re
from typing import Any

from backend.app.generation.errors import ParseError

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def _outermost_span(text: str) -> str | None:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start : end + 1]


def extract_json(text: str) -> Any:
    """Parse JSON wrapped in markdown fences or surrounded by prose.

    Raises:
        ParseError: No parseable JSON document found
    """
    match = _FENCED_JSON.search(text)
    candidate = match.group(1) if match else _outermost_span(text)
    if candidate is None:
        raise ParseError("no JSON document found in response")

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    # Models often leave trailing commas behind
    try:
        return json.loads(_TRAILING_COMMA.sub(r"\1", candidate))
    except json.JSONDecodeError as e:
        raise ParseError(f"malformed JSON in response: {e.msg}") from e


def as_dict_list(value: Any, keys: tuple[str, ...]) -> list[dict[str, Any]]:
    """Return the list of objects held in ``value``.

    Accepts a bare list or an object holding the list under one of ``keys``
    (falling back to its first list-valued field).
    """
    items: Any = None
    if isinstance(value, list):
        items = value
    elif isinstance(value, dict):
        for key in keys:
            if isinstance(value.get(key), list):
                items = value[key]
                break
        else:
            items = next((v for v in value.values() if isinstance(v, list)), None)
    if not items:
        return []
    return [item for item in items if isinstance(item, dict)]
