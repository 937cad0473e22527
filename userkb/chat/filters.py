"""Publisher filter state: normalization, validation and update modes.

A filter state is a plain dict keyed by the names the marketplace UI uses
(``daMin``, ``priceMax``, ``niche``...). It is always passed explicitly; no
code reads it from request or module globals.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List
from urllib.parse import urlencode

FilterState = Dict[str, Any]

# Order matters: it is the query-string order of the publishers URL.
NUMERIC_FIELDS = (
    "daMin", "daMax", "paMin", "paMax", "drMin", "drMax",
    "spamMin", "spamMax", "priceMin", "priceMax",
)
STRING_FIELDS = ("niche", "country", "language")
FILTER_FIELDS = NUMERIC_FIELDS + STRING_FIELDS + ("trafficMin", "backlinkNature", "availability")
INTEGER_FIELDS = set(NUMERIC_FIELDS) | {"trafficMin"}
LOWERCASE_FIELDS = {"niche", "country"}

# Fields that describe the same constraint; a "replace" request swaps the whole group.
FILTER_GROUPS: Dict[str, str] = {
    "daMin": "da", "daMax": "da",
    "drMin": "dr", "drMax": "dr",
    "paMin": "pa", "paMax": "pa",
    "spamMin": "spam", "spamMax": "spam",
    "priceMin": "price", "priceMax": "price",
    "trafficMin": "traffic",
    "niche": "niche",
    "country": "country",
    "language": "language",
    "backlinkNature": "backlinkNature",
    "availability": "availability",
}

SCORE_FIELDS = {"daMin", "daMax", "drMin", "drMax", "paMin", "paMax", "spamMin", "spamMax"}
RANGE_PAIRS = (
    ("daMin", "daMax"),
    ("drMin", "drMax"),
    ("paMin", "paMax"),
    ("spamMin", "spamMax"),
    ("priceMin", "priceMax"),
)

MODE_CLEAR = "clear"
MODE_REPLACE = "replace"
MODE_MERGE = "merge"
MODE_NEW = "new"

_CLEAR_PATTERN = re.compile(
    r"\b(clear|reset)\b.*\bfilters?\b|\bremove\s+(all\s+)?(the\s+)?filters?\b|\bstart\s+over\b"
    r"|\b(clear|reset)\s+(all|everything)\b",
    re.IGNORECASE,
)
_REPLACE_PATTERN = re.compile(r"\b(instead|actually|change\s+(it\s+)?to|switch\s+to)\b", re.IGNORECASE)
_MERGE_PATTERN = re.compile(r"\b(also|plus|additionally|as\s+well)\b", re.IGNORECASE)
_LEADING_AND = re.compile(r"^\s*and\b", re.IGNORECASE)

_TRUE_STRINGS = {"true", "1", "yes", "available"}
_FALSE_STRINGS = {"false", "0", "no", "unavailable"}


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be a number")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").lstrip("$")
        try:
            return int(float(cleaned))
        except ValueError as exc:
            raise ValueError(f"'{key}' must be a number") from exc
    raise ValueError(f"'{key}' must be a number")


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"'{key}' must be a boolean")


def normalize_filters(raw: Any) -> FilterState:
    """Keep known fields only, drop empty values and coerce types.

    Raises:
        ValueError: if ``raw`` is not a mapping or a value has the wrong type
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("Filter state must be an object")

    normalized: FilterState = {}
    for key in FILTER_FIELDS:
        if key not in raw:
            continue
        value = raw[key]
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        if key in INTEGER_FIELDS:
            normalized[key] = _coerce_int(key, value)
        elif key == "availability":
            normalized[key] = _coerce_bool(key, value)
        else:
            text = str(value).strip()
            normalized[key] = text.lower() if key in LOWERCASE_FIELDS else text
    return normalized


def validate_filters(filters: FilterState) -> List[str]:
    """Return a list of human-readable problems; empty when the state is valid."""
    errors: List[str] = []
    for key in SCORE_FIELDS:
        value = filters.get(key)
        if value is not None and not 0 <= value <= 100:
            errors.append(f"{key} must be between 0 and 100")
    for key in ("priceMin", "priceMax", "trafficMin"):
        value = filters.get(key)
        if value is not None and value < 0:
            errors.append(f"{key} cannot be negative")
    for low_key, high_key in RANGE_PAIRS:
        low, high = filters.get(low_key), filters.get(high_key)
        if low is not None and high is not None and low > high:
            errors.append(f"{low_key} cannot be greater than {high_key}")
    return errors


def detect_filter_mode(message: str) -> str:
    """Classify how a request wants to change the current filters.

    Precedence: clear, then replace, then merge; anything else starts fresh.
    """
    text = message or ""
    if _CLEAR_PATTERN.search(text):
        return MODE_CLEAR
    if _REPLACE_PATTERN.search(text):
        return MODE_REPLACE
    if _MERGE_PATTERN.search(text) or _LEADING_AND.search(text):
        return MODE_MERGE
    return MODE_NEW


def apply_filter_mode(mode: str, current: FilterState, new: FilterState) -> FilterState:
    if mode == MODE_CLEAR:
        return {}
    if mode == MODE_MERGE:
        combined = dict(current)
        combined.update(new)
        return combined
    if mode == MODE_REPLACE:
        touched = {FILTER_GROUPS[key] for key in new if key in FILTER_GROUPS}
        combined = {key: value for key, value in current.items() if FILTER_GROUPS.get(key) not in touched}
        combined.update(new)
        return combined
    return dict(new)


def build_publishers_url(filters: FilterState) -> str:
    params = []
    for key in FILTER_FIELDS:
        if key not in filters:
            continue
        value = filters[key]
        if isinstance(value, bool):
            value = "true" if value else "false"
        params.append((key, str(value)))
    return f"/publishers?{urlencode(params)}"


def describe_filters(filters: FilterState) -> str:
    """Context line for prompts."""
    if not filters:
        return "No filters currently applied"
    parts = [f"{key}={filters[key]}" for key in FILTER_FIELDS if key in filters]
    return "Current filters: " + ", ".join(parts)
