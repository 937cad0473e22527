from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> str:
    """Return an ISO formatted UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


def _parse_iso_datetime(value: Optional[Any]) -> Optional[datetime]:
    """Parse ISO strings or unix timestamps into timezone-aware datetimes (UTC fallback for naive)."""
    if value is None:
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    # Handle numeric timestamps (unix epoch)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OSError):
            return None

    if not isinstance(value, str):
        return None

    candidate = value.strip()
    if not candidate:
        return None

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(candidate)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def _normalize_timestamp(raw: Any) -> str:
    """Validate and normalise an incoming timestamp string to UTC ISO format."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("Timestamp must be a non-empty ISO formatted string")

    parsed = _parse_iso_datetime(raw)
    if parsed is None:
        raise ValueError("Invalid ISO timestamp")

    return parsed.astimezone(timezone.utc).isoformat()
