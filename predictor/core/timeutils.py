from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

# Epoch values at or above this are milliseconds (1e11 seconds is past year 5000).
_EPOCH_MS_THRESHOLD = 1e11


def utcnow() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware_utc(value: datetime) -> datetime:
    """
    Ensure datetime is timezone-aware in UTC.

    - If naive, assume it is UTC and attach tzinfo.
    - If aware, convert to UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert datetime to aware UTC; pass None through."""
    if value is None:
        return None
    return ensure_aware_utc(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse the timestamp shapes found in stored and exported records.

    Accepts datetimes, ISO-8601 strings (a trailing "Z" is allowed), epoch
    seconds or JavaScript epoch milliseconds, and exported document
    timestamps such as {"seconds": ...} or {"_seconds": ...}. Blank values
    give None; anything else unparseable raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
        if abs(seconds) >= _EPOCH_MS_THRESHOLD:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            raise ValueError(f"not a timestamp: {value!r}")
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_aware_utc(datetime.fromisoformat(text))
