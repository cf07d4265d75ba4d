from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, List, Optional, Tuple

from zoneinfo import ZoneInfo

from .config import settings

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)


def now() -> dt.datetime:
    return dt.datetime.now(UTC)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(UTC)


def from_db_datetime(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def day_bounds(day: dt.date, days: int = 1) -> Tuple[dt.datetime, dt.datetime]:
    start_local = dt.datetime.combine(day, dt.time.min, tzinfo=LOCAL_TZ)
    end_local = dt.datetime.combine(day + dt.timedelta(days=days), dt.time.min, tzinfo=LOCAL_TZ)
    return start_local.astimezone(UTC), end_local.astimezone(UTC)


def normalize_text(value: Any) -> Optional[str]:
    """Return stripped text, or ``None`` for missing/blank values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_tags(values: Iterable[Any]) -> List[str]:
    seen: set[str] = set()
    normalized: List[str] = []
    for value in values:
        candidate = normalize_text(value)
        if not candidate or candidate in seen:
            continue
        normalized.append(candidate)
        seen.add(candidate)
    return normalized


def duration_parts(value: dt.timedelta) -> Tuple[int, int]:
    """Split a duration into whole seconds and the nanosecond remainder."""
    whole_seconds = value.days * 86400 + value.seconds
    return whole_seconds, value.microseconds * 1000


def format_duration(value: dt.timedelta) -> str:
    total_minutes = int(value.total_seconds()) // 60
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"
