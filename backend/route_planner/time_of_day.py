from __future__ import annotations

from datetime import datetime

from .models import TimeOfDay

_ALIASES: dict[str, TimeOfDay] = {
    "am": TimeOfDay.MORNING,
    "noon": TimeOfDay.AFTERNOON,
    "pm": TimeOfDay.AFTERNOON,
    "evening_peak": TimeOfDay.EVENING,
    "overnight": TimeOfDay.NIGHT,
}


def time_of_day_for(departure_time: datetime | None) -> TimeOfDay:
    """Deterministic time-of-day bucket for a departure time.

    Bands are intentionally coarse so cache keys stay reusable across a bucket.
    """
    if departure_time is None:
        return TimeOfDay.MORNING

    hour = int(departure_time.hour)

    if 5 <= hour <= 11:
        return TimeOfDay.MORNING
    if 12 <= hour <= 16:
        return TimeOfDay.AFTERNOON
    if 17 <= hour <= 20:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def is_weekend(departure_time: datetime | None) -> bool:
    if departure_time is None:
        return False
    return departure_time.weekday() >= 5


def parse_time_of_day(value: str | TimeOfDay) -> TimeOfDay:
    if isinstance(value, TimeOfDay):
        return value
    key = str(value or "").strip().lower()
    try:
        return TimeOfDay(key)
    except ValueError:
        pass
    if key in _ALIASES:
        return _ALIASES[key]
    raise ValueError(f"unknown time of day: {value!r}")
