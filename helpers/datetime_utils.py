"""Shared utilities for naive local date/time arithmetic."""
from __future__ import annotations

import calendar
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Union

UTC = timezone.utc


def snap_minutes(value: float, *, step: int, direction: str = "forward") -> int:
    """Snap ``value`` to ``step`` minutes using the provided ``direction``.

    ``direction`` can be ``forward`` (ceil), ``nearest`` or ``backward``.
    """

    if step <= 0:
        return int(value)
    if direction == "nearest":
        return int(math.floor(value / step + 0.5) * step)
    remainder = value % step
    if remainder == 0:
        return int(value)
    if direction == "backward":
        return int(value - remainder)
    # forward (ceil)
    return int(value + (step - remainder))


def utc_now() -> datetime:
    return datetime.now(UTC)


def start_of_day(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def end_of_day(value: Union[date, datetime]) -> datetime:
    return start_of_day(value) + timedelta(days=1) - timedelta(microseconds=1)


def minutes_since_midnight(value: datetime) -> float:
    return value.hour * 60 + value.minute + value.second / 60


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def monday_of(d: date) -> date:
    return d - timedelta(days=d.weekday())


def week_days(week_start: date, count: int = 7) -> List[date]:
    return [week_start + timedelta(days=i) for i in range(count)]


def add_months(value: datetime, months: int) -> datetime:
    """Shift ``value`` by ``months``; the day is clamped to the target month's length."""

    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def add_years(value: datetime, years: int) -> datetime:
    year = value.year + years
    last_day = calendar.monthrange(year, value.month)[1]
    return value.replace(year=year, day=min(value.day, last_day))


def parse_iso_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a naive local ``datetime``.

    Aware values (``Z`` or an explicit offset) are converted to local time and
    stripped of their tzinfo. Unparseable input yields ``None``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_iso_date(value: Union[str, date, None]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        parsed = parse_iso_datetime(text)
        return parsed.date() if parsed else None


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat()


__all__ = [
    "UTC",
    "add_months",
    "add_years",
    "end_of_day",
    "minutes_between",
    "minutes_since_midnight",
    "monday_of",
    "parse_iso_date",
    "parse_iso_datetime",
    "snap_minutes",
    "start_of_day",
    "to_iso",
    "utc_now",
    "week_days",
]
