"""In-memory calendar types consumed by the layout and editing engine."""
from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from core.settings import READ_ONLY_ID_PREFIX
from helpers.datetime_utils import parse_iso_date, parse_iso_datetime, to_iso

RECURRENCE_ID_MARKER = "-recurrence-"


class RecurrenceFrequency(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: Any) -> "RecurrenceFrequency":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "none").strip().lower())
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class RecurrencePattern:
    frequency: RecurrenceFrequency
    interval: int = 1
    end_date: Optional[date] = None

    def __post_init__(self):
        if self.interval < 1:
            raise ValueError(f"Recurrence interval must be >= 1, got {self.interval}")

    @property
    def is_recurring(self) -> bool:
        return self.frequency is not RecurrenceFrequency.NONE

    def to_rule(self) -> str:
        return json.dumps(
            {
                "frequency": self.frequency.value,
                "interval": self.interval,
                "end_date": self.end_date.isoformat() if self.end_date else None,
            }
        )

    @classmethod
    def from_rule(cls, rule: Any) -> Optional["RecurrencePattern"]:
        """Build a pattern from a JSON rule string or dict; ``None`` if not recurring."""
        if not rule:
            return None
        if isinstance(rule, str):
            try:
                rule = json.loads(rule)
            except json.JSONDecodeError:
                return None
        if not isinstance(rule, Mapping):
            return None
        frequency = RecurrenceFrequency.parse(rule.get("frequency"))
        if frequency is RecurrenceFrequency.NONE:
            return None
        try:
            interval = max(int(rule.get("interval") or 1), 1)
        except (TypeError, ValueError):
            interval = 1
        return cls(frequency, interval, parse_iso_date(rule.get("end_date")))


@dataclass(frozen=True)
class Calendar:
    id: str
    name: str
    color: str = "#4F46E5"
    is_visible: bool = True
    is_default: bool = False
    is_read_only: bool = False

    @property
    def read_only(self) -> bool:
        return self.is_read_only or self.id.startswith(READ_ONLY_ID_PREFIX)


@dataclass(frozen=True)
class Event:
    id: str
    title: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    calendar_id: str = ""
    description: Optional[str] = None
    location: Optional[str] = None
    all_day: bool = False
    is_group_event: bool = False
    parent_group_event_id: Optional[str] = None
    recurrence: Optional[RecurrencePattern] = None
    recurrence_exceptions: FrozenSet[date] = field(default_factory=frozenset)
    # set only on expanded occurrences
    recurrence_master_id: Optional[str] = None
    occurrence_index: Optional[int] = None

    @property
    def is_read_only(self) -> bool:
        return self.id.startswith(READ_ONLY_ID_PREFIX)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None and self.recurrence.is_recurring

    @property
    def is_recurrence_instance(self) -> bool:
        return self.recurrence_master_id is not None

    @property
    def has_valid_times(self) -> bool:
        return (
            isinstance(self.start_time, datetime)
            and isinstance(self.end_time, datetime)
            and self.end_time > self.start_time
        )

    @property
    def duration(self):
        return self.end_time - self.start_time

    def overlaps(self, other: "Event") -> bool:
        return self.start_time < other.end_time and other.start_time < self.end_time

    def with_exceptions(self, dates: Iterable[date]) -> "Event":
        return replace(self, recurrence_exceptions=frozenset(self.recurrence_exceptions) | set(dates))

    # ----- boundary (ISO strings / JSON rules) -----
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "calendar_id": self.calendar_id,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "all_day": self.all_day,
            "is_group_event": self.is_group_event,
            "parent_group_event_id": self.parent_group_event_id,
            "recurrence_rule": self.recurrence.to_rule() if self.recurrence else None,
            "recurrence_exception": sorted(d.isoformat() for d in self.recurrence_exceptions),
            "recurrence_master_id": self.recurrence_master_id,
            "occurrence_index": self.occurrence_index,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        exceptions = data.get("recurrence_exception") or []
        if isinstance(exceptions, str):
            try:
                exceptions = json.loads(exceptions)
            except json.JSONDecodeError:
                exceptions = []
        parsed_exceptions = {parse_iso_date(item) for item in exceptions}
        parsed_exceptions.discard(None)
        master_id, index = data.get("recurrence_master_id"), data.get("occurrence_index")
        if master_id is None or index is None:
            # occurrences built by the expander only carry their identity in the id
            master_id, index = occurrence_ref(str(data.get("id") or "")) or (None, None)
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            description=data.get("description") or None,
            location=data.get("location") or None,
            calendar_id=str(data.get("calendar_id") or data.get("calendarId") or ""),
            start_time=parse_iso_datetime(data.get("start_time") or data.get("startTime")),
            end_time=parse_iso_datetime(data.get("end_time") or data.get("endTime")),
            all_day=bool(data.get("all_day") or data.get("isAllDay") or False),
            is_group_event=bool(data.get("is_group_event") or False),
            parent_group_event_id=data.get("parent_group_event_id") or None,
            recurrence=RecurrencePattern.from_rule(data.get("recurrence_rule")),
            recurrence_exceptions=frozenset(parsed_exceptions),
            recurrence_master_id=master_id,
            occurrence_index=int(index) if index is not None else None,
        )


def occurrence_ref(event_id: str) -> Optional[Tuple[str, int]]:
    """Return ``(master_id, n)`` encoded in an occurrence id, if any."""
    master_id, marker, index = event_id.rpartition(RECURRENCE_ID_MARKER)
    if not marker or not master_id or not index.isdigit():
        return None
    return master_id, int(index)


def master_id_of(event_id: str) -> Optional[str]:
    """Return the master id encoded in an occurrence id, if any."""
    ref = occurrence_ref(event_id)
    return ref[0] if ref else None


__all__ = [
    "Calendar",
    "Event",
    "RECURRENCE_ID_MARKER",
    "RecurrenceFrequency",
    "RecurrencePattern",
    "master_id_of",
    "occurrence_ref",
]
