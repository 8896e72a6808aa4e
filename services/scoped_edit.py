"""Decides which records change when a recurring event is edited or deleted.

The resolver never performs I/O: it returns an :class:`EditPlan` listing the
records to create, update and delete. Both the optimistic in-memory state and
the persistent store apply the same plan.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from helpers.datetime_utils import parse_iso_datetime
from models.event import Calendar, Event, RecurrencePattern
from services.recurrence import occurrence_start

logger = logging.getLogger("streamline.edit")


class EditScope(str, Enum):
    OCCURRENCE = "occurrence"
    THIS_AND_FUTURE = "this_and_future"
    SERIES = "series"


class EditAction(str, Enum):
    DELETE = "delete"
    MODIFY = "modify"


class ReadOnlyEventError(PermissionError):
    """Raised for edits of events or calendars imported from external feeds."""

    def __init__(self, event_id: str, reason: str = "read-only event"):
        super().__init__(f"Cannot edit {event_id}: {reason}")
        self.event_id = event_id


EDITABLE_FIELDS = frozenset({
    "title",
    "description",
    "location",
    "calendar_id",
    "start_time",
    "end_time",
    "all_day",
    "is_group_event",
    "parent_group_event_id",
})

_TIME_FIELDS = ("start_time", "end_time")


@dataclass(frozen=True)
class EditPlan:
    creates: Tuple[Event, ...] = ()
    updates: Tuple[Event, ...] = ()
    deletes: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)

    def apply(self, events: Sequence[Event]) -> List[Event]:
        """Return a copy of ``events`` with the plan applied."""
        updated = {e.id: e for e in self.updates}
        deleted = set(self.deletes)
        result = [updated.get(e.id, e) for e in events if e.id not in deleted]
        result.extend(self.creates)
        return result

    def detach_children(self, events: Iterable[Event]) -> "EditPlan":
        """Add updates that clear the parent of children whose group is deleted."""
        deleted = set(self.deletes)
        if not deleted:
            return self
        updates = {e.id: e for e in self.updates}
        for event in list(updates.values()) + list(events):
            current = updates.get(event.id, event)
            if current.parent_group_event_id in deleted and current.id not in deleted:
                updates[current.id] = replace(current, parent_group_event_id=None)
        return replace(self, updates=tuple(updates.values()))


def normalize_fields(fields: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate field names and coerce ISO timestamps."""

    cleaned: Dict[str, Any] = {}
    for key, value in (fields or {}).items():
        if key not in EDITABLE_FIELDS:
            raise ValueError(f"Unsupported event field: {key}")
        if key in _TIME_FIELDS:
            parsed = parse_iso_datetime(value)
            if parsed is None:
                raise ValueError(f"Invalid {key}: {value!r}")
            value = parsed
        cleaned[key] = value
    return cleaned


def _apply(base: Event, fields: Mapping[str, Any]) -> Event:
    result = replace(base, **fields)
    if not result.has_valid_times:
        raise ValueError(f"Event {base.id}: end time must be after start time")
    return result


def _series_fields(master: Event, fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Move an edited occurrence time back onto the master's own date."""

    if not any(key in fields for key in _TIME_FIELDS):
        return dict(fields)
    new_start = fields.get("start_time", master.start_time)
    new_end = fields.get("end_time", new_start + master.duration)
    start = datetime.combine(master.start_time.date(), new_start.time())
    adjusted = dict(fields)
    adjusted["start_time"] = start
    adjusted["end_time"] = start + (new_end - new_start)
    return adjusted


def derived_id(master_id: str, day: date, kind: str) -> str:
    """Deterministic id for a record split off ``master_id`` on ``day``."""
    return f"{master_id}-{kind}-{day:%Y%m%d}"


class ScopedEditResolver:
    def __init__(
        self,
        calendars: Iterable[Calendar] = (),
        *,
        id_factory: Callable[[str, date, str], str] = derived_id,
    ):
        self.calendars = {c.id: c for c in calendars}
        self.id_factory = id_factory

    def ensure_editable(self, event: Event) -> None:
        if event.is_read_only:
            raise ReadOnlyEventError(event.id)
        calendar = self.calendars.get(event.calendar_id)
        if calendar is not None and calendar.read_only:
            raise ReadOnlyEventError(event.id, f"calendar {calendar.id} is read-only")

    def resolve(
        self,
        event: Event,
        action: EditAction,
        scope: EditScope = EditScope.SERIES,
        fields: Optional[Mapping[str, Any]] = None,
        *,
        master: Optional[Event] = None,
    ) -> EditPlan:
        self.ensure_editable(event)
        changes = normalize_fields(fields) if action is EditAction.MODIFY else {}

        if event.is_recurrence_instance:
            if master is None or master.id != event.recurrence_master_id:
                raise ValueError(f"Master event {event.recurrence_master_id} not found for {event.id}")
        elif event.is_recurring:
            master = event
        else:
            if action is EditAction.DELETE:
                return EditPlan(deletes=(event.id,))
            return EditPlan(updates=(_apply(event, changes),))

        self.ensure_editable(master)
        logger.info("Resolving %s/%s for %s (master %s)", action.value, scope.value, event.id, master.id)
        if scope is EditScope.OCCURRENCE:
            return self._occurrence(master, event, action, changes)
        if scope is EditScope.THIS_AND_FUTURE:
            return self._this_and_future(master, event, action, changes)
        if action is EditAction.DELETE:
            return EditPlan(deletes=(master.id,))
        return EditPlan(updates=(_apply(master, _series_fields(master, changes)),))

    # ----- scopes -----
    def _occurrence(self, master: Event, event: Event, action: EditAction, changes: Dict[str, Any]) -> EditPlan:
        start = occurrence_start(master, event)
        updated_master = master.with_exceptions([start.date()])
        if action is EditAction.DELETE:
            return EditPlan(updates=(updated_master,))
        standalone = replace(
            master,
            id=self.id_factory(master.id, start.date(), "single"),
            start_time=start,
            end_time=start + master.duration,
            recurrence=None,
            recurrence_exceptions=frozenset(),
            recurrence_master_id=None,
            occurrence_index=None,
        )
        return EditPlan(creates=(_apply(standalone, changes),), updates=(updated_master,))

    def _this_and_future(self, master: Event, event: Event, action: EditAction, changes: Dict[str, Any]) -> EditPlan:
        start = occurrence_start(master, event)
        split_day = start.date()
        truncated_end = split_day - timedelta(days=1)
        pattern = master.recurrence

        if truncated_end < master.start_time.date():
            # first occurrence: nothing remains of the old series
            if action is EditAction.DELETE:
                return EditPlan(deletes=(master.id,))
            return EditPlan(updates=(_apply(master, changes),))

        truncated = replace(
            master,
            recurrence=replace(pattern, end_date=truncated_end),
            recurrence_exceptions=frozenset(d for d in master.recurrence_exceptions if d < split_day),
        )
        if action is EditAction.DELETE:
            return EditPlan(updates=(truncated,))

        successor = replace(
            master,
            id=self.id_factory(master.id, split_day, "from"),
            start_time=start,
            end_time=start + master.duration,
            recurrence=RecurrencePattern(pattern.frequency, pattern.interval, pattern.end_date),
            recurrence_exceptions=frozenset(d for d in master.recurrence_exceptions if d >= split_day),
            recurrence_master_id=None,
            occurrence_index=None,
        )
        return EditPlan(creates=(_apply(successor, changes),), updates=(truncated,))


__all__ = [
    "EDITABLE_FIELDS",
    "EditAction",
    "EditPlan",
    "EditScope",
    "ReadOnlyEventError",
    "ScopedEditResolver",
    "derived_id",
    "normalize_fields",
]
