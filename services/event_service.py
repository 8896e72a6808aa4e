# streamline/services/event_service.py
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Iterable, List, Mapping, Optional

from sqlmodel import select
from sqlalchemy import and_, or_

from core.settings import LOG_DIR, LOGGING
from models.calendar_record import CalendarRecord
from models.event import Calendar, Event, occurrence_ref
from models.event_record import EventRecord, apply_event_to_record, event_to_record, record_to_event
from services.scoped_edit import EditAction, EditPlan, EditScope, ReadOnlyEventError, ScopedEditResolver
from storage.db import get_session


DEFAULT_CALENDAR_ID = "personal"


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGING.logger_name)
    if not logger.handlers:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            LOG_DIR / LOGGING.filename,
            maxBytes=LOGGING.max_bytes,
            backupCount=LOGGING.backup_count,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(LOGGING.level)
    return logger


class EventService:
    """SQLite-backed event store implementing the calendar persistence callbacks."""

    _listeners = {
        "after_create": set(),
        "after_update": set(),
        "after_delete": set(),
    }

    def __init__(self, *, session_factory=get_session) -> None:
        self._session_factory = session_factory
        self.logger = _ensure_logger()

    # ---------- listeners ----------
    @classmethod
    def subscribe(cls, event: str, callback):
        if event not in cls._listeners:
            raise ValueError(f"Unsupported event: {event}")
        cls._listeners[event].add(callback)

    @classmethod
    def unsubscribe(cls, event: str, callback):
        if event not in cls._listeners:
            return
        cls._listeners[event].discard(callback)

    @classmethod
    def _emit(cls, event: str, event_id: str):
        listeners = list(cls._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(event_id)
            except Exception:
                logging.getLogger(LOGGING.logger_name).exception("Listener failed for %s(%s)", event, event_id)

    # ---------- calendars ----------
    def list_calendars(self) -> List[Calendar]:
        with self._session_factory() as s:
            stmt = select(CalendarRecord).order_by(CalendarRecord.is_default.desc(), CalendarRecord.name.asc())
            return [record.to_calendar() for record in s.exec(stmt)]

    def get_calendar(self, calendar_id: str) -> Optional[Calendar]:
        with self._session_factory() as s:
            record = s.get(CalendarRecord, calendar_id)
            return record.to_calendar() if record else None

    def save_calendar(self, calendar: Calendar) -> Calendar:
        with self._session_factory() as s:
            record = s.get(CalendarRecord, calendar.id) or CalendarRecord(id=calendar.id, name=calendar.name)
            record.name = calendar.name
            record.color = calendar.color
            record.is_visible = calendar.is_visible
            record.is_default = calendar.is_default
            record.is_read_only = calendar.read_only
            s.add(record)
            s.commit()
            s.refresh(record)
            return record.to_calendar()

    def ensure_default_calendar(self) -> Calendar:
        with self._session_factory() as s:
            record = s.exec(select(CalendarRecord).where(CalendarRecord.is_default == True)).first()  # noqa: E712
            if record:
                return record.to_calendar()
        return self.save_calendar(Calendar(id=DEFAULT_CALENDAR_ID, name="Personal", is_default=True))

    def delete_calendar(self, calendar_id: str) -> None:
        """Remove a calendar together with its events."""
        with self._session_factory() as s:
            record = s.get(CalendarRecord, calendar_id)
            if record is None:
                return
            events = list(s.exec(select(EventRecord).where(EventRecord.calendar_id == calendar_id)))
            removed = [event.id for event in events]
            for event in events:
                s.delete(event)
            s.delete(record)
            s.commit()
        for event_id in removed:
            self._emit("after_delete", event_id)

    # ---------- events ----------
    def get(self, event_id: str) -> Optional[Event]:
        with self._session_factory() as s:
            record = s.get(EventRecord, event_id)
            return record_to_event(record) if record else None

    def list_events(self, calendar_ids: Optional[Iterable[str]] = None) -> List[Event]:
        with self._session_factory() as s:
            stmt = select(EventRecord)
            if calendar_ids is not None:
                stmt = stmt.where(EventRecord.calendar_id.in_(list(calendar_ids)))
            stmt = stmt.order_by(EventRecord.start_time.asc(), EventRecord.id.asc())
            return [record_to_event(r) for r in s.exec(stmt)]

    def list_in_range(self, start: datetime, end: datetime) -> List[Event]:
        """Events overlapping ``[start, end)`` plus every recurring master starting before ``end``."""
        with self._session_factory() as s:
            stmt = (
                select(EventRecord)
                .where(
                    or_(
                        and_(EventRecord.start_time < end, EventRecord.end_time > start),
                        and_(EventRecord.recurrence_rule != None, EventRecord.start_time < end),  # noqa: E711
                    )
                )
                .order_by(EventRecord.start_time.asc(), EventRecord.id.asc())
            )
            return [record_to_event(r) for r in s.exec(stmt)]

    def save(self, event: Event, *, emit: bool = True) -> Event:
        """Insert or update ``event``; occurrences cannot be stored directly."""
        if event.is_recurrence_instance:
            raise ValueError(f"Occurrence {event.id} is derived and cannot be stored")
        if not event.has_valid_times:
            raise ValueError(f"Event {event.id}: end time must be after start time")
        with self._session_factory() as s:
            record = s.get(EventRecord, event.id)
            created = record is None
            if created:
                record = event_to_record(event)
            else:
                apply_event_to_record(record, event)
            s.add(record)
            s.commit()
            s.refresh(record)
            saved = record_to_event(record)
        if emit:
            self._emit("after_create" if created else "after_update", saved.id)
        return saved

    def delete(self, event_id: str, *, emit: bool = True) -> bool:
        with self._session_factory() as s:
            record = s.get(EventRecord, event_id)
            if not record:
                return False
            children = list(s.exec(select(EventRecord).where(EventRecord.parent_group_event_id == event_id)))
            for child in children:
                child.parent_group_event_id = None
                s.add(child)
            s.delete(record)
            s.commit()
        if emit:
            self._emit("after_delete", event_id)
        return True

    def apply_plan(self, plan: EditPlan) -> None:
        """Write an edit plan in a single transaction."""
        if plan.is_empty:
            return
        with self._session_factory() as s:
            for event in plan.creates:
                s.add(event_to_record(event))
            for event in plan.updates:
                record = s.get(EventRecord, event.id)
                if record is None:
                    raise LookupError(f"Event {event.id} not found")
                s.add(apply_event_to_record(record, event))
            for event_id in plan.deletes:
                record = s.get(EventRecord, event_id)
                if record is not None:
                    s.delete(record)
            detached = []
            if plan.deletes:
                orphans = list(s.exec(
                    select(EventRecord).where(
                        EventRecord.parent_group_event_id.in_(list(plan.deletes)),
                        EventRecord.id.not_in(list(plan.deletes)),
                    )
                ))
                for child in orphans:
                    child.parent_group_event_id = None
                    detached.append(child.id)
                    s.add(child)
            s.commit()
        for event_id in detached:
            self._emit("after_update", event_id)
        for event in plan.creates:
            self._emit("after_create", event.id)
        for event in plan.updates:
            self._emit("after_update", event.id)
        for event_id in plan.deletes:
            self._emit("after_delete", event_id)

    def resolve(
        self,
        event: Event,
        action: EditAction,
        scope: EditScope,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> EditPlan:
        """Resolve a scoped edit against the stored master of ``event``."""
        master = None
        ref = occurrence_ref(event.id)
        if not event.is_recurrence_instance and ref is not None:
            # an occurrence that lost its instance fields on the way in
            event = replace(event, recurrence=None, recurrence_master_id=ref[0], occurrence_index=ref[1])
        if event.is_recurrence_instance:
            master = self.get(event.recurrence_master_id)
            if master is None:
                raise LookupError(f"Master event {event.recurrence_master_id} not found")
        resolver = ScopedEditResolver(self.list_calendars())
        return resolver.resolve(event, action, scope, fields, master=master)

    # ---------- persistence callbacks ----------
    async def on_event_update(self, event: Event) -> bool:
        try:
            ScopedEditResolver(self.list_calendars()).ensure_editable(event)
            self.save(event)
        except ReadOnlyEventError as exc:
            self.logger.warning("%s", exc)
            return False
        except Exception:
            self.logger.exception("Failed to save event %s", event.id)
            return False
        self.logger.info("Saved event %s (%s - %s)", event.id, event.start_time, event.end_time)
        return True

    async def on_delete_this_occurrence(self, event: Event) -> bool:
        return self._run(event, EditAction.DELETE, EditScope.OCCURRENCE)

    async def on_delete_this_and_future(self, event: Event) -> bool:
        return self._run(event, EditAction.DELETE, EditScope.THIS_AND_FUTURE)

    async def on_delete_all_in_series(self, event: Event) -> bool:
        return self._run(event, EditAction.DELETE, EditScope.SERIES)

    async def on_modify_this_occurrence(self, event: Event, fields: Mapping[str, Any]) -> bool:
        return self._run(event, EditAction.MODIFY, EditScope.OCCURRENCE, fields)

    async def on_modify_this_and_future(self, event: Event, fields: Mapping[str, Any]) -> bool:
        return self._run(event, EditAction.MODIFY, EditScope.THIS_AND_FUTURE, fields)

    async def on_modify_all_in_series(self, event: Event, fields: Mapping[str, Any]) -> bool:
        return self._run(event, EditAction.MODIFY, EditScope.SERIES, fields)

    def _run(
        self,
        event: Event,
        action: EditAction,
        scope: EditScope,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        try:
            plan = self.resolve(event, action, scope, fields)
            self.apply_plan(plan)
        except ReadOnlyEventError as exc:
            self.logger.warning("%s", exc)
            return False
        except Exception:
            self.logger.exception("Failed to %s %s (%s)", action.value, event.id, scope.value)
            return False
        self.logger.info(
            "%s %s (%s): +%d ~%d -%d",
            action.value,
            event.id,
            scope.value,
            len(plan.creates),
            len(plan.updates),
            len(plan.deletes),
        )
        return True


__all__ = ["DEFAULT_CALENDAR_ID", "EventService"]
