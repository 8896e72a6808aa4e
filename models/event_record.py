# streamline/models/event_record.py
import json
from typing import Optional
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from helpers.datetime_utils import parse_iso_date, utc_now
from models.event import Event, RecurrencePattern


class EventRecord(SQLModel, table=True):
    __tablename__ = "calendar_event"

    id: str = Field(primary_key=True)
    calendar_id: str = Field(index=True)
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    # naive local time, never converted to UTC
    start_time: datetime = Field(index=True, sa_type=DateTime(timezone=False))
    end_time: datetime = Field(sa_type=DateTime(timezone=False))
    all_day: bool = False
    is_group_event: bool = False
    parent_group_event_id: Optional[str] = Field(default=None, index=True)
    recurrence_rule: Optional[str] = None        # JSON: frequency / interval / end_date
    recurrence_exception: Optional[str] = None   # JSON list of ISO dates
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


def record_to_event(record: EventRecord) -> Event:
    exceptions = set()
    if record.recurrence_exception:
        try:
            raw = json.loads(record.recurrence_exception)
        except json.JSONDecodeError:
            raw = []
        exceptions = {parse_iso_date(item) for item in raw}
        exceptions.discard(None)
    return Event(
        id=record.id,
        title=record.title,
        description=record.description,
        location=record.location,
        calendar_id=record.calendar_id,
        start_time=record.start_time,
        end_time=record.end_time,
        all_day=record.all_day,
        is_group_event=record.is_group_event,
        parent_group_event_id=record.parent_group_event_id,
        recurrence=RecurrencePattern.from_rule(record.recurrence_rule),
        recurrence_exceptions=frozenset(exceptions),
    )


def apply_event_to_record(record: EventRecord, event: Event) -> EventRecord:
    record.title = event.title
    record.description = event.description
    record.location = event.location
    record.calendar_id = event.calendar_id
    record.start_time = event.start_time
    record.end_time = event.end_time
    record.all_day = event.all_day
    record.is_group_event = event.is_group_event
    record.parent_group_event_id = event.parent_group_event_id
    record.recurrence_rule = event.recurrence.to_rule() if event.recurrence else None
    record.recurrence_exception = (
        json.dumps(sorted(d.isoformat() for d in event.recurrence_exceptions))
        if event.recurrence_exceptions
        else None
    )
    record.updated_at = utc_now()
    return record


def event_to_record(event: Event) -> EventRecord:
    return apply_event_to_record(
        EventRecord(
            id=event.id,
            calendar_id=event.calendar_id,
            title=event.title,
            start_time=event.start_time,
            end_time=event.end_time,
        ),
        event,
    )


__all__ = ["EventRecord", "apply_event_to_record", "event_to_record", "record_to_event"]
