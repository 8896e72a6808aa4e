"""Calendar types and ORM models exposed by the Streamline application."""
from .event import Calendar, Event, RecurrenceFrequency, RecurrencePattern
from .event_record import EventRecord
from .calendar_record import CalendarRecord

__all__ = [
    "Calendar",
    "CalendarRecord",
    "Event",
    "EventRecord",
    "RecurrenceFrequency",
    "RecurrencePattern",
]
