"""SQLModel table for user calendars and subscribed feeds."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from helpers.datetime_utils import utc_now
from models.event import Calendar


class CalendarRecord(SQLModel, table=True):
    __tablename__ = "calendar"

    id: str = Field(primary_key=True)
    name: str
    color: str = "#4F46E5"
    is_visible: bool = True
    is_default: bool = False
    is_read_only: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    def to_calendar(self) -> Calendar:
        return Calendar(
            id=self.id,
            name=self.name,
            color=self.color,
            is_visible=self.is_visible,
            is_default=self.is_default,
            is_read_only=self.is_read_only,
        )


__all__ = ["CalendarRecord"]
