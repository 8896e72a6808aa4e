"""Week view state: events, zoom, drag gestures and scoped edits.

The controller owns the in-memory event list the view renders from. Changes are
applied optimistically and then handed to the persistence callbacks; a failed
write is logged and reported but never rolled back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from core.settings import UI
from helpers.datetime_utils import minutes_between, monday_of, start_of_day, week_days
from models.event import Calendar, Event
from services.drag import DragCandidate, DragEngine, DragMode, DragSession, DropKind, DropOutcome
from services.geometry import (
    AllDayPlacement,
    ChildPlacement,
    DayGrid,
    EventGeometry,
    geometry_at,
    layout_all_day,
    layout_day,
    layout_group_children,
)
from services.recurrence import expand_events
from services.scoped_edit import EditAction, EditScope, ReadOnlyEventError, ScopedEditResolver
from services.zoom import Tick, ZoomWindow, ZoomWindowController

logger = logging.getLogger("streamline.calendar")

# pointer distance from an event edge that grabs a resize handle
RESIZE_HANDLE_PX = 6


class PersistenceCallbacks(Protocol):
    async def on_event_update(self, event: Event) -> bool: ...
    async def on_delete_this_occurrence(self, event: Event) -> bool: ...
    async def on_delete_this_and_future(self, event: Event) -> bool: ...
    async def on_delete_all_in_series(self, event: Event) -> bool: ...
    async def on_modify_this_occurrence(self, event: Event, fields: Mapping[str, Any]) -> bool: ...
    async def on_modify_this_and_future(self, event: Event, fields: Mapping[str, Any]) -> bool: ...
    async def on_modify_all_in_series(self, event: Event, fields: Mapping[str, Any]) -> bool: ...


def _noop(*_args) -> None:
    return None


@dataclass
class UICallbacks:
    open_edit_dialog: Callable[[Event], None] = _noop
    open_new_event_dialog: Callable[[date, bool], None] = _noop
    report_error: Callable[[str], None] = _noop


@dataclass(frozen=True)
class WeekLayout:
    days: Tuple[date, ...]
    timed: Dict[date, List[EventGeometry]]
    all_day: List[AllDayPlacement]
    children: Dict[str, List[ChildPlacement]]
    grid: DayGrid
    ticks: List[Tick]
    axis_height: float

    def geometries(self) -> List[EventGeometry]:
        return [geo for day in self.days for geo in self.timed.get(day, [])]


_CALLBACK_NAMES = {
    (EditAction.DELETE, EditScope.OCCURRENCE): "on_delete_this_occurrence",
    (EditAction.DELETE, EditScope.THIS_AND_FUTURE): "on_delete_this_and_future",
    (EditAction.DELETE, EditScope.SERIES): "on_delete_all_in_series",
    (EditAction.MODIFY, EditScope.OCCURRENCE): "on_modify_this_occurrence",
    (EditAction.MODIFY, EditScope.THIS_AND_FUTURE): "on_modify_this_and_future",
    (EditAction.MODIFY, EditScope.SERIES): "on_modify_all_in_series",
}


class CalendarController:
    def __init__(
        self,
        persistence: PersistenceCallbacks,
        *,
        events: Iterable[Event] = (),
        calendars: Iterable[Calendar] = (),
        ui: Optional[UICallbacks] = None,
        zoom: Optional[ZoomWindowController] = None,
        week_start: Optional[date] = None,
        slot_height: float = UI.calendar.slot_height,
        column_width: float = UI.calendar.day_column_width,
    ):
        self.persistence = persistence
        self.ui = ui or UICallbacks()
        self.events: List[Event] = list(events)
        self.calendars: Dict[str, Calendar] = {c.id: c for c in calendars}
        self.zoom = zoom or ZoomWindowController()
        self.slot_height = slot_height
        self.column_width = column_width
        self.week_start = monday_of(week_start or date.today())
        self.drag = DragEngine(self.zoom, slot_height=slot_height)
        self.layout: Optional[WeekLayout] = None

    # ----- state -----
    @property
    def resolver(self) -> ScopedEditResolver:
        return ScopedEditResolver(self.calendars.values())

    @property
    def days(self) -> List[date]:
        return week_days(self.week_start)

    @property
    def range(self) -> Tuple[datetime, datetime]:
        start = start_of_day(self.week_start)
        return start, start + timedelta(days=7)

    def set_events(self, events: Iterable[Event]) -> None:
        self.events = list(events)

    def set_calendars(self, calendars: Iterable[Calendar]) -> None:
        self.calendars = {c.id: c for c in calendars}

    def go_to_week(self, day: date) -> None:
        self.week_start = monday_of(day)

    def shift_week(self, weeks: int) -> None:
        self.week_start += timedelta(weeks=weeks)

    def is_editable(self, event: Event) -> bool:
        try:
            self.resolver.ensure_editable(event)
        except ReadOnlyEventError:
            return False
        return True

    def visible_events(self) -> List[Event]:
        """Events of the current week with recurring masters expanded."""
        hidden = {c.id for c in self.calendars.values() if not c.is_visible}
        start, end = self.range
        return [e for e in expand_events(self.events, start, end) if e.calendar_id not in hidden]

    def master_of(self, event: Event) -> Optional[Event]:
        master_id = event.recurrence_master_id
        if master_id is None:
            return None
        return next((e for e in self.events if e.id == master_id), None)

    # ----- layout -----
    def _minutes_per_slot(self) -> int:
        state = self.zoom.state
        return state.granularity.main_minutes if state.is_active else 60

    def axis_height(self) -> float:
        state = self.zoom.state
        unit = self._minutes_per_slot()
        return (state.end_minutes - state.start_minutes) / unit * self.slot_height

    def layout_week(self) -> WeekLayout:
        events = self.visible_events()
        state = self.zoom.state
        days = tuple(self.days)
        timed = {day: layout_day(events, day, state, self.slot_height) for day in days}
        children = {
            geo.event.id: layout_group_children(geo.event, events)
            for geos in timed.values()
            for geo in geos
            if geo.event.is_group_event
        }
        height = self.axis_height()
        grid = DayGrid.build(days, column_width=self.column_width, height=height)
        self.drag.set_grid(grid)
        self.layout = WeekLayout(
            days=days,
            timed=timed,
            all_day=layout_all_day(events, days),
            children=children,
            grid=grid,
            ticks=self.zoom.ticks(),
            axis_height=height,
        )
        return self.layout

    def _current_layout(self) -> WeekLayout:
        return self.layout or self.layout_week()

    def hit_test(self, x: float, y: float, *, exclude_id: Optional[str] = None) -> Optional[Tuple[EventGeometry, DragMode]]:
        """Topmost event box under the pointer and the gesture its edge implies."""
        layout = self._current_layout()
        column = layout.grid.column_at(x)
        if column is None:
            return None
        hit = geometry_at(layout.timed.get(column.day, []), column, x, y, exclude_id=exclude_id)
        if hit is None:
            return None
        rel_y = y - column.top
        top, bottom = hit.vertical.top, hit.vertical.top + hit.vertical.height
        mode = DragMode.MOVE
        if hit.vertical.height > 3 * RESIZE_HANDLE_PX:
            if rel_y - top <= RESIZE_HANDLE_PX and not hit.vertical.clipped_top:
                mode = DragMode.RESIZE_TOP
            elif bottom - rel_y <= RESIZE_HANDLE_PX and not hit.vertical.clipped_bottom:
                mode = DragMode.RESIZE_BOTTOM
        return hit, mode

    # ----- zoom -----
    def wheel(self, delta: float, pointer_y: float) -> ZoomWindow:
        window = self.zoom.wheel(delta, pointer_y, self.axis_height())
        self.layout_week()
        return window

    def pan(self, delta_y: float) -> ZoomWindow:
        window = self.zoom.pan(delta_y, self.axis_height())
        self.layout_week()
        return window

    def clear_zoom(self) -> None:
        self.zoom.clear()
        self.layout_week()

    # ----- pointer -----
    def pointer_down(self, x: float, y: float) -> Optional[DragSession]:
        hit = self.hit_test(x, y)
        if hit is None:
            return None
        geo, mode = hit
        if not self.is_editable(geo.event):
            logger.info("Event %s is read-only; drag ignored", geo.event.id)
            return None
        column = self._current_layout().grid.column_for(geo.day)
        # anchor on the real start, not the top of a clipped box
        clipped = minutes_between(geo.event.start_time, geo.vertical.visible_start)
        offset = y - (column.top + geo.vertical.top) + clipped / self._minutes_per_slot() * self.slot_height
        return self.drag.pointer_down(geo.event, x, y, mode=mode, pointer_offset=offset)

    def pointer_move(self, x: float, y: float) -> Optional[DragCandidate]:
        session = self.drag.session
        if session is None:
            return None
        return self.drag.pointer_move(x, y, hover_target=self._hover_target(x, y, session))

    async def pointer_up(self, x: Optional[float] = None, y: Optional[float] = None) -> Optional[DropOutcome]:
        session = self.drag.session
        if session is None:
            return None
        hover = self._hover_target(x, y, session) if x is not None and y is not None else self.drag.hover_target
        outcome = self.drag.pointer_up(x, y, hover_target=hover)
        await self.handle_drop(outcome)
        return outcome

    def tap(self, x: float, y: float) -> None:
        """Tap on the timed grid: edit the event under the pointer or create one."""
        if self.drag.is_active:
            return
        hit = self.hit_test(x, y)
        if hit is not None:
            self.ui.open_edit_dialog(hit[0].event)
            return
        column = self._current_layout().grid.column_at(x)
        if column is not None:
            self.ui.open_new_event_dialog(column.day, False)

    def tap_all_day(self, day: date) -> None:
        self.ui.open_new_event_dialog(day, True)

    def key_pressed(self, key: str) -> None:
        if key == "Escape":
            self.drag.cancel_hover()

    def teardown(self) -> None:
        self.drag.teardown()

    def _hover_target(self, x: float, y: float, session: DragSession) -> Optional[Event]:
        hit = self.hit_test(x, y, exclude_id=session.event.id)
        return hit[0].event if hit else None

    # ----- persistence -----
    async def handle_drop(self, outcome: Optional[DropOutcome]) -> bool:
        if outcome is None:
            return False
        if outcome.kind is DropKind.CLICK:
            self.ui.open_edit_dialog(outcome.event)
            return True
        if outcome.kind is DropKind.REJECTED:
            self.ui.report_error("A group event cannot be placed inside another group event.")
            return False
        if not outcome.changes_event:
            return False

        event = outcome.event
        if event.is_recurrence_instance or event.is_recurring:
            fields: Dict[str, Any] = {"start_time": outcome.start_time, "end_time": outcome.end_time}
            if outcome.kind is DropKind.REPARENT:
                fields["parent_group_event_id"] = outcome.parent_group_event_id
            return await self.modify(event, EditScope.OCCURRENCE, fields)

        updated = outcome.updated_event()
        self.events = [updated if e.id == updated.id else e for e in self.events]
        self.layout_week()
        return await self._persist("on_event_update", updated)

    async def save_event(self, event: Event) -> bool:
        """Create or replace a non-recurring-instance event from the edit dialog."""
        if not self.is_editable(event):
            self.ui.report_error(f"Cannot edit read-only event \"{event.title}\".")
            return False
        if any(e.id == event.id for e in self.events):
            self.events = [event if e.id == event.id else e for e in self.events]
        else:
            self.events.append(event)
        self.layout_week()
        return await self._persist("on_event_update", event)

    async def delete(self, event: Event, scope: EditScope = EditScope.SERIES) -> bool:
        return await self._scoped(event, EditAction.DELETE, scope, None)

    async def modify(self, event: Event, scope: EditScope, fields: Mapping[str, Any]) -> bool:
        return await self._scoped(event, EditAction.MODIFY, scope, fields)

    async def _scoped(
        self,
        event: Event,
        action: EditAction,
        scope: EditScope,
        fields: Optional[Mapping[str, Any]],
    ) -> bool:
        try:
            plan = self.resolver.resolve(event, action, scope, fields, master=self.master_of(event))
            plan = plan.detach_children(self.events)
        except ReadOnlyEventError as exc:
            logger.info("%s", exc)
            self.ui.report_error(f"Cannot edit read-only event \"{event.title}\".")
            return False
        except ValueError as exc:
            logger.warning("Rejected %s of %s: %s", action.value, event.id, exc)
            self.ui.report_error(str(exc))
            return False

        self.events = plan.apply(self.events)
        self.layout_week()
        name = _CALLBACK_NAMES[(action, scope)]
        if action is EditAction.DELETE:
            return await self._persist(name, event)
        return await self._persist(name, event, dict(fields or {}))

    async def _persist(self, name: str, *args) -> bool:
        callback: Callable[..., Awaitable[bool]] = getattr(self.persistence, name)
        try:
            ok = bool(await callback(*args))
        except Exception:
            logger.exception("%s raised for %s", name, args[0].id)
            ok = False
        if not ok:
            logger.warning("%s failed for %s; keeping local state", name, args[0].id)
            self.ui.report_error(f"Could not save changes to \"{args[0].title}\".")
        return ok


__all__ = [
    "CalendarController",
    "PersistenceCallbacks",
    "UICallbacks",
    "WeekLayout",
]
