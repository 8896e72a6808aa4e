import asyncio
from datetime import date, datetime
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from models.event import Calendar, Event, RecurrenceFrequency, RecurrencePattern
from services.calendar_controller import CalendarController, UICallbacks
from services.scoped_edit import EditScope
from services.zoom import ZoomState, ZoomWindow, ZoomWindowController

MONDAY = date(2024, 3, 4)
SLOT = 40


class FakePersistence:
    def __init__(self, result=True):
        self.result = result
        self.calls = []

    async def _record(self, name, *args):
        self.calls.append((name,) + args)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    async def on_event_update(self, event):
        return await self._record("on_event_update", event)

    async def on_delete_this_occurrence(self, event):
        return await self._record("on_delete_this_occurrence", event)

    async def on_delete_this_and_future(self, event):
        return await self._record("on_delete_this_and_future", event)

    async def on_delete_all_in_series(self, event):
        return await self._record("on_delete_all_in_series", event)

    async def on_modify_this_occurrence(self, event, fields):
        return await self._record("on_modify_this_occurrence", event, fields)

    async def on_modify_this_and_future(self, event, fields):
        return await self._record("on_modify_this_and_future", event, fields)

    async def on_modify_all_in_series(self, event, fields):
        return await self._record("on_modify_all_in_series", event, fields)


class Recorder:
    def __init__(self):
        self.edited = []
        self.created = []
        self.errors = []

    def callbacks(self):
        return UICallbacks(
            open_edit_dialog=self.edited.append,
            open_new_event_dialog=lambda day, all_day: self.created.append((day, all_day)),
            report_error=self.errors.append,
        )


def _ev(event_id, day, start_hour, end_hour, **kwargs):
    return Event(
        id=event_id,
        title=event_id,
        calendar_id=kwargs.pop("calendar_id", "work"),
        start_time=datetime(day.year, day.month, day.day, start_hour),
        end_time=datetime(day.year, day.month, day.day, end_hour),
        **kwargs,
    )


def _controller(events, result=True):
    # 08:00-12:00 window: 15 minute ticks of 40px, so 09:00 sits at y=160
    zoom = ZoomWindowController(ZoomState(ZoomWindow(8, 12), True))
    ui = Recorder()
    persistence = FakePersistence(result)
    controller = CalendarController(
        persistence,
        events=events,
        calendars=[Calendar(id="work", name="Work"), Calendar(id="ics-feed", name="Feed")],
        ui=ui.callbacks(),
        zoom=zoom,
        week_start=MONDAY,
        slot_height=SLOT,
        column_width=100,
    )
    controller.layout_week()
    return controller, persistence, ui


def _drag(controller, start, end):
    controller.pointer_down(*start)
    controller.pointer_move(*end)
    return asyncio.run(controller.pointer_up())


def test_week_range_and_navigation():
    controller, _, _ = _controller([])
    assert controller.range == (datetime(2024, 3, 4), datetime(2024, 3, 11))
    controller.shift_week(1)
    assert controller.days[0] == date(2024, 3, 11)
    controller.go_to_week(date(2024, 3, 7))
    assert controller.week_start == MONDAY


def test_hidden_calendars_are_not_laid_out():
    controller, _, _ = _controller([_ev("a", MONDAY, 9, 10), _ev("b", MONDAY, 9, 10, calendar_id="home")])
    controller.set_calendars([Calendar(id="work", name="Work"), Calendar(id="home", name="Home", is_visible=False)])
    assert [e.id for e in controller.visible_events()] == ["a"]


def test_tap_opens_edit_dialog_for_event():
    event = _ev("a", MONDAY, 9, 10)
    controller, _, ui = _controller([event])
    controller.tap(50, 200)
    assert ui.edited == [event]
    assert ui.created == []


def test_tap_on_empty_slot_opens_new_event_dialog():
    controller, _, ui = _controller([_ev("a", MONDAY, 9, 10)])
    controller.tap(150, 100)
    controller.tap_all_day(MONDAY)
    assert ui.created == [(date(2024, 3, 5), False), (MONDAY, True)]


def test_hit_test_picks_resize_edges():
    controller, _, _ = _controller([_ev("a", MONDAY, 9, 10)])
    assert controller.hit_test(50, 162)[1].value == "top"
    assert controller.hit_test(50, 317)[1].value == "bottom"
    assert controller.hit_test(50, 240)[1].value == "move"
    assert controller.hit_test(50, 20) is None


def test_click_without_motion_opens_dialog():
    event = _ev("a", MONDAY, 9, 10)
    controller, persistence, ui = _controller([event])
    controller.pointer_down(50, 200)
    asyncio.run(controller.pointer_up(51, 201))
    assert ui.edited == [event]
    assert persistence.calls == []


def test_drop_updates_optimistically_and_persists():
    controller, persistence, _ = _controller([_ev("a", MONDAY, 9, 10)])
    outcome = _drag(controller, (50, 200), (150, 40))
    assert outcome.kind.value == "move"
    moved = controller.events[0]
    assert moved.start_time == datetime(2024, 3, 5, 8)
    assert moved.end_time == datetime(2024, 3, 5, 9)
    assert persistence.calls == [("on_event_update", moved)]


def test_failed_persistence_keeps_local_state_and_reports():
    controller, persistence, ui = _controller([_ev("a", MONDAY, 9, 10)], result=False)
    _drag(controller, (50, 200), (50, 40))
    assert controller.events[0].start_time == datetime(2024, 3, 4, 8)
    assert len(persistence.calls) == 1
    assert len(ui.errors) == 1


def test_persistence_exception_is_reported():
    controller, _, ui = _controller([_ev("a", MONDAY, 9, 10)], result=RuntimeError("disk full"))
    ok = asyncio.run(controller.delete(controller.events[0]))
    assert ok is False
    assert controller.events == []
    assert len(ui.errors) == 1


def test_read_only_edits_make_no_calls():
    feed = _ev("ics-1", MONDAY, 9, 10, calendar_id="ics-feed")
    controller, persistence, ui = _controller([feed])
    assert controller.pointer_down(50, 200) is None
    assert asyncio.run(controller.delete(feed)) is False
    assert asyncio.run(controller.modify(feed, EditScope.SERIES, {"title": "x"})) is False
    assert persistence.calls == []
    assert len(ui.errors) == 2
    assert controller.events == [feed]


def test_events_in_read_only_calendar_are_not_editable():
    event = _ev("a", MONDAY, 9, 10, calendar_id="ics-feed")
    controller, persistence, _ = _controller([event])
    assert not controller.is_editable(event)
    assert asyncio.run(controller.save_event(event)) is False
    assert persistence.calls == []


def test_invalid_modify_is_rejected_before_persisting():
    event = _ev("a", MONDAY, 9, 10)
    controller, persistence, ui = _controller([event])
    fields = {"start_time": datetime(2024, 3, 4, 11), "end_time": datetime(2024, 3, 4, 10)}
    assert asyncio.run(controller.modify(event, EditScope.SERIES, fields)) is False
    assert persistence.calls == []
    assert ui.errors


def test_drop_on_occurrence_detaches_it():
    master = _ev("m", MONDAY, 9, 10, recurrence=RecurrencePattern(RecurrenceFrequency.DAILY))
    controller, persistence, _ = _controller([master])
    _drag(controller, (150, 200), (150, 40))

    name, instance, fields = persistence.calls[0]
    assert name == "on_modify_this_occurrence"
    assert instance.id == "m-recurrence-1"
    assert fields == {"start_time": datetime(2024, 3, 5, 8), "end_time": datetime(2024, 3, 5, 9)}

    by_id = {e.id: e for e in controller.events}
    assert date(2024, 3, 5) in by_id["m"].recurrence_exceptions
    assert by_id["m-single-20240305"].start_time == datetime(2024, 3, 5, 8)


def test_scoped_delete_routes_to_matching_callback():
    master = _ev("m", MONDAY, 9, 10, recurrence=RecurrencePattern(RecurrenceFrequency.DAILY))
    controller, persistence, _ = _controller([master])
    third = [e for e in controller.visible_events() if e.occurrence_index == 2][0]
    assert asyncio.run(controller.delete(third, EditScope.THIS_AND_FUTURE)) is True
    assert persistence.calls == [("on_delete_this_and_future", third)]
    assert controller.events[0].recurrence.end_date == date(2024, 3, 5)


def test_save_event_appends_new_event():
    controller, persistence, _ = _controller([])
    event = _ev("n", MONDAY, 10, 11)
    assert asyncio.run(controller.save_event(event)) is True
    assert controller.events == [event]
    assert persistence.calls == [("on_event_update", event)]


def test_escape_hides_reparent_target():
    group = _ev("g", MONDAY, 8, 12, is_group_event=True)
    child = _ev("c", date(2024, 3, 5), 9, 10)
    controller, _, _ = _controller([group, child])
    controller.pointer_down(150, 200)
    controller.pointer_move(50, 200)
    assert controller.drag.reparent_target == group
    controller.key_pressed("Escape")
    assert controller.drag.reparent_target is None
    controller.teardown()
    assert not controller.drag.is_active


def test_move_of_clipped_event_keeps_grab_point():
    # 07:00-10:00 is clipped to the 08:00 window start
    controller, _, _ = _controller([_ev("a", MONDAY, 7, 10)])
    controller.pointer_down(50, 160)
    candidate = controller.pointer_move(50, 200)
    assert candidate.start_time == datetime(2024, 3, 4, 7, 15)
    assert candidate.end_time == datetime(2024, 3, 4, 10, 15)


def test_deleting_group_keeps_children_visible():
    group = _ev("g", MONDAY, 9, 11, is_group_event=True)
    child = _ev("c", MONDAY, 9, 10, parent_group_event_id="g")
    controller, persistence, _ = _controller([group, child])
    assert asyncio.run(controller.delete(group)) is True
    assert [(e.id, e.parent_group_event_id) for e in controller.events] == [("c", None)]
    assert [geo.event.id for geo in controller.layout_week().timed[MONDAY]] == ["c"]
    assert persistence.calls == [("on_delete_all_in_series", group)]
