import asyncio
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
import sys

import pytest
from sqlalchemy import text
from sqlmodel import Session, create_engine

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from models.event import Calendar, Event, RecurrenceFrequency, RecurrencePattern
from models.event_record import EventRecord
from services.event_service import EventService
from services.recurrence import expand_occurrences
from services.scoped_edit import EditAction, EditPlan, EditScope
from storage import migrations
from storage.db import init_db


@pytest.fixture()
def engine():
    engine = create_engine("sqlite:///:memory:")
    init_db(engine)
    return engine


@pytest.fixture()
def service(engine):
    def factory():
        return Session(engine)

    svc = EventService(session_factory=factory)
    svc.save_calendar(Calendar(id="work", name="Work", is_default=True))
    return svc


def _weekly():
    return Event(
        id="m",
        title="Standup",
        calendar_id="work",
        start_time=datetime(2024, 3, 4, 9),
        end_time=datetime(2024, 3, 4, 10),
        recurrence=RecurrencePattern(RecurrenceFrequency.WEEKLY, 1, date(2024, 3, 25)),
    )


def test_save_and_reload_round_trips_recurrence(service):
    master = _weekly().with_exceptions([date(2024, 3, 18)])
    service.save(master)
    loaded = service.get("m")
    assert loaded == master


def test_save_updates_existing_record(service):
    service.save(_weekly())
    service.save(replace(_weekly(), title="Daily"))
    assert service.get("m").title == "Daily"
    assert len(service.list_events()) == 1


def test_save_rejects_instances_and_invalid_times(service):
    instance = expand_occurrences(_weekly(), datetime(2024, 3, 10), datetime(2024, 3, 12))[0]
    with pytest.raises(ValueError):
        service.save(instance)
    with pytest.raises(ValueError):
        service.save(Event(id="x", title="x", start_time=datetime(2024, 3, 4, 10), end_time=datetime(2024, 3, 4, 9)))


def test_list_in_range_includes_earlier_masters(service):
    service.save(_weekly())
    service.save(Event(id="old", title="old", start_time=datetime(2024, 1, 1, 9), end_time=datetime(2024, 1, 1, 10)))
    service.save(Event(id="now", title="now", start_time=datetime(2024, 3, 19, 9), end_time=datetime(2024, 3, 19, 10)))
    ids = [e.id for e in service.list_in_range(datetime(2024, 3, 18), datetime(2024, 3, 25))]
    assert ids == ["m", "now"]


def test_listeners_receive_ids(service):
    seen = []

    def listener(event_id):
        seen.append(event_id)

    EventService.subscribe("after_create", listener)
    EventService.subscribe("after_delete", listener)
    try:
        service.save(_weekly())
        service.delete("m")
    finally:
        EventService.unsubscribe("after_create", listener)
        EventService.unsubscribe("after_delete", listener)
    assert seen == ["m", "m"]


def test_unknown_listener_event_rejected():
    with pytest.raises(ValueError):
        EventService.subscribe("after_explode", lambda _id: None)


def test_delete_detaches_group_children(service):
    service.save(Event(id="g", title="g", start_time=datetime(2024, 3, 4, 9), end_time=datetime(2024, 3, 4, 12),
                       is_group_event=True))
    service.save(Event(id="c", title="c", start_time=datetime(2024, 3, 4, 10), end_time=datetime(2024, 3, 4, 11),
                       parent_group_event_id="g"))
    assert service.delete("g") is True
    assert service.get("c").parent_group_event_id is None
    assert service.delete("g") is False


def test_apply_plan_is_one_transaction(service):
    service.save(_weekly())
    ghost = Event(id="ghost", title="ghost", start_time=datetime(2024, 3, 4, 9), end_time=datetime(2024, 3, 4, 10))
    new = Event(id="n", title="n", start_time=datetime(2024, 3, 5, 9), end_time=datetime(2024, 3, 5, 10))
    with pytest.raises(LookupError):
        service.apply_plan(EditPlan(creates=(new,), updates=(ghost,), deletes=("m",)))
    assert service.get("n") is None
    assert service.get("m") is not None


def test_delete_this_occurrence_callback(service):
    service.save(_weekly())
    second = expand_occurrences(_weekly(), datetime(2024, 3, 10), datetime(2024, 3, 12))[0]
    assert asyncio.run(service.on_delete_this_occurrence(second)) is True
    assert service.get("m").recurrence_exceptions == frozenset({date(2024, 3, 11)})


def test_modify_this_and_future_callback_splits(service):
    service.save(_weekly())
    second = expand_occurrences(_weekly(), datetime(2024, 3, 10), datetime(2024, 3, 12))[0]
    ok = asyncio.run(service.on_modify_this_and_future(second, {"title": "Retro"}))
    assert ok is True
    assert service.get("m").recurrence.end_date == date(2024, 3, 10)
    successor = service.get("m-from-20240311")
    assert successor.title == "Retro"
    assert successor.recurrence.end_date == date(2024, 3, 25)


def test_modify_all_in_series_by_master_id(service):
    service.save(_weekly())
    assert asyncio.run(service.on_modify_all_in_series(_weekly(), {"location": "Room 2"})) is True
    assert service.get("m").location == "Room 2"


def test_delete_all_in_series(service):
    service.save(_weekly())
    third = expand_occurrences(_weekly(), datetime(2024, 3, 17), datetime(2024, 3, 19))[0]
    assert asyncio.run(service.on_delete_all_in_series(third)) is True
    assert service.get("m") is None


def test_callbacks_report_failures(service):
    missing = expand_occurrences(_weekly(), datetime(2024, 3, 10), datetime(2024, 3, 12))[0]
    assert asyncio.run(service.on_delete_this_occurrence(missing)) is False
    read_only = Event(id="ics-1", title="feed", start_time=datetime(2024, 3, 4, 9), end_time=datetime(2024, 3, 4, 10))
    assert asyncio.run(service.on_event_update(read_only)) is False
    assert service.get("ics-1") is None


def test_event_update_callback_saves(service):
    event = Event(id="e", title="Lunch", start_time=datetime(2024, 3, 4, 12), end_time=datetime(2024, 3, 4, 13),
                  calendar_id="work")
    assert asyncio.run(service.on_event_update(event)) is True
    assert service.get("e") == event


def test_read_only_calendar_flag(service):
    service.save_calendar(Calendar(id="ics-holidays", name="Holidays"))
    assert service.get_calendar("ics-holidays").is_read_only
    event = Event(id="h", title="h", start_time=datetime(2024, 3, 4), end_time=datetime(2024, 3, 5),
                  calendar_id="ics-holidays", all_day=True)
    assert asyncio.run(service.on_event_update(event)) is False


def test_default_calendar_and_cascade_delete(service):
    assert service.ensure_default_calendar().id == "work"
    service.save(_weekly())
    service.delete_calendar("work")
    assert service.get("m") is None
    assert service.list_calendars() == []
    assert service.ensure_default_calendar().id == "personal"


def test_migrations_add_missing_columns():
    engine = create_engine("sqlite:///:memory:")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE calendar_event (id TEXT PRIMARY KEY, calendar_id TEXT, title TEXT, "
            "start_time DATETIME, end_time DATETIME)"
        ))
        conn.execute(text("CREATE TABLE calendar (id TEXT PRIMARY KEY, name TEXT)"))
        conn.execute(text("INSERT INTO calendar (id, name) VALUES ('ics-feed', 'Feed'), ('home', 'Home')"))
    migrations.run_all(engine)
    with engine.connect() as conn:
        columns = {row[1] for row in conn.execute(text("PRAGMA table_info('calendar_event')"))}
        flags = dict(conn.execute(text("SELECT id, is_read_only FROM calendar")).all())
    assert {"location", "is_group_event", "parent_group_event_id", "recurrence_exception"} <= columns
    assert flags == {"ics-feed": 1, "home": 0}


def _third_through_boundary():
    third = expand_occurrences(_weekly(), datetime(2024, 3, 17), datetime(2024, 3, 19))[0]
    return Event.from_dict(third.to_dict())


def test_delete_occurrence_received_as_dict(service):
    service.save(_weekly())
    assert asyncio.run(service.on_delete_this_occurrence(_third_through_boundary())) is True
    assert service.get("m").recurrence_exceptions == frozenset({date(2024, 3, 18)})


def test_delete_this_and_future_received_as_dict_keeps_earlier_dates(service):
    service.save(_weekly())
    assert asyncio.run(service.on_delete_this_and_future(_third_through_boundary())) is True
    assert service.get("m").recurrence.end_date == date(2024, 3, 17)


def test_occurrence_known_only_by_id_is_resolved_as_occurrence(service):
    service.save(_weekly())
    bare = Event(id="m-recurrence-1", title="Standup", calendar_id="work",
                 start_time=datetime(2024, 3, 11, 9), end_time=datetime(2024, 3, 11, 10))
    plan = service.resolve(bare, EditAction.DELETE, EditScope.OCCURRENCE)
    assert plan.updates[0].recurrence_exceptions == frozenset({date(2024, 3, 11)})


def test_deleting_group_through_plan_detaches_children(service):
    group = Event(id="g", title="g", calendar_id="work", start_time=datetime(2024, 3, 4, 9),
                  end_time=datetime(2024, 3, 4, 11), is_group_event=True)
    service.save(group)
    service.save(Event(id="c", title="c", calendar_id="work", start_time=datetime(2024, 3, 4, 9),
                       end_time=datetime(2024, 3, 4, 10), parent_group_event_id="g"))
    updated = []

    def listener(event_id):
        updated.append(event_id)

    EventService.subscribe("after_update", listener)
    try:
        assert asyncio.run(service.on_delete_all_in_series(group)) is True
    finally:
        EventService.unsubscribe("after_update", listener)
    assert service.get("g") is None
    assert service.get("c").parent_group_event_id is None
    assert updated == ["c"]


def test_times_are_stored_naive(service, engine):
    assert EventRecord.__table__.c.start_time.type.timezone is False
    service.save(_weekly())
    with Session(engine) as s:
        record = s.get(EventRecord, "m")
        assert record.start_time == datetime(2024, 3, 4, 9)
        assert record.start_time.tzinfo is None
