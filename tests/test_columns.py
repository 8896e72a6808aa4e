from datetime import datetime
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from models.event import Event
from services.columns import ColumnSlot, NaiveColumnStrategy, PackedColumnStrategy, assign_columns
from services.overlap import group_overlapping


def _ev(event_id, start_hour, end_hour):
    return Event(
        id=event_id,
        title=event_id,
        start_time=datetime(2024, 3, 4, start_hour),
        end_time=datetime(2024, 3, 4, end_hour),
    )


def test_single_event_takes_full_width():
    slots = assign_columns([[_ev("a", 9, 10)]])
    assert slots == {"a": ColumnSlot(0, 1)}


def test_naive_columns_follow_start_order():
    group = [_ev("c", 11, 12), _ev("a", 9, 12), _ev("b", 10, 11)]
    slots = NaiveColumnStrategy().assign(group)
    assert slots["a"] == ColumnSlot(0, 3)
    assert slots["b"] == ColumnSlot(1, 3)
    assert slots["c"] == ColumnSlot(2, 3)


def test_naive_never_reuses_freed_columns():
    # b ends before c starts, yet c still gets its own column
    events = [_ev("a", 9, 13), _ev("b", 9, 10), _ev("c", 11, 12)]
    slots = assign_columns(group_overlapping(events))
    assert {s.total_columns for s in slots.values()} == {3}
    assert sorted(s.column for s in slots.values()) == [0, 1, 2]


def test_start_ties_break_by_id():
    slots = NaiveColumnStrategy().assign([_ev("b", 9, 10), _ev("a", 9, 10)])
    assert slots["a"].column == 0
    assert slots["b"].column == 1


def test_packed_strategy_reuses_columns_and_spans():
    events = [_ev("a", 9, 13), _ev("b", 9, 10), _ev("c", 11, 12), _ev("d", 12, 14)]
    slots = assign_columns(group_overlapping(events), PackedColumnStrategy())
    assert slots["a"] == ColumnSlot(0, 2)
    assert slots["b"].column == 1
    assert slots["c"].column == 1
    assert slots["d"].column == 1
    assert all(s.total_columns == 2 for s in slots.values())


def test_packed_strategy_widens_into_free_columns():
    events = [_ev("a", 9, 12), _ev("b", 9, 10), _ev("c", 9, 10), _ev("d", 10, 12)]
    slots = PackedColumnStrategy().assign(events)
    assert slots["c"] == ColumnSlot(2, 3, 1)
    assert slots["b"] == ColumnSlot(1, 3, 1)
    assert slots["d"] == ColumnSlot(1, 3, 2)
