from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.granularity import granularity_for, main_interval, preview_interval
from services.zoom import FULL_DAY, ZoomState, ZoomWindow, ZoomWindowController


@pytest.mark.parametrize(
    "hours, main, preview",
    [
        (2, 5, None),
        (3, 15, 5),
        (4, 15, None),
        (6, 30, 15),
        (8, 30, None),
        (10, 60, 30),
        (12, 60, 30),
        (14, 60, None),
        (24, 60, None),
    ],
)
def test_granularity_table(hours, main, preview):
    assert main_interval(hours) == main
    assert preview_interval(hours) == preview


def test_granularity_follows_active_window():
    assert ZoomState(ZoomWindow(9, 11), True).granularity == granularity_for(2)
    assert ZoomState(ZoomWindow(9, 11), True).granularity.main_minutes == 5
    assert ZoomState(ZoomWindow(9, 11), True).granularity.preview_minutes is None
    assert ZoomState(ZoomWindow(8, 14), True).granularity.main_minutes == 30
    assert ZoomState(ZoomWindow(8, 14), True).granularity.preview_minutes == 15
    # inactive state always uses the full day
    assert ZoomState(ZoomWindow(8, 14), False).granularity.main_minutes == 60


def test_invalid_windows_are_rejected():
    with pytest.raises(ValueError):
        ZoomWindow(10, 9)
    with pytest.raises(ValueError):
        ZoomWindow(5, 6)
    with pytest.raises(ValueError):
        ZoomWindow(20, 25)


def test_wheel_zooms_in_around_pointer():
    zoom = ZoomWindowController()
    window = zoom.wheel(-1, pointer_y=240, axis_height=480)
    assert (window.start_hour, window.end_hour) == (1, 23)
    assert zoom.is_active


def test_wheel_zoom_out_never_exceeds_full_day():
    zoom = ZoomWindowController()
    window = zoom.wheel(1, pointer_y=100, axis_height=480)
    assert window == FULL_DAY
    assert zoom.is_active


def test_wheel_shifts_window_at_day_start():
    zoom = ZoomWindowController()
    window = zoom.wheel(-1, pointer_y=0, axis_height=480)
    assert (window.start_hour, window.end_hour) == (0, 22)


def test_wheel_stops_at_minimum_size():
    zoom = ZoomWindowController(ZoomState(ZoomWindow(9, 11), True))
    window = zoom.wheel(-1, pointer_y=240, axis_height=480)
    assert window.size == 2


def test_wheel_recenters_relative_to_current_window():
    zoom = ZoomWindowController(ZoomState(ZoomWindow(8, 14), True))
    # pointer at the top quarter of 8-14 is 09:30, the 4h window starts at round(7.5)
    window = zoom.wheel(-1, pointer_y=120, axis_height=480)
    assert window.size == 4
    assert window.start_hour == round(9.5 - 2)


def test_pan_moves_window_against_pointer():
    zoom = ZoomWindowController(ZoomState(ZoomWindow(8, 14), True))
    window = zoom.pan(40, axis_height=480)
    assert (window.start_hour, window.end_hour) == (6, 12)
    window = zoom.pan(-80, axis_height=480)
    assert (window.start_hour, window.end_hour) == (10, 16)


def test_pan_clamps_and_keeps_size():
    zoom = ZoomWindowController(ZoomState(ZoomWindow(1, 7), True))
    window = zoom.pan(80, axis_height=480)
    assert (window.start_hour, window.end_hour) == (0, 6)
    window = zoom.pan(-10_000, axis_height=480)
    assert (window.start_hour, window.end_hour) == (18, 24)


def test_pan_ignored_when_not_zoomed():
    zoom = ZoomWindowController()
    assert zoom.pan(100, axis_height=480) == FULL_DAY
    assert not zoom.is_active


def test_clear_resets_to_full_day():
    zoom = ZoomWindowController(ZoomState(ZoomWindow(8, 14), True))
    zoom.clear()
    assert zoom.state == ZoomState(FULL_DAY, False)


def test_ticks_include_unlabeled_preview_marks():
    zoom = ZoomWindowController(ZoomState(ZoomWindow(8, 14), True))
    ticks = zoom.ticks()
    assert ticks[0].minute == 480 and ticks[-1].minute == 840
    assert len(ticks) == 25
    assert sum(1 for t in ticks if t.labeled) == 13
    assert ticks[1].label is None
    assert ticks[2].label == "08:30"
    assert ticks[4].label == "09:00"


def test_ticks_full_day_hourly():
    ticks = ZoomWindowController().ticks()
    assert len(ticks) == 25
    assert all(t.labeled for t in ticks)
    assert ticks[-1].label == "24:00"
