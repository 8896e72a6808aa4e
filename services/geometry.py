"""Screen geometry for calendar events.

Converts event times plus zoom state into vertical placement, column slots into
horizontal placement, and keeps a render-independent model of the day columns
(``DayGrid``) that the drag engine hit-tests against.
"""
from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.settings import UI
from helpers.datetime_utils import minutes_between, start_of_day
from models.event import Event
from services.columns import DEFAULT_STRATEGY, ColumnSlot, ColumnStrategy, assign_columns
from services.overlap import group_overlapping, timed_events_for_day
from services.zoom import ZoomState

logger = logging.getLogger("streamline.layout")


@dataclass(frozen=True)
class VerticalPlacement:
    top: float
    height: float
    top_pct: float
    height_pct: float
    visible_start: datetime
    visible_end: datetime
    clipped_top: bool = False
    clipped_bottom: bool = False


@dataclass(frozen=True)
class HorizontalPlacement:
    left_pct: float
    width_pct: float
    left_inset_px: float = 0
    width_inset_px: float = 0

    def to_pixels(self, column_width: float) -> Tuple[float, float]:
        left = column_width * self.left_pct / 100 + self.left_inset_px
        width = column_width * self.width_pct / 100 - self.width_inset_px
        return left, max(width, 0.0)


@dataclass(frozen=True)
class EventGeometry:
    event: Event
    day: date
    slot: ColumnSlot
    vertical: VerticalPlacement
    horizontal: HorizontalPlacement


def map_vertical(
    event: Event,
    day: date,
    zoom: ZoomState,
    slot_height: float,
) -> Optional[VerticalPlacement]:
    """Top offset and height of ``event`` within ``day``; ``None`` if nothing is visible."""

    if not event.has_valid_times:
        return None
    day_start = start_of_day(day)
    origin = day_start + timedelta(minutes=zoom.start_minutes)
    window_end = day_start + timedelta(minutes=zoom.end_minutes)
    unit = zoom.granularity.main_minutes if zoom.is_active else 60

    start = max(event.start_time, origin)
    end = min(event.end_time, window_end)
    if end <= start:
        return None

    window_minutes = minutes_between(origin, window_end)
    offset = minutes_between(origin, start)
    duration = minutes_between(start, end)
    return VerticalPlacement(
        top=offset / unit * slot_height,
        height=duration / unit * slot_height,
        top_pct=offset / window_minutes * 100,
        height_pct=duration / window_minutes * 100,
        visible_start=start,
        visible_end=end,
        clipped_top=event.start_time < start,
        clipped_bottom=event.end_time > end,
    )


def map_horizontal(slot: ColumnSlot, gutter_px: float = UI.calendar.column_gutter_px) -> HorizontalPlacement:
    if slot.total_columns <= 1:
        return HorizontalPlacement(0.0, 100.0, left_inset_px=gutter_px, width_inset_px=2 * gutter_px)
    column_width = 100 / slot.total_columns
    return HorizontalPlacement(
        left_pct=column_width * slot.column,
        width_pct=column_width * slot.span,
        width_inset_px=gutter_px,
    )


def layout_day(
    events: Iterable[Event],
    day: date,
    zoom: ZoomState,
    slot_height: float = UI.calendar.slot_height,
    *,
    strategy: ColumnStrategy = DEFAULT_STRATEGY,
    gutter_px: float = UI.calendar.column_gutter_px,
) -> List[EventGeometry]:
    """Full layout pass for the timed events of one day."""

    timed = timed_events_for_day(events, day)
    slots = assign_columns(group_overlapping(timed), strategy)
    result: List[EventGeometry] = []
    for event in timed:
        vertical = map_vertical(event, day, zoom, slot_height)
        if vertical is None:
            continue
        slot = slots[event.id]
        result.append(EventGeometry(event, day, slot, vertical, map_horizontal(slot, gutter_px)))
    result.sort(key=lambda g: (g.event.start_time, g.event.id))
    return result


# ----- group children -----------------------------------------------------

@dataclass(frozen=True)
class ChildPlacement:
    event: Event
    slot: ColumnSlot
    top_pct: float
    height_pct: float
    horizontal: HorizontalPlacement


def layout_group_children(
    parent: Event,
    events: Iterable[Event],
    *,
    strategy: ColumnStrategy = DEFAULT_STRATEGY,
    gutter_px: float = UI.calendar.column_gutter_px,
) -> List[ChildPlacement]:
    """Place the children of ``parent`` inside its box, as percentages of its duration."""

    if not parent.has_valid_times:
        return []
    children = [
        e for e in events
        if e.parent_group_event_id == parent.id and e.has_valid_times and e.overlaps(parent)
    ]
    total = minutes_between(parent.start_time, parent.end_time)
    slots = assign_columns(group_overlapping(children), strategy)
    result: List[ChildPlacement] = []
    for child in sorted(children, key=lambda e: (e.start_time, e.id)):
        start = max(child.start_time, parent.start_time)
        end = min(child.end_time, parent.end_time)
        slot = slots[child.id]
        result.append(
            ChildPlacement(
                event=child,
                slot=slot,
                top_pct=minutes_between(parent.start_time, start) / total * 100,
                height_pct=minutes_between(start, end) / total * 100,
                horizontal=map_horizontal(slot, gutter_px),
            )
        )
    return result


# ----- all-day row --------------------------------------------------------

@dataclass(frozen=True)
class AllDayPlacement:
    event: Event
    first_day_index: int
    day_span: int
    row: int
    top: float


def layout_all_day(
    events: Iterable[Event],
    days: Sequence[date],
    row_height: float = UI.calendar.all_day_row_height,
) -> List[AllDayPlacement]:
    """Stack all-day events into fixed rows across the visible ``days``."""

    if not days:
        return []
    first, last = days[0], days[-1]
    candidates = []
    for event in events:
        if not event.all_day or not event.has_valid_times:
            continue
        start_day = event.start_time.date()
        # an all-day event ending exactly at midnight does not cover that day
        end_day = (event.end_time - timedelta(microseconds=1)).date()
        if end_day < first or start_day > last:
            continue
        candidates.append((max(start_day, first), min(end_day, last), event))
    candidates.sort(key=lambda c: (c[0], c[2].id))

    occupied: Dict[int, set] = {}
    result: List[AllDayPlacement] = []
    for start_day, end_day, event in candidates:
        first_index = (start_day - first).days
        span = (end_day - start_day).days + 1
        covered = range(first_index, first_index + span)
        row = 0
        while any(row in occupied.get(i, ()) for i in covered):
            row += 1
        for i in covered:
            occupied.setdefault(i, set()).add(row)
        result.append(AllDayPlacement(event, first_index, span, row, row * row_height))
    return result


# ----- day grid -----------------------------------------------------------

@dataclass(frozen=True)
class DayColumn:
    index: int
    day: date
    left: float
    right: float
    top: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top


class DayGrid:
    """Column bounds per visible day, in the coordinate space of pointer events."""

    def __init__(self, columns: Sequence[DayColumn]):
        self.columns: Tuple[DayColumn, ...] = tuple(sorted(columns, key=lambda c: c.left))
        self._lefts = [c.left for c in self.columns]

    @classmethod
    def build(
        cls,
        days: Sequence[date],
        *,
        column_width: float,
        height: float,
        origin_x: float = 0,
        origin_y: float = 0,
    ) -> "DayGrid":
        return cls([
            DayColumn(
                index=i,
                day=d,
                left=origin_x + i * column_width,
                right=origin_x + (i + 1) * column_width,
                top=origin_y,
                bottom=origin_y + height,
            )
            for i, d in enumerate(days)
        ])

    def column_at(self, x: float) -> Optional[DayColumn]:
        pos = bisect.bisect_right(self._lefts, x) - 1
        if pos < 0:
            return None
        column = self.columns[pos]
        return column if x < column.right else None

    def column_for(self, day: date) -> Optional[DayColumn]:
        for column in self.columns:
            if column.day == day:
                return column
        return None


def geometry_at(
    geometries: Iterable[EventGeometry],
    column: DayColumn,
    x: float,
    y: float,
    *,
    exclude_id: Optional[str] = None,
) -> Optional[EventGeometry]:
    """Topmost laid-out event box of ``column`` under the pointer."""

    rel_x = x - column.left
    rel_y = y - column.top
    hit: Optional[EventGeometry] = None
    for geo in geometries:
        if geo.day != column.day or geo.event.id == exclude_id:
            continue
        left, width = geo.horizontal.to_pixels(column.width)
        if left <= rel_x < left + width and geo.vertical.top <= rel_y < geo.vertical.top + geo.vertical.height:
            hit = geo
    return hit


__all__ = [
    "AllDayPlacement",
    "ChildPlacement",
    "DayColumn",
    "DayGrid",
    "EventGeometry",
    "HorizontalPlacement",
    "VerticalPlacement",
    "geometry_at",
    "layout_all_day",
    "layout_day",
    "layout_group_children",
    "map_horizontal",
    "map_vertical",
]
