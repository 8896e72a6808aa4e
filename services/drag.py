"""Pointer-gesture state machine for moving and resizing events."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Iterator, Optional, Tuple

from core.settings import DRAG, UI
from helpers.datetime_utils import snap_minutes, start_of_day
from models.event import Event
from services.geometry import DayColumn, DayGrid
from services.zoom import ZoomState, ZoomWindowController

logger = logging.getLogger("streamline.drag")


class DragMode(str, Enum):
    MOVE = "move"
    RESIZE_TOP = "top"
    RESIZE_BOTTOM = "bottom"


class DragPhase(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    DRAGGING = "dragging"


class DropKind(str, Enum):
    CLICK = "click"
    MOVE = "move"
    REPARENT = "reparent"
    REJECTED = "rejected"
    ABORTED = "aborted"


@dataclass(frozen=True)
class DragSession:
    event: Event
    initial_pointer: Tuple[float, float]
    pointer_offset: float
    mode: DragMode = DragMode.MOVE


@dataclass(frozen=True)
class DragCandidate:
    day: date
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class DropOutcome:
    kind: DropKind
    event: Event
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    parent_group_event_id: Optional[str] = None

    @property
    def changes_event(self) -> bool:
        return self.kind in (DropKind.MOVE, DropKind.REPARENT)

    def updated_event(self) -> Optional[Event]:
        if not self.changes_event:
            return None
        updated = replace(self.event, start_time=self.start_time, end_time=self.end_time)
        if self.kind is DropKind.REPARENT:
            updated = replace(updated, parent_group_event_id=self.parent_group_event_id)
        return updated


def compute_candidate(
    session: DragSession,
    column: DayColumn,
    pointer_y: float,
    zoom: ZoomState,
    slot_height: float,
) -> Optional[DragCandidate]:
    """Snapped start/end for the pointer at ``pointer_y`` over ``column``."""

    event = session.event
    offset = session.pointer_offset if session.mode is DragMode.MOVE else 0.0
    if pointer_y < column.top:
        relative_y = -offset
    elif pointer_y > column.bottom:
        relative_y = column.height - offset
    else:
        relative_y = pointer_y - column.top - offset

    tick = zoom.granularity.main_minutes
    minutes = relative_y / slot_height * tick + zoom.start_minutes
    snapped = snap_minutes(minutes, step=tick, direction="nearest")
    at = start_of_day(column.day) + timedelta(minutes=snapped)
    step = timedelta(minutes=tick)

    if session.mode is DragMode.RESIZE_TOP:
        start, end = at, event.end_time
        if start >= end:
            start = end - step
    elif session.mode is DragMode.RESIZE_BOTTOM:
        start, end = event.start_time, at
        if end <= start:
            end = start + step
    else:
        start, end = at, at + event.duration

    if end <= start:
        return None
    return DragCandidate(column.day, start, end)


class DragEngine:
    """Owns the single active :class:`DragSession` for the lifetime of a gesture."""

    def __init__(
        self,
        zoom: ZoomWindowController,
        *,
        slot_height: float = UI.calendar.slot_height,
        threshold_px: float = DRAG.threshold_px,
        grid: Optional[DayGrid] = None,
    ):
        self.zoom = zoom
        self.slot_height = slot_height
        self.threshold_px = threshold_px
        self.grid = grid
        self._reset()

    def _reset(self) -> None:
        self.session: Optional[DragSession] = None
        self.phase = DragPhase.IDLE
        self.candidate: Optional[DragCandidate] = None
        self.hover_target: Optional[Event] = None
        self._suppressed_hover_id: Optional[str] = None

    def set_grid(self, grid: DayGrid) -> None:
        self.grid = grid

    @property
    def is_active(self) -> bool:
        return self.session is not None

    @property
    def reparent_target(self) -> Optional[Event]:
        """Group event the dragged event would be nested into on drop."""
        session, target = self.session, self.hover_target
        if session is None or target is None:
            return None
        if session.event.is_group_event or target.id == self._suppressed_hover_id:
            return None
        return target

    # ----- gesture lifecycle -----
    def pointer_down(
        self,
        event: Event,
        x: float,
        y: float,
        *,
        mode: DragMode = DragMode.MOVE,
        pointer_offset: float = 0.0,
    ) -> Optional[DragSession]:
        if self.session is not None:
            raise RuntimeError("A drag session is already active")
        if event.is_read_only:
            logger.info("Refusing to drag read-only event %s", event.id)
            return None
        if not event.has_valid_times:
            logger.warning("Refusing to drag event %s with invalid times", event.id)
            return None
        self.session = DragSession(event, (x, y), pointer_offset, mode)
        self.phase = DragPhase.ARMED
        return self.session

    def pointer_move(self, x: float, y: float, *, hover_target: Optional[Event] = None) -> Optional[DragCandidate]:
        session = self.session
        if session is None:
            return None
        if self.phase is DragPhase.ARMED:
            x0, y0 = session.initial_pointer
            if abs(x - x0) <= self.threshold_px and abs(y - y0) <= self.threshold_px:
                return None
            self.phase = DragPhase.DRAGGING
            logger.debug("Drag started: %s (%s)", session.event.id, session.mode.value)

        self._update_hover(hover_target)
        column = self.grid.column_at(x) if self.grid else None
        if column is None:
            self.candidate = None
            return None
        self.candidate = compute_candidate(session, column, y, self.zoom.state, self.slot_height)
        return self.candidate

    def pointer_up(
        self,
        x: Optional[float] = None,
        y: Optional[float] = None,
        *,
        hover_target: Optional[Event] = None,
    ) -> Optional[DropOutcome]:
        session = self.session
        if session is None:
            return None
        try:
            if x is not None and y is not None:
                self.pointer_move(x, y, hover_target=hover_target)
            return self._finish(session)
        finally:
            self._reset()

    def cancel_hover(self) -> None:
        """Escape: hide the reparent indicator, keep dragging."""
        if self.hover_target is not None:
            self._suppressed_hover_id = self.hover_target.id

    def teardown(self) -> None:
        self._reset()

    @contextmanager
    def gesture(self, event: Event, x: float, y: float, **kwargs) -> Iterator[Optional[DragSession]]:
        session = self.pointer_down(event, x, y, **kwargs)
        try:
            yield session
        finally:
            if self.session is session:
                self.teardown()

    # ----- internals -----
    def _update_hover(self, target: Optional[Event]) -> None:
        session = self.session
        if target is not None and (not target.is_group_event or target.id == session.event.id):
            target = None
        if target is None or (self.hover_target and target.id != self.hover_target.id):
            self._suppressed_hover_id = None
        self.hover_target = target

    def _finish(self, session: DragSession) -> DropOutcome:
        event = session.event
        if self.phase is not DragPhase.DRAGGING:
            return DropOutcome(DropKind.CLICK, event)

        hovered = self.hover_target
        if hovered is not None and event.is_group_event and hovered.id != self._suppressed_hover_id:
            logger.info("Rejected nesting group %s into group %s", event.id, hovered.id)
            return DropOutcome(DropKind.REJECTED, event)

        target = self.reparent_target
        candidate = self.candidate
        if target is not None:
            start = candidate.start_time if candidate else event.start_time
            end = candidate.end_time if candidate else event.end_time
            return DropOutcome(DropKind.REPARENT, event, start, end, target.id)

        if candidate is None:
            return DropOutcome(DropKind.ABORTED, event)
        return DropOutcome(DropKind.MOVE, event, candidate.start_time, candidate.end_time)


__all__ = [
    "DragCandidate",
    "DragEngine",
    "DragMode",
    "DragPhase",
    "DragSession",
    "DropKind",
    "DropOutcome",
    "compute_candidate",
]
