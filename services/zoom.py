"""Visible hour range of the time axis and the granularity it implies."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from core.granularity import Granularity, granularity_for
from core.settings import ZOOM

logger = logging.getLogger("streamline.zoom")

DAY_HOURS = 24


@dataclass(frozen=True)
class ZoomWindow:
    start_hour: float = 0
    end_hour: float = DAY_HOURS

    def __post_init__(self):
        if not (0 <= self.start_hour < self.end_hour <= DAY_HOURS):
            raise ValueError(f"Invalid zoom window {self.start_hour}-{self.end_hour}")
        if not (ZOOM.min_hours <= self.size <= ZOOM.max_hours):
            raise ValueError(f"Zoom window size {self.size}h outside [{ZOOM.min_hours}, {ZOOM.max_hours}]")

    @property
    def size(self) -> float:
        return self.end_hour - self.start_hour


FULL_DAY = ZoomWindow(0, DAY_HOURS)


@dataclass(frozen=True)
class ZoomState:
    window: ZoomWindow = FULL_DAY
    is_active: bool = False

    @property
    def effective(self) -> ZoomWindow:
        return self.window if self.is_active else FULL_DAY

    @property
    def granularity(self) -> Granularity:
        return granularity_for(self.effective.size)

    @property
    def start_minutes(self) -> float:
        return self.effective.start_hour * 60

    @property
    def end_minutes(self) -> float:
        return self.effective.end_hour * 60


@dataclass(frozen=True)
class Tick:
    minute: int
    labeled: bool

    @property
    def label(self) -> Optional[str]:
        if not self.labeled:
            return None
        hours, minutes = divmod(self.minute, 60)
        return f"{hours:02d}:{minutes:02d}"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


class ZoomWindowController:
    def __init__(self, state: Optional[ZoomState] = None):
        state = state or ZoomState()
        self.window: ZoomWindow = state.window
        self.is_active: bool = state.is_active

    @property
    def state(self) -> ZoomState:
        return ZoomState(self.window, self.is_active)

    @property
    def effective_window(self) -> ZoomWindow:
        return self.state.effective

    @property
    def granularity(self) -> Granularity:
        return self.state.granularity

    def wheel(self, delta: float, pointer_y: float, axis_height: float) -> ZoomWindow:
        """Grow or shrink the window by one step, centred on the hour under the pointer."""

        current = self.effective_window
        size = _clamp(current.size + _sign(delta) * ZOOM.step_hours, ZOOM.min_hours, ZOOM.max_hours)
        ratio = _clamp(pointer_y / axis_height, 0.0, 1.0) if axis_height > 0 else 0.5
        center = current.start_hour + ratio * current.size

        start = float(round(center - size / 2))
        # shift, never shrink, at the day boundaries
        start = _clamp(start, 0, DAY_HOURS - size)
        self.window = ZoomWindow(start, start + size)
        self.is_active = True
        logger.debug("Zoom window -> %s-%s", self.window.start_hour, self.window.end_hour)
        return self.window

    def pan(self, delta_y: float, axis_height: float) -> ZoomWindow:
        """Scroll a zoomed window; pointer motion down moves the window earlier."""

        if not self.is_active or axis_height <= 0:
            return self.effective_window
        size = self.window.size
        delta_hours = -delta_y / axis_height * DAY_HOURS
        start = _clamp(self.window.start_hour + delta_hours, 0, DAY_HOURS - size)
        self.window = ZoomWindow(start, start + size)
        return self.window

    def clear(self) -> ZoomWindow:
        self.window = FULL_DAY
        self.is_active = False
        return self.window

    def ticks(self) -> List[Tick]:
        """Axis ticks for the visible window: labelled main ticks plus unlabelled preview ticks."""

        state = self.state
        gran = state.granularity
        start, end = state.start_minutes, state.end_minutes
        step = gran.preview_minutes or gran.main_minutes
        minute = int(math.ceil(start / step) * step)
        result: List[Tick] = []
        while minute <= end:
            result.append(Tick(minute, minute % gran.main_minutes == 0))
            minute += step
        return result


__all__ = [
    "FULL_DAY",
    "Tick",
    "ZoomState",
    "ZoomWindow",
    "ZoomWindowController",
]
