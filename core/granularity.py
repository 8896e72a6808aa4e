"""Time-axis granularity derived from the visible zoom window."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Granularity:
    main_minutes: int
    preview_minutes: Optional[int] = None


# (max window size in hours, main tick minutes, unlabeled preview tick minutes)
# Rows are checked in order; the first row whose bound covers the window wins.
GRANULARITY_TABLE: Tuple[Tuple[float, int, Optional[int]], ...] = (
    (2, 5, None),
    (3, 15, 5),
    (4, 15, None),
    (6, 30, 15),
    (8, 30, None),
    (12, 60, 30),
)

DEFAULT_GRANULARITY = Granularity(60, None)


def granularity_for(window_hours: float) -> Granularity:
    """Return the tick granularity for a window spanning ``window_hours``."""
    for bound, main, preview in GRANULARITY_TABLE:
        if window_hours <= bound:
            return Granularity(main, preview)
    return DEFAULT_GRANULARITY


def main_interval(window_hours: float) -> int:
    return granularity_for(window_hours).main_minutes


def preview_interval(window_hours: float) -> Optional[int]:
    return granularity_for(window_hours).preview_minutes


__all__ = [
    "GRANULARITY_TABLE",
    "Granularity",
    "granularity_for",
    "main_interval",
    "preview_interval",
]
