"""Expansion of recurring master events into displayed occurrences."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import AbstractSet, Iterable, List, Optional

from core.settings import RECURRENCE
from helpers.datetime_utils import add_months, add_years, end_of_day
from models.event import RECURRENCE_ID_MARKER, Event, RecurrenceFrequency, RecurrencePattern

logger = logging.getLogger("streamline.recurrence")


def shift_occurrence(start: datetime, pattern: RecurrencePattern, n: int) -> datetime:
    """Start of occurrence ``n``, always computed from the master start."""

    steps = n * pattern.interval
    freq = pattern.frequency
    if freq is RecurrenceFrequency.DAILY:
        return start + timedelta(days=steps)
    if freq is RecurrenceFrequency.WEEKLY:
        return start + timedelta(weeks=steps)
    if freq is RecurrenceFrequency.BIWEEKLY:
        return start + timedelta(weeks=2 * steps)
    if freq is RecurrenceFrequency.MONTHLY:
        return add_months(start, steps)
    if freq is RecurrenceFrequency.YEARLY:
        return add_years(start, steps)
    raise ValueError(f"Unsupported recurrence frequency: {freq}")


def _first_index(master: Event, range_start: datetime) -> int:
    """Index of the earliest occurrence that can still reach ``range_start``."""

    pattern = master.recurrence
    gap = range_start - master.end_time
    if gap <= timedelta(0):
        return 0
    freq = pattern.frequency
    if freq is RecurrenceFrequency.DAILY:
        period = timedelta(days=pattern.interval)
    elif freq is RecurrenceFrequency.WEEKLY:
        period = timedelta(weeks=pattern.interval)
    elif freq is RecurrenceFrequency.BIWEEKLY:
        period = timedelta(weeks=2 * pattern.interval)
    elif freq is RecurrenceFrequency.MONTHLY:
        # upper bound on a month, so no reachable occurrence is skipped
        period = timedelta(days=31 * pattern.interval)
    else:
        period = timedelta(days=366 * pattern.interval)
    return max(int(gap / period) - 1, 0)


def occurrence_id(master_id: str, n: int) -> str:
    return f"{master_id}{RECURRENCE_ID_MARKER}{n}"


def expand_occurrences(
    master: Event,
    range_start: datetime,
    range_end: datetime,
    exceptions: Optional[AbstractSet[date]] = None,
) -> List[Event]:
    """Concrete occurrences of ``master`` overlapping ``[range_start, range_end]``.

    Occurrence 0 is the master itself. Dates in ``exceptions`` (defaults to the
    master's own exception set) are skipped.
    """

    if not master.is_recurring:
        raise ValueError(f"Event {master.id} has no recurrence pattern")
    if not master.has_valid_times:
        logger.warning("Cannot expand %s: invalid start/end", master.id)
        return []

    pattern = master.recurrence
    skipped = master.recurrence_exceptions if exceptions is None else exceptions
    limit = range_end
    if pattern.end_date is not None:
        limit = min(limit, end_of_day(pattern.end_date))
    duration = master.duration

    result: List[Event] = []
    first = _first_index(master, range_start)
    n = first
    while True:
        if n - first >= RECURRENCE.max_occurrences:
            logger.warning("Stopped expanding %s after %d occurrences", master.id, n)
            break
        start = shift_occurrence(master.start_time, pattern, n)
        if start > limit:
            break
        end = start + duration
        if end > range_start and start.date() not in skipped:
            if n == 0:
                result.append(master)
            else:
                result.append(
                    replace(
                        master,
                        id=occurrence_id(master.id, n),
                        start_time=start,
                        end_time=end,
                        recurrence=None,
                        recurrence_exceptions=frozenset(),
                        recurrence_master_id=master.id,
                        occurrence_index=n,
                    )
                )
        n += 1
    return result


def expand_events(events: Iterable[Event], range_start: datetime, range_end: datetime) -> List[Event]:
    """Flat list of the events visible in the range, masters expanded."""

    result: List[Event] = []
    for event in events:
        if event.is_recurring:
            result.extend(expand_occurrences(event, range_start, range_end))
        elif not event.has_valid_times:
            # kept so layout can log and skip it
            result.append(event)
        elif event.start_time <= range_end and event.end_time > range_start:
            result.append(event)
    return result


def occurrence_start(master: Event, instance: Event) -> datetime:
    """Original (unedited) start of ``instance`` within ``master``'s series."""

    if instance.occurrence_index is not None:
        return shift_occurrence(master.start_time, master.recurrence, instance.occurrence_index)
    return instance.start_time


__all__ = [
    "expand_events",
    "expand_occurrences",
    "occurrence_id",
    "occurrence_start",
    "shift_occurrence",
]
