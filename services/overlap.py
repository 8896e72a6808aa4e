"""Clustering of events whose time intervals transitively overlap."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Sequence

from helpers.datetime_utils import start_of_day
from models.event import Event

logger = logging.getLogger("streamline.layout")


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, i: int) -> int:
        root = i
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[i] != root:
            self.parent[i], i = root, self.parent[i]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1


def _sort_key(event: Event):
    return (event.start_time, event.id)


def timed_events_for_day(events: Iterable[Event], day: date) -> List[Event]:
    """Events intersecting ``day`` that take part in time-axis layout.

    All-day events, children of group events and events with unusable times
    are left out; the latter are logged and skipped.
    """

    day_start = start_of_day(day)
    day_end = day_start + timedelta(days=1)
    result: List[Event] = []
    for event in events:
        if event.all_day or event.parent_group_event_id:
            continue
        if not event.has_valid_times:
            logger.warning("Skipping event %r with invalid times", event.id)
            continue
        if event.start_time < day_end and event.end_time > day_start:
            result.append(event)
    return result


def group_overlapping(events: Sequence[Event]) -> List[List[Event]]:
    """Partition ``events`` into groups closed under the overlap relation."""

    ordered = sorted(events, key=_sort_key)
    if not ordered:
        return []

    sets = _DisjointSet(len(ordered))
    # Sweep in start order: an event overlaps every still-open event before it.
    open_until = ordered[0].end_time
    open_root = 0
    for i in range(1, len(ordered)):
        event = ordered[i]
        if event.start_time < open_until:
            sets.union(open_root, i)
            open_until = max(open_until, event.end_time)
        else:
            open_root = i
            open_until = event.end_time

    buckets: Dict[int, List[Event]] = {}
    for i, event in enumerate(ordered):
        buckets.setdefault(sets.find(i), []).append(event)
    return sorted(buckets.values(), key=lambda group: _sort_key(group[0]))


__all__ = ["group_overlapping", "timed_events_for_day"]
