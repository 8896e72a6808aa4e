"""Column assignment for groups of overlapping events."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Protocol, Sequence

from models.event import Event


@dataclass(frozen=True)
class ColumnSlot:
    column: int
    total_columns: int
    span: int = 1


class ColumnStrategy(Protocol):
    def assign(self, group: Sequence[Event]) -> Dict[str, ColumnSlot]:
        ...


def _by_start(group: Sequence[Event]) -> List[Event]:
    return sorted(group, key=lambda e: (e.start_time, e.id))


class NaiveColumnStrategy:
    """One column per member in start order; freed columns are never reused."""

    def assign(self, group: Sequence[Event]) -> Dict[str, ColumnSlot]:
        if len(group) == 1:
            return {group[0].id: ColumnSlot(0, 1)}
        ordered = _by_start(group)
        total = len(ordered)
        return {event.id: ColumnSlot(index, total) for index, event in enumerate(ordered)}


class PackedColumnStrategy:
    """First-free-column packing; events widen into free columns to their right."""

    def assign(self, group: Sequence[Event]) -> Dict[str, ColumnSlot]:
        if len(group) == 1:
            return {group[0].id: ColumnSlot(0, 1)}

        # longer events first on equal start
        ordered = sorted(group, key=lambda e: (e.start_time, -(e.end_time - e.start_time).total_seconds(), e.id))
        columns: List[int] = []
        for i, event in enumerate(ordered):
            taken = {columns[j] for j in range(i) if ordered[j].overlaps(event)}
            column = 0
            while column in taken:
                column += 1
            columns.append(column)
        total = max(columns) + 1

        slots: Dict[str, ColumnSlot] = {}
        for i, event in enumerate(ordered):
            span = 1
            for col in range(columns[i] + 1, total):
                blocked = any(
                    columns[j] == col and ordered[j].overlaps(event)
                    for j in range(len(ordered))
                    if j != i
                )
                if blocked:
                    break
                span += 1
            slots[event.id] = ColumnSlot(columns[i], total, span)
        return slots


DEFAULT_STRATEGY: ColumnStrategy = NaiveColumnStrategy()


def assign_columns(
    groups: Sequence[Sequence[Event]],
    strategy: ColumnStrategy = DEFAULT_STRATEGY,
) -> Dict[str, ColumnSlot]:
    slots: Dict[str, ColumnSlot] = {}
    for group in groups:
        if group:
            slots.update(strategy.assign(group))
    return slots


__all__ = [
    "ColumnSlot",
    "ColumnStrategy",
    "NaiveColumnStrategy",
    "PackedColumnStrategy",
    "assign_columns",
]
