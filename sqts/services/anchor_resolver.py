"""
Anchor resolver: turns one schedule item's anchor into a concrete date.

The resolver works over an arena of ``ScheduleNode`` values indexed by item
id (no object references between nodes). SCHEDULE_ITEM anchors are followed
by id with an explicit visiting stack, so a cycle is detected the moment an
id already on the stack is requested again.

Outcomes (``Resolution.status``):
    RESOLVED         a date was derived
    UNRESOLVED       no date yet (milestone without a date, COMPLETION
                      without a completion date, missing reference, or an
                      anchor chain that runs into a cycle)
    CYCLE_DETECTED   the item is a member of a SCHEDULE_ITEM cycle; no
                      member of the cycle gets a date

Results are memoised for the lifetime of the resolver, so one derivation
pass resolves each item at most once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqts.services.anchors import (
    Anchor,
    Completion,
    FixedDate,
    ProjectMilestoneRef,
    ScheduleItemRef,
)
from sqts.services.business_calendar import add_days


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    CYCLE_DETECTED = "cycle_detected"


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    date: date | None = None
    reason: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "date": self.date.isoformat() if self.date else None,
            "reason": self.reason,
        }


_CYCLE = Resolution(ResolutionStatus.CYCLE_DETECTED, reason="Circular anchor")


def _unresolved(reason: str) -> Resolution:
    return Resolution(ResolutionStatus.UNRESOLVED, reason=reason)


@dataclass(frozen=True)
class ScheduleNode:
    """Engine view of a schedule item (definition or project item)."""
    item_id: int
    name: str
    anchor: Anchor
    offset_days: int = 0
    sort_order: int = 0


class AnchorResolver:
    """Resolve anchors for one derivation pass.

    Args:
        nodes: The arena, ``{item_id: ScheduleNode}``.
        milestone_dates: ``{milestone name: date | None}`` for the project.
        use_business_days: Offset arithmetic mode.
        completion_dates: ``{item_id: date | None}`` for one supplier's
            instances. Absent at template/project level, where COMPLETION
            anchors are always unresolved.
    """

    def __init__(
        self,
        nodes: dict[int, ScheduleNode],
        milestone_dates: dict[str, date | None] | None = None,
        use_business_days: bool = False,
        completion_dates: dict[int, date | None] | None = None,
    ) -> None:
        self.nodes = nodes
        self.milestone_dates = milestone_dates or {}
        self.use_business_days = use_business_days
        self.completion_dates = completion_dates or {}
        self.cycles: list[list[int]] = []
        self._memo: dict[int, Resolution] = {}
        self._stack: list[int] = []
        self._on_stack: set[int] = set()

    def resolve(self, item_id: int) -> Resolution:
        cached = self._memo.get(item_id)
        if cached is not None:
            return cached

        node = self.nodes.get(item_id)
        if node is None:
            return _unresolved("Anchor references a missing schedule item")

        if item_id in self._on_stack:
            members = self._stack[self._stack.index(item_id):]
            self.cycles.append(list(members))
            for member in members:
                self._memo[member] = _CYCLE
            return _CYCLE

        self._stack.append(item_id)
        self._on_stack.add(item_id)
        try:
            result = self._resolve_anchor(node)
        finally:
            self._stack.pop()
            self._on_stack.discard(item_id)

        # a cycle found further down the chain may already have claimed this item
        return self._memo.setdefault(item_id, result)

    def _resolve_anchor(self, node: ScheduleNode) -> Resolution:
        anchor = node.anchor

        if isinstance(anchor, FixedDate):
            base = anchor.date

        elif isinstance(anchor, ScheduleItemRef):
            upstream = self.resolve(anchor.item_id)
            if upstream.status is ResolutionStatus.CYCLE_DETECTED:
                if self._memo.get(node.item_id) is _CYCLE:
                    return _CYCLE
                return _unresolved("Anchor is part of a cycle")
            if not upstream.is_resolved:
                return _unresolved(upstream.reason or "Anchor has no date")
            base = upstream.date

        elif isinstance(anchor, ProjectMilestoneRef):
            if anchor.name not in self.milestone_dates:
                return _unresolved(f"Project milestone '{anchor.name}' not found")
            base = self.milestone_dates[anchor.name]
            if base is None:
                return _unresolved(f"Project milestone '{anchor.name}' has no date")

        elif isinstance(anchor, Completion):
            base = self.completion_dates.get(node.item_id)
            if base is None:
                return _unresolved("Awaiting completion")

        else:  # pragma: no cover - Anchor is a closed union
            raise TypeError(f"Unknown anchor {anchor!r}")

        return Resolution(
            ResolutionStatus.RESOLVED,
            date=add_days(base, node.offset_days, self.use_business_days),
        )
