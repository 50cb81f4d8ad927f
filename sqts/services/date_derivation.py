"""
Date derivation engine: evaluates a whole anchor graph in one pass.

``derive_all`` is pure: it takes the arena of schedule nodes plus the
project's milestone dates (and optionally one supplier's completion dates)
and returns a ``DerivationResult``. FIXED_DATE, PROJECT_MILESTONE and
COMPLETION nodes are roots; SCHEDULE_ITEM nodes are evaluated after the node
they reference via depth-first resolution. A cycle only blanks its own
members (and anything anchored onto them); every other node still gets a date.

``derive_project`` is the persistence-backed entry point used by the
``GET /projects/<id>/schedule/derived`` route.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqts.core.exceptions import NotFoundError
from sqts.services.anchor_resolver import (
    AnchorResolver,
    Resolution,
    ResolutionStatus,
    ScheduleNode,
)
from sqts.services.schedule_snapshot import load_project_schedule
from sqts.services.settings_service import get_propagation_policy

logger = logging.getLogger(__name__)


@dataclass
class DerivationResult:
    resolutions: dict[int, Resolution] = field(default_factory=dict)
    cycles: list[list[int]] = field(default_factory=list)

    @property
    def dates(self) -> dict[int, date | None]:
        return {item_id: r.date for item_id, r in self.resolutions.items()}

    def date_of(self, item_id: int) -> date | None:
        r = self.resolutions.get(item_id)
        return r.date if r else None

    @property
    def cycle_item_ids(self) -> set[int]:
        return {
            item_id for item_id, r in self.resolutions.items()
            if r.status is ResolutionStatus.CYCLE_DETECTED
        }

    def to_dict(self) -> dict:
        return {
            "dates": {
                str(item_id): (d.isoformat() if d else None)
                for item_id, d in self.dates.items()
            },
            "items": {str(item_id): r.to_dict() for item_id, r in self.resolutions.items()},
            "cycles": [list(c) for c in self.cycles],
        }


def derive_all(
    nodes: dict[int, ScheduleNode],
    milestone_dates: dict[str, date | None] | None = None,
    use_business_days: bool = False,
    completion_dates: dict[int, date | None] | None = None,
) -> DerivationResult:
    """Resolve every node in ``nodes``; never raises for cycles or gaps."""
    resolver = AnchorResolver(
        nodes,
        milestone_dates=milestone_dates,
        use_business_days=use_business_days,
        completion_dates=completion_dates,
    )
    result = DerivationResult()
    for item_id in sorted(nodes, key=lambda i: (nodes[i].sort_order, i)):
        result.resolutions[item_id] = resolver.resolve(item_id)
    result.cycles = resolver.cycles
    if result.cycles:
        logger.warning("Anchor cycles detected: %s", result.cycles)
    return result


def derive_project(project_id: int, supplier_id: int | None = None) -> DerivationResult:
    """Derive dates for every schedule item of a project.

    Without ``supplier_id`` COMPLETION anchors stay unresolved (they only have
    meaning per supplier instance). With it, that supplier's completion dates
    feed the pass.

    Raises:
        NotFoundError: unknown project, or supplier not on the project.
    """
    schedule = load_project_schedule(project_id)
    policy = get_propagation_policy()

    completion_dates = None
    if supplier_id is not None:
        supplier = schedule.supplier(supplier_id)
        if supplier is None:
            raise NotFoundError("SupplierProject", f"{supplier_id}@project{project_id}")
        completion_dates = supplier.completion_dates

    return derive_all(
        schedule.nodes,
        milestone_dates=schedule.milestone_dates,
        use_business_days=policy.use_business_days,
        completion_dates=completion_dates,
    )
