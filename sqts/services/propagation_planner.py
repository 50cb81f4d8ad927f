"""
Propagation Planner: what would a re-derivation change?

For every supplier on a project the planner derives the project schedule
with that supplier's completion dates, then compares each derived date with
the supplier's persisted instance and classifies the instance.

Classification (first match wins):
  1. override_enabled and skip_overridden     → "Overridden"
  2. locked and skip_locked                   → "Locked"
  3. status COMPLETE and skip_complete        → "Completed"
  4. derivation CYCLE_DETECTED                → "Circular anchor"
     derivation UNRESOLVED                    → "No date"
  5. new date == current effective date       → "Unchanged"
     (an overridden instance that is not skipped compares against
      computed_date instead, since that is the column propagation writes)
  6. otherwise                                → will_change

``plan_propagation`` is pure and works on anything shaped like a
``ProjectSchedule``. ``preview_propagation`` loads the schedule and policy
and never writes.

Usage:
    from sqts.services.propagation_planner import preview_propagation

    plan = preview_propagation(project_id)
    plan.to_dict()   # {"project_id", "will_change": [...], "wont_change": [...]}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqts.models.schedule import STATUS_COMPLETE
from sqts.services.anchor_resolver import ResolutionStatus
from sqts.services.date_derivation import derive_all
from sqts.services.schedule_snapshot import load_project_schedule
from sqts.services.settings_service import PropagationPolicy, get_propagation_policy

REASON_OVERRIDDEN = "Overridden"
REASON_LOCKED = "Locked"
REASON_COMPLETED = "Completed"
REASON_CYCLE = "Circular anchor"
REASON_NO_DATE = "No date"
REASON_UNCHANGED = "Unchanged"


@dataclass
class PlanEntry:
    supplier_id: int
    supplier_name: str
    instance_id: int
    item_id: int
    item_name: str
    current_date: date | None
    new_date: date | None = None
    reason: str | None = None

    def to_dict(self) -> dict:
        d = {
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "instance_id": self.instance_id,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "current_date": self.current_date.isoformat() if self.current_date else None,
        }
        if self.reason is None:
            d["new_date"] = self.new_date.isoformat() if self.new_date else None
        else:
            d["reason"] = self.reason
        return d


@dataclass
class PropagationPlan:
    project_id: int
    will_change: list[PlanEntry] = field(default_factory=list)
    wont_change: list[PlanEntry] = field(default_factory=list)

    def changes_for(self, supplier_ids) -> list[PlanEntry]:
        selected = set(supplier_ids)
        return [e for e in self.will_change if e.supplier_id in selected]

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "will_change": [e.to_dict() for e in self.will_change],
            "wont_change": [e.to_dict() for e in self.wont_change],
        }


def _effective(instance):
    return instance.override_date if instance.override_enabled else instance.computed_date


def _skip_reason(instance, policy: PropagationPolicy) -> str | None:
    if instance.override_enabled and policy.skip_overridden:
        return REASON_OVERRIDDEN
    if instance.locked and policy.skip_locked:
        return REASON_LOCKED
    if instance.status == STATUS_COMPLETE and policy.skip_complete:
        return REASON_COMPLETED
    return None


def plan_propagation(schedule, policy: PropagationPolicy) -> PropagationPlan:
    """Classify every instance of every supplier on ``schedule``."""
    plan = PropagationPlan(project_id=schedule.project.id)

    for supplier in schedule.suppliers:
        derived = derive_all(
            schedule.nodes,
            milestone_dates=schedule.milestone_dates,
            use_business_days=policy.use_business_days,
            completion_dates=supplier.completion_dates,
        )
        for item_id, item in schedule.items.items():
            instance = supplier.instances.get(item_id)
            if instance is None:
                continue

            entry = PlanEntry(
                supplier_id=supplier.supplier_id,
                supplier_name=supplier.supplier_name,
                instance_id=instance.id,
                item_id=item_id,
                item_name=item.name,
                current_date=_effective(instance),
            )

            reason = _skip_reason(instance, policy)
            if reason is None:
                resolution = derived.resolutions[item_id]
                if resolution.status is ResolutionStatus.CYCLE_DETECTED:
                    reason = REASON_CYCLE
                elif not resolution.is_resolved:
                    reason = REASON_NO_DATE
                else:
                    entry.new_date = resolution.date
                    baseline = instance.computed_date if instance.override_enabled else entry.current_date
                    if entry.new_date == baseline:
                        reason = REASON_UNCHANGED

            if reason is None:
                plan.will_change.append(entry)
            else:
                entry.reason = reason
                plan.wont_change.append(entry)

    return plan


def preview_propagation(project_id: int) -> PropagationPlan:
    """Read-only plan for ``project_id``.

    Raises:
        NotFoundError: unknown project.
    """
    schedule = load_project_schedule(project_id)
    return plan_propagation(schedule, get_propagation_policy())
