"""
Propagation Applicator: persist the planner's changes for chosen suppliers.

The apply never trusts a caller-held preview: it takes the project row
lock, re-runs the planner inside the same transaction and writes
``computed_date`` for exactly the will_change entries of the selected
suppliers. Overrides, locks and statuses are never touched.

Result:
    {"updated_count": int, "skipped_count": int, "conflicts": [...]}

``expected`` lets the caller pass the ``{instance_id: new_date}`` pairs it
previewed. Pairs that differ from the fresh plan are returned as
``conflicts``; with ``strict=True`` they raise ``ConcurrencyConflict`` and
nothing is written.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from sqts.core.exceptions import ConcurrencyConflict, PropagationApplyError, ValidationError
from sqts.models import db
from sqts.models.audit import write_audit
from sqts.services.propagation_planner import plan_propagation
from sqts.services.schedule_snapshot import load_project_schedule
from sqts.services.settings_service import get_propagation_policy
from sqts.utils.helpers import format_date, parse_date

logger = logging.getLogger(__name__)


def _normalise_expected(expected) -> dict:
    if not expected:
        return {}
    try:
        if isinstance(expected, list):
            return {
                int(row["instance_id"]): parse_date(row.get("new_date"), "expected.new_date")
                for row in expected
            }
        return {int(k): parse_date(v, "expected.new_date") for k, v in expected.items()}
    except (AttributeError, KeyError, TypeError, ValueError):
        raise ValidationError(
            "expected must map instance ids to ISO dates", details={"expected": "invalid"}
        ) from None


def _find_conflicts(expected: dict, planned: dict) -> list[dict]:
    conflicts = []
    for instance_id in sorted(expected):
        actual = planned.get(instance_id)
        if expected[instance_id] != actual:
            conflicts.append({
                "instance_id": instance_id,
                "expected": format_date(expected[instance_id]),
                "actual": format_date(actual),
            })
    return conflicts


def apply_propagation(project_id: int, supplier_ids, expected=None, strict: bool = False) -> dict:
    """Apply the fresh propagation plan for ``supplier_ids``.

    Args:
        project_id: Project whose instances are updated.
        supplier_ids: Supplier ids to update; others are left alone.
        expected: Optional ``{instance_id: "YYYY-MM-DD"}`` (or list of
            ``{"instance_id", "new_date"}``) from the caller's preview.
        strict: Raise instead of applying when ``expected`` is stale.

    Raises:
        NotFoundError: unknown project.
        ConcurrencyConflict: strict mode and the plan moved.
        PropagationApplyError: the write failed; the batch was rolled back.
    """
    selected = set(supplier_ids or [])
    expected_dates = _normalise_expected(expected)

    schedule = load_project_schedule(project_id, lock=True)
    plan = plan_propagation(schedule, get_propagation_policy())
    changes = plan.changes_for(selected)

    planned = {e.instance_id: e.new_date for e in changes}
    conflicts = _find_conflicts(expected_dates, planned)
    if conflicts:
        logger.warning(
            "Propagation plan for project %s moved since preview: %d conflict(s)",
            project_id, len(conflicts),
        )
        if strict:
            db.session.rollback()
            raise ConcurrencyConflict(conflicts)

    instances = {
        inst.id: inst
        for supplier in schedule.suppliers if supplier.supplier_id in selected
        for inst in supplier.instances.values()
    }
    skipped = [
        e for e in plan.wont_change if e.supplier_id in selected
    ]

    try:
        for entry in changes:
            instances[entry.instance_id].computed_date = entry.new_date
        write_audit(
            entity_type="project", entity_id=project_id, action="propagation.apply",
            project_id=project_id,
            diff={
                "supplier_ids": sorted(selected),
                "updated": [
                    {"instance_id": e.instance_id,
                     "old": format_date(e.current_date),
                     "new": format_date(e.new_date)}
                    for e in changes
                ],
                "skipped_count": len(skipped),
            },
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Propagation apply failed for project %s", project_id)
        raise PropagationApplyError(project_id, exc) from exc

    logger.info(
        "Propagation applied for project %s: %d updated, %d skipped",
        project_id, len(changes), len(skipped),
    )
    return {
        "updated_count": len(changes),
        "skipped_count": len(skipped),
        "conflicts": conflicts,
    }
