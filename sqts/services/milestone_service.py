"""
Milestone Service: bulk date update for project milestones.

All updates land in one transaction: an unknown milestone id or an
unparseable date rejects the whole batch. Instance dates are not touched;
the caller previews and applies propagation afterwards.
"""

import logging

from sqlalchemy import select

from sqts.core.exceptions import NotFoundError, ValidationError
from sqts.models import db
from sqts.models.audit import write_audit
from sqts.models.project import Project, ProjectMilestone
from sqts.utils.helpers import format_date, parse_date

logger = logging.getLogger(__name__)


def list_milestones(project_id: int) -> list[ProjectMilestone]:
    if not db.session.get(Project, project_id):
        raise NotFoundError("Project", project_id)
    return db.session.execute(
        select(ProjectMilestone)
        .where(ProjectMilestone.project_id == project_id)
        .order_by(ProjectMilestone.sort_order, ProjectMilestone.id)
    ).scalars().all()


def update_milestone_dates(updates) -> dict:
    """Apply ``[{"milestone_id": int, "date": "YYYY-MM-DD" | None}, ...]``.

    Returns ``{"updated": n}`` where n counts distinct milestones whose date
    actually changed. Project rows of the touched milestones are
    locked for the duration of the transaction.

    Raises:
        ValidationError: malformed entry or date.
        NotFoundError: unknown milestone id; nothing is committed.
    """
    if not isinstance(updates, list):
        raise ValidationError("updates must be a list", details={"updates": "list required"})

    parsed = []
    for idx, entry in enumerate(updates):
        if not isinstance(entry, dict) or "milestone_id" not in entry:
            raise ValidationError(
                "Each update needs a milestone_id", details={"index": idx}
            )
        milestone_id = entry["milestone_id"]
        if isinstance(milestone_id, bool) or not isinstance(milestone_id, int):
            raise ValidationError("milestone_id must be an integer", details={"index": idx})
        parsed.append((milestone_id, parse_date(entry.get("date"), "date")))

    ids = sorted({mid for mid, _ in parsed})
    milestones = {
        m.id: m for m in db.session.execute(
            select(ProjectMilestone).where(ProjectMilestone.id.in_(ids))
        ).scalars()
    } if ids else {}
    missing = [mid for mid in ids if mid not in milestones]
    if missing:
        raise NotFoundError("ProjectMilestone", missing[0])

    project_ids = sorted({m.project_id for m in milestones.values()})
    if project_ids:
        db.session.execute(
            select(Project.id).where(Project.id.in_(project_ids)).with_for_update()
        ).all()

    # later entries for the same milestone win
    final = dict(parsed)
    changes: dict[int, list] = {}
    try:
        for milestone_id in ids:
            m = milestones[milestone_id]
            new_date = final[milestone_id]
            if m.date == new_date:
                continue
            changes.setdefault(m.project_id, []).append({
                "milestone_id": m.id, "name": m.name,
                "old": format_date(m.date), "new": format_date(new_date),
            })
            m.date = new_date
        for project_id, rows in changes.items():
            write_audit(
                entity_type="milestone", entity_id=project_id,
                action="milestone.update_dates", project_id=project_id,
                diff={"milestones": rows},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Milestone date update failed")
        raise

    updated = sum(len(rows) for rows in changes.values())
    logger.info("Milestone dates updated: %d of %d milestone(s) across %d project(s)",
                updated, len(ids), len(changes))
    return {"updated": updated}
