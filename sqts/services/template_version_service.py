"""
Template Version Service: snapshots, restore and project sync.

Versioning model:
  - ``ActivityTemplate.version`` is the live counter; definition writes and
    restores bump it.
  - ``save_version`` freezes the live definitions as ``TemplateVersion`` at
    the current counter. One snapshot per (template, version_number).
  - ``restore_version`` replaces the live definitions with a snapshot's
    (fresh rows, anchor references remapped) and bumps the counter, so a
    restore is itself a new version.
  - A ``ProjectActivity`` is out of sync while ``synced_version`` is below
    the template's live version. ``apply_sync`` brings it level using the
    diff from ``template_sync.diff_activity``.

Orphaned project items (no matching definition any more) are kept on sync;
they may carry supplier progress.

Usage:
    from sqts.services import template_version_service as tvs

    tvs.save_version(template_id, "Release for PPAP L3")
    tvs.check_out_of_sync(template_id)
    tvs.apply_sync(project_activity_id)
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sqts.core.exceptions import ConflictError, NotFoundError, ValidationError
from sqts.models import db
from sqts.models.audit import write_audit
from sqts.models.project import Project
from sqts.models.schedule import ProjectActivity, ProjectScheduleItem
from sqts.models.template import ActivityTemplate, ScheduleItemDefinition, TemplateVersion
from sqts.services.anchors import AnchorType
from sqts.services.instantiation_service import (
    copy_item_fields,
    instantiate_activity,
    seed_instances,
)
from sqts.services.template_sync import diff_activity
from sqts.utils.helpers import parse_date

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def _get_template(template_id) -> ActivityTemplate:
    template = db.session.get(ActivityTemplate, template_id)
    if not template:
        raise NotFoundError("ActivityTemplate", template_id)
    return template


def _get_version(version_id) -> TemplateVersion:
    version = db.session.get(TemplateVersion, version_id)
    if not version:
        raise NotFoundError("TemplateVersion", version_id)
    return version


def _get_activity(project_activity_id) -> ProjectActivity:
    activity = db.session.get(ProjectActivity, project_activity_id)
    if not activity:
        raise NotFoundError("ProjectActivity", project_activity_id)
    return activity


def _definitions(template_id) -> list[ScheduleItemDefinition]:
    return db.session.execute(
        select(ScheduleItemDefinition)
        .where(ScheduleItemDefinition.activity_template_id == template_id)
        .order_by(ScheduleItemDefinition.sort_order, ScheduleItemDefinition.id)
    ).scalars().all()


def _items(project_activity_id) -> list[ProjectScheduleItem]:
    return db.session.execute(
        select(ProjectScheduleItem)
        .where(ProjectScheduleItem.project_activity_id == project_activity_id)
        .order_by(ProjectScheduleItem.sort_order, ProjectScheduleItem.id)
    ).scalars().all()


def _lock_projects(project_ids) -> None:
    ids = sorted(set(project_ids))
    if ids:
        db.session.execute(
            select(Project.id).where(Project.id.in_(ids)).with_for_update()
        ).all()


# ═════════════════════════════════════════════════════════════════════════════
# Snapshots
# ═════════════════════════════════════════════════════════════════════════════


def build_snapshot(template: ActivityTemplate) -> dict:
    return {
        "template": {
            "name": template.name,
            "description": template.description,
            "category": template.category,
            "version": template.version,
        },
        "definitions": [
            {"id": d.id, **d.item_fields()} for d in _definitions(template.id)
        ],
    }


def save_version(template_id: int, name: str | None = None, description: str | None = None) -> TemplateVersion:
    """Snapshot the live definitions at the template's current version.

    Raises:
        ConflictError: a snapshot already exists at this version number.
    """
    template = _get_template(template_id)
    existing = db.session.execute(
        select(TemplateVersion).where(
            TemplateVersion.activity_template_id == template_id,
            TemplateVersion.version_number == template.version,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("TemplateVersion", "version_number", str(template.version))

    version = TemplateVersion(
        activity_template_id=template_id,
        version_number=template.version,
        name=((name or "").strip() or f"Version {template.version}")[:200],
        description=description,
        snapshot=build_snapshot(template),
    )
    db.session.add(version)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("TemplateVersion", "version_number", str(template.version)) from None

    write_audit(
        entity_type="template_version", entity_id=version.id, action="template_version.save",
        diff={"template_id": template_id, "version_number": version.version_number,
              "definitions": len(version.snapshot["definitions"])},
    )
    db.session.commit()
    logger.info("Template %s saved as version %s", template_id, version.version_number)
    return version


def list_versions(template_id: int) -> list[TemplateVersion]:
    _get_template(template_id)
    return db.session.execute(
        select(TemplateVersion)
        .where(TemplateVersion.activity_template_id == template_id)
        .order_by(TemplateVersion.version_number.desc())
    ).scalars().all()


def get_version(version_id: int) -> TemplateVersion:
    return _get_version(version_id)


def delete_version(version_id: int) -> None:
    version = _get_version(version_id)
    write_audit(
        entity_type="template_version", entity_id=version.id, action="template_version.delete",
        diff={"template_id": version.activity_template_id,
              "version_number": version.version_number},
    )
    db.session.delete(version)
    db.session.commit()
    logger.info("Template version %s deleted", version_id)


def restore_version(version_id: int) -> ActivityTemplate:
    """Replace the live definitions with a snapshot's and bump the version."""
    version = _get_version(version_id)
    template = _get_template(version.activity_template_id)
    rows = list((version.snapshot or {}).get("definitions", []))

    try:
        for defn in _definitions(template.id):
            db.session.delete(defn)
        db.session.flush()

        # pass 1: rows without SCHEDULE_ITEM references; pass 2: remap snapshot ids
        created: list[tuple[dict, ScheduleItemDefinition]] = []
        for row in rows:
            defn = ScheduleItemDefinition(
                activity_template_id=template.id,
                kind=row["kind"],
                name=row["name"],
                anchor_type=row["anchor_type"],
                anchor_milestone_name=row.get("anchor_milestone_name"),
                fixed_date=parse_date(row.get("fixed_date"), "fixed_date"),
                offset_days=row.get("offset_days") or 0,
                sort_order=row.get("sort_order") or 0,
            )
            db.session.add(defn)
            created.append((row, defn))
        db.session.flush()

        id_map = {row["id"]: defn.id for row, defn in created}
        for row, defn in created:
            if row["anchor_type"] == AnchorType.SCHEDULE_ITEM.value:
                defn.anchor_ref_id = id_map.get(row.get("anchor_ref_id"))
                if defn.anchor_ref_id is None:
                    raise ValidationError(
                        "Snapshot anchor references a definition missing from the snapshot",
                        details={"definition": row["name"]},
                    )

        template.bump_version()
        write_audit(
            entity_type="template_version", entity_id=version.id,
            action="template_version.restore",
            diff={"template_id": template.id, "restored_version": version.version_number,
                  "new_version": template.version, "definitions": len(created)},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Restore of template version %s failed", version_id)
        raise

    logger.info(
        "Template %s restored from version %s (now v%s)",
        template.id, version.version_number, template.version,
    )
    return template


# ═════════════════════════════════════════════════════════════════════════════
# Out-of-sync detection
# ═════════════════════════════════════════════════════════════════════════════


def check_out_of_sync(template_id: int) -> list[dict]:
    """Project activities of ``template_id`` behind its live version."""
    template = _get_template(template_id)
    rows = db.session.execute(
        select(ProjectActivity, Project)
        .join(Project, ProjectActivity.project_id == Project.id)
        .where(
            ProjectActivity.activity_template_id == template_id,
            ProjectActivity.synced_version < template.version,
        )
        .order_by(Project.name, Project.id)
    ).all()
    return [
        {
            "project_activity_id": activity.id,
            "project_id": project.id,
            "project_name": project.name,
            "synced_version": activity.synced_version,
            "latest_version": template.version,
        }
        for activity, project in rows
    ]


def check_project_out_of_sync(project_id: int) -> list[dict]:
    """Activities of one project whose template moved on."""
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)
    rows = db.session.execute(
        select(ProjectActivity, ActivityTemplate)
        .join(ActivityTemplate, ProjectActivity.activity_template_id == ActivityTemplate.id)
        .where(
            ProjectActivity.project_id == project_id,
            ProjectActivity.synced_version < ActivityTemplate.version,
        )
        .order_by(ProjectActivity.sort_order, ProjectActivity.id)
    ).all()
    return [
        {
            "project_activity_id": activity.id,
            "project_id": project.id,
            "project_name": project.name,
            "activity_template_id": template.id,
            "template_name": template.name,
            "synced_version": activity.synced_version,
            "latest_version": template.version,
        }
        for activity, template in rows
    ]


def project_template_status(template_id: int) -> list[dict]:
    """Every project with whether (and how current) ``template_id`` is on it."""
    template = _get_template(template_id)
    activities = {
        a.project_id: a for a in db.session.execute(
            select(ProjectActivity).where(ProjectActivity.activity_template_id == template_id)
        ).scalars()
    }
    projects = db.session.execute(select(Project).order_by(Project.name, Project.id)).scalars()
    result = []
    for project in projects:
        activity = activities.get(project.id)
        result.append({
            "project_id": project.id,
            "project_name": project.name,
            "has_activity": activity is not None,
            "project_activity_id": activity.id if activity else None,
            "synced_version": activity.synced_version if activity else None,
            "latest_version": template.version,
            "is_out_of_sync": bool(activity and activity.synced_version < template.version),
        })
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Sync
# ═════════════════════════════════════════════════════════════════════════════


def preview_sync(project_activity_id: int) -> dict:
    """Read-only diff of an activity against its template's live definitions."""
    activity = _get_activity(project_activity_id)
    template = _get_template(activity.activity_template_id)
    diff = diff_activity(_items(activity.id), _definitions(template.id))
    result = diff.to_dict()
    result.update({
        "project_activity_id": activity.id,
        "current_version": activity.synced_version,
        "latest_version": template.version,
    })
    return result


def _sync_activity(activity: ProjectActivity) -> dict:
    """Bring one activity level with its template inside the open transaction."""
    template = _get_template(activity.activity_template_id)
    definitions = _definitions(template.id)
    diff = diff_activity(_items(activity.id), definitions)

    def_to_item = {def_id: item_id for item_id, def_id in diff.matches.items()}

    new_items = []
    for defn in diff.added:
        item = ProjectScheduleItem(project_activity_id=activity.id, definition_id=defn.id)
        copy_item_fields(item, defn)
        db.session.add(item)
        new_items.append((defn, item))
    db.session.flush()
    def_to_item.update({defn.id: item.id for defn, item in new_items})

    for defn, item in new_items:
        copy_item_fields(item, defn, def_to_item)
    for change in diff.changed:
        copy_item_fields(change.item, change.definition, def_to_item)
        change.item.definition_id = change.definition.id
    db.session.flush()

    instances = seed_instances(activity.project_id, item_ids=[item.id for _, item in new_items])

    from_version = activity.synced_version
    activity.synced_version = template.version
    result = {
        "project_activity_id": activity.id,
        "added": len(diff.added),
        "updated": len(diff.changed),
        "orphaned": len(diff.orphaned),
        "instances_created": instances,
        "from_version": from_version,
        "to_version": template.version,
    }
    write_audit(
        entity_type="project_activity", entity_id=activity.id,
        action="project_activity.sync", project_id=activity.project_id,
        diff={**result, "orphaned_item_ids": [i.id for i in diff.orphaned]},
    )
    return result


def apply_sync(project_activity_id: int) -> dict:
    """Sync one activity; returns added/updated/orphaned/instances_created counts."""
    activity = _get_activity(project_activity_id)
    _lock_projects([activity.project_id])
    try:
        result = _sync_activity(activity)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Sync of project activity %s failed", project_activity_id)
        raise
    logger.info(
        "Project activity %s synced v%s → v%s (+%d, ~%d, orphaned %d)",
        activity.id, result["from_version"], result["to_version"],
        result["added"], result["updated"], result["orphaned"],
    )
    return result


def sync_all(project_activity_ids) -> dict:
    """Sync several activities in one transaction.

    Raises:
        NotFoundError: any id is unknown; nothing is synced.
    """
    activities = [_get_activity(pa_id) for pa_id in dict.fromkeys(project_activity_ids)]
    _lock_projects(a.project_id for a in activities)
    try:
        results = [_sync_activity(a) for a in activities]
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Batch sync failed for activities %s", list(project_activity_ids))
        raise
    logger.info("Batch sync: %d activit(ies) synced", len(results))
    return {"synced": len(results), "results": results}


# ═════════════════════════════════════════════════════════════════════════════
# Batch instantiation
# ═════════════════════════════════════════════════════════════════════════════


def apply_to_projects(template_id: int, project_ids) -> list[dict]:
    """Instantiate ``template_id`` on each project that does not have it yet."""
    template = _get_template(template_id)
    project_ids = list(dict.fromkeys(project_ids))
    _lock_projects(project_ids)

    attached = {
        a.project_id for a in db.session.execute(
            select(ProjectActivity).where(
                ProjectActivity.activity_template_id == template_id,
                ProjectActivity.project_id.in_(project_ids),
            )
        ).scalars()
    } if project_ids else set()

    results = []
    try:
        for pid in project_ids:
            project = db.session.get(Project, pid)
            if project is None:
                results.append({"project_id": pid, "project_name": None,
                                "added": False, "skipped": True, "reason": "Project not found"})
                continue
            if pid in attached:
                results.append({"project_id": pid, "project_name": project.name,
                                "added": False, "skipped": True, "reason": "Already instantiated"})
                continue
            activity, instances = instantiate_activity(project, template)
            results.append({"project_id": pid, "project_name": project.name,
                            "added": True, "skipped": False, "reason": None,
                            "project_activity_id": activity.id,
                            "instances_created": instances})

        write_audit(
            entity_type="activity_template", entity_id=template_id,
            action="template.apply_to_projects",
            diff={"version": template.version,
                  "added": [r["project_id"] for r in results if r["added"]],
                  "skipped": [r["project_id"] for r in results if r["skipped"]]},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Applying template %s to projects failed", template_id)
        raise

    logger.info(
        "Template %s applied to %d project(s), %d skipped",
        template_id, sum(r["added"] for r in results), sum(r["skipped"] for r in results),
    )
    return results
