"""
Schedule Item Service: validated writes for template definitions and
project schedule items.

Both scopes share one set of rules (``_apply_payload``):
  - name required, kind MILESTONE | TASK
  - anchor fields must match anchor_type (see ``anchors.anchor_from_payload``)
  - SCHEDULE_ITEM references must point at a sibling in the same scope
    (same template, or same project activity), never at the item itself
  - a write that would close a SCHEDULE_ITEM cycle is rejected

Definition writes bump the template's live version so project activities
show up as out of sync. Project item writes do not touch the template and do
not move instance dates; propagation does that.

Usage:
    from sqts.services import schedule_item_service as svc

    defn = svc.create_definition(template_id, {"name": "PSW", "kind": "MILESTONE",
                                               "anchor_type": "PROJECT_MILESTONE",
                                               "anchor_milestone_name": "PPAP"})
"""

import logging

from sqlalchemy import func, select

from sqts.core.exceptions import NotFoundError, ValidationError
from sqts.models import db
from sqts.models.audit import write_audit
from sqts.models.schedule import ProjectActivity, ProjectScheduleItem
from sqts.models.template import ActivityTemplate, ScheduleItemDefinition
from sqts.services.anchors import (
    ScheduleItemRef,
    anchor_from_payload,
    find_anchor_cycle,
    validate_kind,
    validate_offset,
)

logger = logging.getLogger(__name__)

_ANCHOR_KEYS = ("anchor_type", "anchor_ref_id", "anchor_milestone_name", "fixed_date")


# ── Shared validation ────────────────────────────────────────────────────────


def _validate_sort_order(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("sort_order must be an integer", details={"sort_order": repr(value)})
    return value


def _apply_payload(row, data: dict, siblings: dict, scope: str, *, creating: bool) -> dict:
    """Validate ``data`` against ``row``'s scope and write it.

    ``siblings`` maps id → row for every other item in the same scope.
    Returns ``{field: {"old", "new"}}`` for the fields that changed.
    """
    before = {} if creating else row.item_fields()

    if creating or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        row.name = name[:200]

    if creating or "kind" in data:
        row.kind = validate_kind(data.get("kind", "TASK"))

    if creating or "offset_days" in data:
        row.offset_days = validate_offset(data.get("offset_days"))

    if "sort_order" in data:
        row.sort_order = _validate_sort_order(data["sort_order"])

    if creating or any(k in data for k in _ANCHOR_KEYS):
        anchor = anchor_from_payload(data, current=None if creating else row.anchor)
        if isinstance(anchor, ScheduleItemRef):
            if row.id is not None and anchor.item_id == row.id:
                raise ValidationError(
                    "A schedule item cannot anchor to itself",
                    details={"anchor_ref_id": anchor.item_id},
                )
            if anchor.item_id not in siblings:
                raise ValidationError(
                    f"anchor_ref_id must reference a schedule item in the same {scope}",
                    details={"anchor_ref_id": anchor.item_id},
                )
            if row.id is not None:
                refs = {sid: s.anchor_ref_id for sid, s in siblings.items()}
                refs[row.id] = anchor.item_id
                cycle = find_anchor_cycle(refs, row.id)
                if cycle:
                    raise ValidationError(
                        "Anchor would create a circular dependency",
                        details={"cycle": cycle},
                    )
        row.apply_anchor(anchor)

    after = row.item_fields()
    return {k: {"old": before.get(k), "new": v} for k, v in after.items() if before.get(k) != v}


# ── Template definitions ─────────────────────────────────────────────────────


def _get_template(template_id) -> ActivityTemplate:
    template = db.session.get(ActivityTemplate, template_id)
    if not template:
        raise NotFoundError("ActivityTemplate", template_id)
    return template


def _get_definition(definition_id) -> ScheduleItemDefinition:
    defn = db.session.get(ScheduleItemDefinition, definition_id)
    if not defn:
        raise NotFoundError("ScheduleItemDefinition", definition_id)
    return defn


def _template_definitions(template_id) -> list[ScheduleItemDefinition]:
    return db.session.execute(
        select(ScheduleItemDefinition)
        .where(ScheduleItemDefinition.activity_template_id == template_id)
        .order_by(ScheduleItemDefinition.sort_order, ScheduleItemDefinition.id)
    ).scalars().all()


def list_definitions(template_id: int) -> list[ScheduleItemDefinition]:
    _get_template(template_id)
    return _template_definitions(template_id)


def create_definition(template_id: int, data: dict) -> ScheduleItemDefinition:
    template = _get_template(template_id)
    siblings = {d.id: d for d in _template_definitions(template_id)}

    defn = ScheduleItemDefinition(activity_template_id=template_id)
    if "sort_order" not in data:
        defn.sort_order = db.session.execute(
            select(func.coalesce(func.max(ScheduleItemDefinition.sort_order), -1))
            .where(ScheduleItemDefinition.activity_template_id == template_id)
        ).scalar() + 1
    _apply_payload(defn, data, siblings, "template", creating=True)

    db.session.add(defn)
    template.bump_version()
    db.session.flush()
    write_audit(
        entity_type="schedule_item_definition", entity_id=defn.id, action="create",
        diff={"template_id": template_id, "version": template.version, **defn.item_fields()},
    )
    db.session.commit()
    logger.info("Definition %s created on template %s (v%s)", defn.id, template_id, template.version)
    return defn


def update_definition(definition_id: int, data: dict) -> ScheduleItemDefinition:
    defn = _get_definition(definition_id)
    template = defn.template
    siblings = {d.id: d for d in _template_definitions(template.id) if d.id != defn.id}

    try:
        changes = _apply_payload(defn, data, siblings, "template", creating=False)
    except ValidationError:
        db.session.rollback()
        raise
    if changes:
        template.bump_version()
        write_audit(
            entity_type="schedule_item_definition", entity_id=defn.id, action="update",
            diff={"template_id": template.id, "version": template.version, "fields": changes},
        )
    db.session.commit()
    logger.info("Definition %s updated (%d field(s))", defn.id, len(changes))
    return defn


def delete_definition(definition_id: int) -> None:
    """Delete a definition that no other definition anchors onto."""
    defn = _get_definition(definition_id)
    template = defn.template
    dependents = [
        d.id for d in _template_definitions(template.id)
        if d.id != defn.id and d.anchor_ref_id == defn.id
        and d.anchor_type == ScheduleItemRef.anchor_type.value
    ]
    if dependents:
        raise ValidationError(
            "Schedule item is referenced by other items; re-anchor them first",
            details={"referenced_by": dependents},
        )

    snapshot = defn.item_fields()
    db.session.delete(defn)
    template.bump_version()
    write_audit(
        entity_type="schedule_item_definition", entity_id=definition_id, action="delete",
        diff={"template_id": template.id, "version": template.version, **snapshot},
    )
    db.session.commit()
    logger.info("Definition %s deleted from template %s", definition_id, template.id)


# ── Project items ────────────────────────────────────────────────────────────


def update_project_item(item_id: int, data: dict) -> ProjectScheduleItem:
    """Edit a project-level item with the same rules as a definition."""
    item = db.session.get(ProjectScheduleItem, item_id)
    if not item:
        raise NotFoundError("ProjectScheduleItem", item_id)
    siblings = {
        s.id: s for s in db.session.execute(
            select(ProjectScheduleItem).where(
                ProjectScheduleItem.project_activity_id == item.project_activity_id,
                ProjectScheduleItem.id != item.id,
            )
        ).scalars()
    }

    try:
        changes = _apply_payload(item, data, siblings, "activity", creating=False)
    except ValidationError:
        db.session.rollback()
        raise
    if changes:
        activity = db.session.get(ProjectActivity, item.project_activity_id)
        write_audit(
            entity_type="project_schedule_item", entity_id=item.id, action="update",
            project_id=activity.project_id, diff={"fields": changes},
        )
    db.session.commit()
    logger.info("Project item %s updated (%d field(s))", item.id, len(changes))
    return item
