"""
Instantiation Service: attach templates and suppliers to projects.

instantiate_activity:  copy a template's definitions into project items
                       (two passes so SCHEDULE_ITEM anchors point at the new
                       item ids) and give every supplier on the project an
                       instance of each new item.
attach_supplier:       add a supplier to a project and create its instances
                       for every existing project item. Re-attaching only
                       fills in missing instances.

New instances start with ``computed_date`` already derived, using the
supplier's own completion dates (none yet, so COMPLETION anchors start empty).
"""

import logging

from sqlalchemy import func, select

from sqts.core.exceptions import ConflictError, NotFoundError
from sqts.models import db
from sqts.models.audit import write_audit
from sqts.models.project import Project, Supplier, SupplierProject
from sqts.models.schedule import ProjectActivity, ProjectScheduleItem, ScheduleItemInstance
from sqts.models.template import ActivityTemplate, ScheduleItemDefinition
from sqts.services.anchors import AnchorType
from sqts.services.date_derivation import derive_all
from sqts.services.schedule_snapshot import load_project_schedule
from sqts.services.settings_service import get_propagation_policy

logger = logging.getLogger(__name__)


# ── Item copying ─────────────────────────────────────────────────────────────


def copy_item_fields(target, source, ref_map: dict[int, int] | None = None) -> None:
    """Copy kind/name/anchor/offset/order from ``source`` onto ``target``.

    ``ref_map`` translates a SCHEDULE_ITEM reference from the source id
    space to the target id space. Without it the reference is left empty
    for a second pass to fill in.
    """
    target.kind = source.kind
    target.name = source.name
    target.offset_days = source.offset_days or 0
    target.sort_order = source.sort_order or 0
    target.anchor_type = source.anchor_type
    target.fixed_date = source.fixed_date
    target.anchor_milestone_name = source.anchor_milestone_name
    target.anchor_ref_id = None
    if ref_map is not None and source.anchor_type == AnchorType.SCHEDULE_ITEM.value:
        target.anchor_ref_id = ref_map.get(source.anchor_ref_id)
        if target.anchor_ref_id is None:
            logger.warning(
                "Anchor of %r references id %s outside the copied set",
                source, source.anchor_ref_id,
            )


def copy_definitions(activity: ProjectActivity, definitions) -> dict[int, ProjectScheduleItem]:
    """Create one project item per definition; returns ``{definition_id: item}``."""
    created: dict[int, ProjectScheduleItem] = {}
    for defn in definitions:
        item = ProjectScheduleItem(project_activity_id=activity.id, definition_id=defn.id)
        copy_item_fields(item, defn)
        db.session.add(item)
        created[defn.id] = item
    db.session.flush()

    ref_map = {def_id: item.id for def_id, item in created.items()}
    for defn in definitions:
        if defn.anchor_type == AnchorType.SCHEDULE_ITEM.value:
            copy_item_fields(created[defn.id], defn, ref_map)
    db.session.flush()
    return created


# ── Instances ────────────────────────────────────────────────────────────────


def seed_instances(project_id: int, item_ids=None, supplier_project_ids=None) -> int:
    """Create missing instances and derive their ``computed_date``.

    Only (supplier, item) pairs without an instance are touched; existing
    instances keep their dates. ``item_ids``/``supplier_project_ids``
    restrict the pairs considered. Returns the number of instances created.
    """
    schedule = load_project_schedule(project_id)
    policy = get_propagation_policy()
    wanted_items = set(schedule.items) if item_ids is None else set(item_ids) & set(schedule.items)

    created = []
    for supplier in schedule.suppliers:
        if supplier_project_ids is not None and supplier.supplier_project_id not in supplier_project_ids:
            continue
        missing = [i for i in schedule.items if i in wanted_items and i not in supplier.instances]
        if not missing:
            continue
        derived = derive_all(
            schedule.nodes,
            milestone_dates=schedule.milestone_dates,
            use_business_days=policy.use_business_days,
            completion_dates=supplier.completion_dates,
        )
        for item_id in missing:
            inst = ScheduleItemInstance(
                supplier_project_id=supplier.supplier_project_id,
                project_schedule_item_id=item_id,
                computed_date=derived.date_of(item_id),
                status="NOT_STARTED",
            )
            db.session.add(inst)
            created.append(inst)
    db.session.flush()
    return len(created)


# ── Activities ───────────────────────────────────────────────────────────────


def instantiate_activity(project: Project, template: ActivityTemplate) -> tuple[ProjectActivity, int]:
    """Attach ``template`` to ``project`` inside the caller's transaction.

    Returns ``(activity, instances_created)``.

    Raises:
        ConflictError: the template is already attached to the project.
    """
    existing = db.session.execute(
        select(ProjectActivity).where(
            ProjectActivity.project_id == project.id,
            ProjectActivity.activity_template_id == template.id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("ProjectActivity", "activity_template_id", str(template.id))

    next_order = db.session.execute(
        select(func.coalesce(func.max(ProjectActivity.sort_order), -1))
        .where(ProjectActivity.project_id == project.id)
    ).scalar() + 1
    activity = ProjectActivity(
        project_id=project.id,
        activity_template_id=template.id,
        synced_version=template.version,
        sort_order=next_order,
    )
    db.session.add(activity)
    db.session.flush()

    definitions = db.session.execute(
        select(ScheduleItemDefinition)
        .where(ScheduleItemDefinition.activity_template_id == template.id)
        .order_by(ScheduleItemDefinition.sort_order, ScheduleItemDefinition.id)
    ).scalars().all()
    created = copy_definitions(activity, definitions)
    instances = seed_instances(project.id, item_ids=[i.id for i in created.values()])

    logger.info(
        "Instantiated template %s on project %s: %d item(s), %d instance(s)",
        template.id, project.id, len(created), instances,
    )
    return activity, instances


def attach_activity(project_id: int, template_id: int) -> dict:
    """Instantiate a template on a project and commit."""
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)
    template = db.session.get(ActivityTemplate, template_id)
    if not template:
        raise NotFoundError("ActivityTemplate", template_id)

    activity, instances = instantiate_activity(project, template)
    write_audit(
        entity_type="project_activity", entity_id=activity.id,
        action="project_activity.instantiate", project_id=project_id,
        diff={"activity_template_id": template_id, "version": template.version,
              "instances_created": instances},
    )
    db.session.commit()
    d = activity.to_dict()
    d["instances_created"] = instances
    return d


# ── Suppliers ────────────────────────────────────────────────────────────────


def attach_supplier(project_id: int, supplier_id: int) -> dict:
    """Put a supplier on a project; idempotent.

    Returns the SupplierProject dict plus ``created`` (False when the
    supplier was already attached) and ``instances_created``.
    """
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError("Project", project_id)
    supplier = db.session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier", supplier_id)

    sp = db.session.execute(
        select(SupplierProject).where(
            SupplierProject.project_id == project_id,
            SupplierProject.supplier_id == supplier_id,
        )
    ).scalar_one_or_none()
    created = sp is None
    if created:
        sp = SupplierProject(project_id=project_id, supplier_id=supplier_id)
        db.session.add(sp)
        db.session.flush()

    instances = seed_instances(project_id, supplier_project_ids={sp.id})
    if created or instances:
        write_audit(
            entity_type="project", entity_id=project_id, action="update",
            project_id=project_id,
            diff={"supplier_attached": supplier_id, "instances_created": instances},
        )
    db.session.commit()
    logger.info(
        "Supplier %s attached to project %s (new=%s, instances=%d)",
        supplier_id, project_id, created, instances,
    )
    d = sp.to_dict()
    d["created"] = created
    d["instances_created"] = instances
    return d
