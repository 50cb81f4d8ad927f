"""
Project schedule snapshot: the in-memory view every engine pass runs over.

``load_project_schedule`` reads a project's milestones, activities, project
schedule items and supplier instances once and hands back plain
dictionaries keyed by id. The derivation engine, the propagation planner and
instantiation all work from this snapshot; none of them query the session
while computing.

Ordering used everywhere a project schedule is listed:
    activity sort_order, activity id, item sort_order, item id
Suppliers are ordered by name, then id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import select

from sqts.core.exceptions import NotFoundError
from sqts.models import db
from sqts.models.project import Project, ProjectMilestone, Supplier, SupplierProject
from sqts.models.schedule import ProjectActivity, ProjectScheduleItem, ScheduleItemInstance
from sqts.services.anchor_resolver import ScheduleNode


def node_from_item(item, sort_order: int | None = None) -> ScheduleNode:
    """Engine node for a definition or project item row."""
    return ScheduleNode(
        item_id=item.id,
        name=item.name,
        anchor=item.anchor,
        offset_days=item.offset_days or 0,
        sort_order=item.sort_order if sort_order is None else sort_order,
    )


def milestone_dates_for(project_id: int) -> dict[str, date | None]:
    """``{name: date}``; duplicate names resolve to the first by sort order."""
    rows = db.session.execute(
        select(ProjectMilestone)
        .where(ProjectMilestone.project_id == project_id)
        .order_by(ProjectMilestone.sort_order, ProjectMilestone.id)
    ).scalars().all()
    dates: dict[str, date | None] = {}
    for m in rows:
        dates.setdefault(m.name, m.date)
    return dates


@dataclass
class SupplierSchedule:
    supplier_project_id: int
    supplier_id: int
    supplier_name: str
    instances: dict[int, ScheduleItemInstance] = field(default_factory=dict)

    @property
    def completion_dates(self) -> dict[int, date | None]:
        return {item_id: inst.completion_date for item_id, inst in self.instances.items()}


@dataclass
class ProjectSchedule:
    project: Project
    activities: list[ProjectActivity]
    items: dict[int, ProjectScheduleItem]
    nodes: dict[int, ScheduleNode]
    milestone_dates: dict[str, date | None]
    suppliers: list[SupplierSchedule]

    def supplier(self, supplier_id: int) -> SupplierSchedule | None:
        for s in self.suppliers:
            if s.supplier_id == supplier_id:
                return s
        return None

    def ordered_item_ids(self) -> list[int]:
        return list(self.items)


def load_project_schedule(project_id: int, *, lock: bool = False) -> ProjectSchedule:
    """Load everything one derivation/propagation pass needs for a project.

    Args:
        project_id: Project to load.
        lock: Take a row lock on the project (``SELECT … FOR UPDATE``) for
            the rest of the transaction.

    Raises:
        NotFoundError: unknown project.
    """
    stmt = select(Project).where(Project.id == project_id)
    if lock:
        stmt = stmt.with_for_update()
    project = db.session.execute(stmt).scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project", project_id)

    activities = db.session.execute(
        select(ProjectActivity)
        .where(ProjectActivity.project_id == project_id)
        .order_by(ProjectActivity.sort_order, ProjectActivity.id)
    ).scalars().all()
    activity_rank = {a.id: rank for rank, a in enumerate(activities)}

    item_rows = db.session.execute(
        select(ProjectScheduleItem)
        .join(ProjectActivity, ProjectScheduleItem.project_activity_id == ProjectActivity.id)
        .where(ProjectActivity.project_id == project_id)
    ).scalars().all()
    item_rows = sorted(
        item_rows,
        key=lambda i: (activity_rank[i.project_activity_id], i.sort_order or 0, i.id),
    )
    items = {i.id: i for i in item_rows}
    # node sort_order is the global schedule position, so derive_all walks in list order
    nodes = {i.id: node_from_item(i, sort_order=pos) for pos, i in enumerate(item_rows)}

    rows = db.session.execute(
        select(SupplierProject, Supplier)
        .join(Supplier, SupplierProject.supplier_id == Supplier.id)
        .where(SupplierProject.project_id == project_id)
        .order_by(Supplier.name, Supplier.id)
    ).all()
    suppliers = [
        SupplierSchedule(supplier_project_id=sp.id, supplier_id=s.id, supplier_name=s.name)
        for sp, s in rows
    ]
    by_sp = {s.supplier_project_id: s for s in suppliers}
    if by_sp:
        instances = db.session.execute(
            select(ScheduleItemInstance)
            .where(ScheduleItemInstance.supplier_project_id.in_(list(by_sp)))
        ).scalars().all()
        for inst in instances:
            if inst.project_schedule_item_id in items:
                by_sp[inst.supplier_project_id].instances[inst.project_schedule_item_id] = inst

    return ProjectSchedule(
        project=project,
        activities=list(activities),
        items=items,
        nodes=nodes,
        milestone_dates=milestone_dates_for(project_id),
        suppliers=suppliers,
    )
