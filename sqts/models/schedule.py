"""
SQTS Schedule Engine
Project schedule models.

Models:
    - ProjectActivity:       an activity template attached to a project
    - ProjectScheduleItem:   the project's live copy of one definition
    - ScheduleItemInstance:  one supplier's tracked copy of a project item

Architecture:
    Project ──1:N──▶ ProjectActivity ──1:N──▶ ProjectScheduleItem
    ProjectScheduleItem ──1:N──▶ ScheduleItemInstance ◀──N:1── SupplierProject

Project items are what derivation runs over for a project. Template edits
reach them only through an explicit sync (``template_version_service``);
``definition_id`` is lineage only and may point at a definition that no
longer exists.
"""

from datetime import datetime, timezone

from sqts.models import db
from sqts.models.base import AnchoredItemMixin

# ── Constants ────────────────────────────────────────────────────────────────

INSTANCE_STATUSES = {
    "NOT_STARTED", "IN_PROGRESS", "UNDER_REVIEW",
    "BLOCKED", "COMPLETE", "NOT_REQUIRED",
}
STATUS_COMPLETE = "COMPLETE"


class ProjectActivity(db.Model):
    __tablename__ = "project_activities"
    __table_args__ = (
        db.UniqueConstraint("project_id", "activity_template_id", name="uq_project_activity"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    activity_template_id = db.Column(
        db.Integer, db.ForeignKey("activity_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    synced_version = db.Column(db.Integer, nullable=False, default=1,
                               comment="Template version the project items were last synced to")
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    template = db.relationship("ActivityTemplate")
    items = db.relationship(
        "ProjectScheduleItem", backref="activity", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ProjectScheduleItem.sort_order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "activity_template_id": self.activity_template_id,
            "template_name": self.template.name if self.template else None,
            "synced_version": self.synced_version,
            "latest_version": self.template.version if self.template else None,
            "sort_order": self.sort_order,
        }


class ProjectScheduleItem(AnchoredItemMixin, db.Model):
    """Project-level schedule item; SCHEDULE_ITEM anchors point at siblings in the same activity."""

    __tablename__ = "project_schedule_items"
    __table_args__ = (
        db.CheckConstraint("kind IN ('MILESTONE','TASK')", name="ck_psi_kind"),
        db.CheckConstraint(
            "anchor_type IN ('FIXED_DATE','SCHEDULE_ITEM','PROJECT_MILESTONE','COMPLETION')",
            name="ck_psi_anchor_type",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_activity_id = db.Column(
        db.Integer, db.ForeignKey("project_activities.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    definition_id = db.Column(db.Integer, nullable=True,
                              comment="Lineage to the source definition; not enforced")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    instances = db.relationship(
        "ScheduleItemInstance", backref="item", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        d = {
            "id": self.id,
            "project_activity_id": self.project_activity_id,
            "definition_id": self.definition_id,
        }
        d.update(self.item_fields())
        return d

    def __repr__(self):
        return f"<ProjectScheduleItem {self.id}: {self.name}>"


class ScheduleItemInstance(db.Model):
    """
    One supplier's copy of a project schedule item.

    Effective date = ``override_date`` when ``override_enabled`` else
    ``computed_date``. Propagation only ever writes ``computed_date``.
    """

    __tablename__ = "schedule_item_instances"
    __table_args__ = (
        db.UniqueConstraint("supplier_project_id", "project_schedule_item_id",
                            name="uq_instance_supplier_item"),
        db.CheckConstraint(
            "status IN ('NOT_STARTED','IN_PROGRESS','UNDER_REVIEW','BLOCKED','COMPLETE','NOT_REQUIRED')",
            name="ck_instance_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_project_id = db.Column(
        db.Integer, db.ForeignKey("supplier_projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_schedule_item_id = db.Column(
        db.Integer, db.ForeignKey("project_schedule_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    computed_date = db.Column(db.Date, nullable=True)
    override_enabled = db.Column(db.Boolean, nullable=False, default=False)
    override_date = db.Column(db.Date, nullable=True)
    locked = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(20), nullable=False, default="NOT_STARTED")
    actual_date = db.Column(db.Date, nullable=True)
    completion_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def effective_date(self):
        return self.override_date if self.override_enabled else self.computed_date

    def to_dict(self):
        return {
            "id": self.id,
            "supplier_project_id": self.supplier_project_id,
            "project_schedule_item_id": self.project_schedule_item_id,
            "computed_date": self.computed_date.isoformat() if self.computed_date else None,
            "override_enabled": self.override_enabled,
            "override_date": self.override_date.isoformat() if self.override_date else None,
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
            "locked": self.locked,
            "status": self.status,
            "actual_date": self.actual_date.isoformat() if self.actual_date else None,
            "completion_date": self.completion_date.isoformat() if self.completion_date else None,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<ScheduleItemInstance {self.id}: item={self.project_schedule_item_id} [{self.status}]>"
