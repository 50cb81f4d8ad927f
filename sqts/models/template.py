"""
SQTS Schedule Engine
Activity template models.

Models:
    - ActivityTemplate:        reusable set of schedule items (e.g. "PPAP Level 3")
    - ScheduleItemDefinition:  one anchored item of a template
    - TemplateVersion:         immutable snapshot of a template at a version

Architecture:
    ActivityTemplate ──1:N──▶ ScheduleItemDefinition
    ActivityTemplate ──1:N──▶ TemplateVersion      (append-only log)
    ActivityTemplate ──1:N──▶ ProjectActivity      (see models/schedule.py)

``ActivityTemplate.version`` is the live version counter. It starts at 1 and
every definition write (and every restore) increments it; a project activity
whose ``synced_version`` is lower is out of sync.
"""

from datetime import datetime, timezone

from sqts.models import db
from sqts.models.base import AnchoredItemMixin


class ActivityTemplate(db.Model):
    __tablename__ = "activity_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(100), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1,
                        comment="Live version counter, bumped on every definition write")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    definitions = db.relationship(
        "ScheduleItemDefinition", backref="template", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="ScheduleItemDefinition.sort_order",
    )
    versions = db.relationship(
        "TemplateVersion", backref="template", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TemplateVersion.version_number.desc()",
    )

    def bump_version(self):
        self.version = (self.version or 1) + 1

    def to_dict(self, include_definitions=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "version": self.version,
        }
        if include_definitions:
            d["definitions"] = [defn.to_dict() for defn in self.definitions]
        return d

    def __repr__(self):
        return f"<ActivityTemplate {self.id}: {self.name} v{self.version}>"


class ScheduleItemDefinition(AnchoredItemMixin, db.Model):
    """Template-scoped schedule item.

    SCHEDULE_ITEM anchors reference another definition of the same template
    by id; the reference graph is kept acyclic by ``schedule_item_service``.
    Ids are never reused (AUTOINCREMENT on SQLite): project items keep them
    as lineage after the definition is gone.
    """

    __tablename__ = "schedule_item_definitions"
    __table_args__ = (
        db.CheckConstraint("kind IN ('MILESTONE','TASK')", name="ck_sid_kind"),
        db.CheckConstraint(
            "anchor_type IN ('FIXED_DATE','SCHEDULE_ITEM','PROJECT_MILESTONE','COMPLETION')",
            name="ck_sid_anchor_type",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    activity_template_id = db.Column(
        db.Integer, db.ForeignKey("activity_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        d = {"id": self.id, "activity_template_id": self.activity_template_id}
        d.update(self.item_fields())
        return d

    def __repr__(self):
        return f"<ScheduleItemDefinition {self.id}: {self.name} ({self.anchor_type})>"


class TemplateVersion(db.Model):
    """
    Immutable snapshot of a template.

    ``snapshot`` holds ``{"template": {...metadata}, "definitions": [...]}``
    with definitions in sort order. Definition ids inside the snapshot are the
    ids at save time; restore remaps them onto freshly created rows.
    """

    __tablename__ = "template_versions"
    __table_args__ = (
        db.UniqueConstraint("activity_template_id", "version_number",
                            name="uq_template_version_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    activity_template_id = db.Column(
        db.Integer, db.ForeignKey("activity_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    version_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    snapshot = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self, include_snapshot=False):
        d = {
            "id": self.id,
            "activity_template_id": self.activity_template_id,
            "version_number": self.version_number,
            "name": self.name,
            "description": self.description,
            "definition_count": len((self.snapshot or {}).get("definitions", [])),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_snapshot:
            d["snapshot"] = self.snapshot
        return d

    def __repr__(self):
        return f"<TemplateVersion {self.id}: template={self.activity_template_id} v{self.version_number}>"
