"""
SQTS Schedule Engine
Project-side domain models.

Models:
    - Supplier:          an external supplier tracked by the quality team
    - Project:           a vehicle/part programme with its own milestones
    - SupplierProject:   a supplier's participation in a project
    - ProjectMilestone:  a named, dated project-level anchor (e.g. "PPAP")

Architecture:
    Project ──1:N──▶ ProjectMilestone
    Project ──1:N──▶ SupplierProject ◀──N:1── Supplier
    Project ──1:N──▶ ProjectActivity            (see models/schedule.py)
"""

from datetime import datetime, timezone

from sqts.models import db


class Supplier(db.Model):
    __tablename__ = "suppliers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    notes = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {"id": self.id, "name": self.name, "notes": self.notes}

    def __repr__(self):
        return f"<Supplier {self.id}: {self.name}>"


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    milestones = db.relationship(
        "ProjectMilestone", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ProjectMilestone.sort_order",
    )
    supplier_projects = db.relationship(
        "SupplierProject", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    activities = db.relationship(
        "ProjectActivity", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ProjectActivity.sort_order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class SupplierProject(db.Model):
    """A supplier working on a project; owns that supplier's schedule instances."""

    __tablename__ = "supplier_projects"
    __table_args__ = (
        db.UniqueConstraint("supplier_id", "project_id", name="uq_supplier_project"),
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(
        db.Integer, db.ForeignKey("suppliers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    supplier = db.relationship("Supplier")
    instances = db.relationship(
        "ScheduleItemInstance", backref="supplier_project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "project_id": self.project_id,
        }


class ProjectMilestone(db.Model):
    """Project-level named anchor. ``date`` stays NULL until the programme sets it."""

    __tablename__ = "project_milestones"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    category = db.Column(db.String(100), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date, nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "category": self.category,
            "name": self.name,
            "date": self.date.isoformat() if self.date else None,
            "sort_order": self.sort_order,
        }

    def __repr__(self):
        return f"<ProjectMilestone {self.id}: {self.name} [{self.date}]>"
