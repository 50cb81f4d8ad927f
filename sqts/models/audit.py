"""
SQTS Schedule Engine
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for schedule changes.
"""

import json
from datetime import UTC, datetime

from sqts.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "project", "milestone", "activity_template",
    "schedule_item_definition", "project_schedule_item",
    "template_version", "project_activity", "setting",
}

AUDIT_ACTIONS = {
    # Propagation
    "propagation.apply",
    # Template versions
    "template_version.save",
    "template_version.restore",
    "template_version.delete",
    # Sync / instantiation
    "project_activity.sync",
    "project_activity.instantiate",
    "template.apply_to_projects",
    # Milestones
    "milestone.update_dates",
    # Settings
    "setting.update",
    # Generic
    "create",
    "update",
    "delete",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every schedule-changing event.

    One row per action. ``diff_json`` carries the change payload: field
    old/new pairs for edits, counts and instance ids for batch operations.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(40), nullable=False,
        comment="project | milestone | activity_template | template_version | …",
    )
    entity_id = db.Column(
        db.String(100), nullable=False,
        comment="PK of the referenced entity (int-as-string, or a setting key)",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="propagation.apply | project_activity.sync | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")

    # Change payload
    diff_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str | None = None,
    project_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    ``actor`` defaults to the ``X-Actor`` request header when called inside
    a request, else ``"system"``.
    """
    if actor is None:
        from flask import has_request_context, request
        actor = "system"
        if has_request_context():
            actor = request.headers.get("X-Actor", "system")[:150] or "system"

    log = AuditLog(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
