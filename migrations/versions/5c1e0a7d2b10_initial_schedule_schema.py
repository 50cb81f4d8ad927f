"""initial_schedule_schema

Create supplier/project, template, schedule, settings and audit tables.

Revision ID: 5c1e0a7d2b10
Revises:
Create Date: 2026-09-14 09:12:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "5c1e0a7d2b10"
down_revision = None
branch_labels = None
depends_on = None

_ANCHOR_TYPES = "anchor_type IN ('FIXED_DATE','SCHEDULE_ITEM','PROJECT_MILESTONE','COMPLETION')"
_KINDS = "kind IN ('MILESTONE','TASK')"


def _anchored_item_columns():
    return [
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="TASK"),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("anchor_type", sa.String(length=30), nullable=False),
        sa.Column("anchor_ref_id", sa.Integer(), nullable=True),
        sa.Column("anchor_milestone_name", sa.String(length=200), nullable=True),
        sa.Column("fixed_date", sa.Date(), nullable=True),
        sa.Column("offset_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    ]


def upgrade():
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "supplier_projects",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("supplier_id", "project_id", name="uq_supplier_project"),
    )
    op.create_index("ix_supplier_projects_supplier_id", "supplier_projects", ["supplier_id"])
    op.create_index("ix_supplier_projects_project_id", "supplier_projects", ["project_id"])

    op.create_table(
        "project_milestones",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_project_milestones_project_id", "project_milestones", ["project_id"])

    op.create_table(
        "activity_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "schedule_item_definitions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("activity_template_id", sa.Integer(), nullable=False),
        *_anchored_item_columns(),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["activity_template_id"], ["activity_templates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(_KINDS, name="ck_sid_kind"),
        sa.CheckConstraint(_ANCHOR_TYPES, name="ck_sid_anchor_type"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_schedule_item_definitions_activity_template_id",
        "schedule_item_definitions", ["activity_template_id"],
    )

    op.create_table(
        "template_versions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("activity_template_id", sa.Integer(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("snapshot", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["activity_template_id"], ["activity_templates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("activity_template_id", "version_number", name="uq_template_version_number"),
    )
    op.create_index("ix_template_versions_activity_template_id", "template_versions", ["activity_template_id"])

    op.create_table(
        "project_activities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("activity_template_id", sa.Integer(), nullable=False),
        sa.Column("synced_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["activity_template_id"], ["activity_templates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "activity_template_id", name="uq_project_activity"),
    )
    op.create_index("ix_project_activities_project_id", "project_activities", ["project_id"])
    op.create_index("ix_project_activities_activity_template_id", "project_activities", ["activity_template_id"])

    op.create_table(
        "project_schedule_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_activity_id", sa.Integer(), nullable=False),
        sa.Column("definition_id", sa.Integer(), nullable=True),
        *_anchored_item_columns(),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["project_activity_id"], ["project_activities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(_KINDS, name="ck_psi_kind"),
        sa.CheckConstraint(_ANCHOR_TYPES, name="ck_psi_anchor_type"),
    )
    op.create_index("ix_project_schedule_items_project_activity_id", "project_schedule_items", ["project_activity_id"])

    op.create_table(
        "schedule_item_instances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier_project_id", sa.Integer(), nullable=False),
        sa.Column("project_schedule_item_id", sa.Integer(), nullable=False),
        sa.Column("computed_date", sa.Date(), nullable=True),
        sa.Column("override_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("override_date", sa.Date(), nullable=True),
        sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="NOT_STARTED"),
        sa.Column("actual_date", sa.Date(), nullable=True),
        sa.Column("completion_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["supplier_project_id"], ["supplier_projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_schedule_item_id"], ["project_schedule_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("supplier_project_id", "project_schedule_item_id", name="uq_instance_supplier_item"),
        sa.CheckConstraint(
            "status IN ('NOT_STARTED','IN_PROGRESS','UNDER_REVIEW','BLOCKED','COMPLETE','NOT_REQUIRED')",
            name="ck_instance_status",
        ),
    )
    op.create_index("ix_schedule_item_instances_supplier_project_id", "schedule_item_instances", ["supplier_project_id"])
    op.create_index(
        "ix_schedule_item_instances_project_schedule_item_id",
        "schedule_item_instances", ["project_schedule_item_id"],
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=60), nullable=False),
        sa.Column("actor", sa.String(length=150), nullable=False),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_project", "audit_logs", ["project_id"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs", "settings", "schedule_item_instances", "project_schedule_items",
        "project_activities", "template_versions", "schedule_item_definitions",
        "activity_templates", "project_milestones", "supplier_projects",
        "projects", "suppliers",
    ):
        op.drop_table(table)
