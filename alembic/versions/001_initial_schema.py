"""Initial database schema.

Creates the tables for KPI trigger automation:
- users: Employees and staff (roles drive email recipients)
- kpi_scores: Scored KPI submissions with automation state
- kpi_configurations: Versioned scoring and trigger configuration
- training_assignments, audit_schedules: Automated and manual follow-ups
- email_logs: Append-only email dispatch attempts
- notifications: In-app notifications
- lifecycle_events: Per-user timeline

Enums are stored as VARCHAR values, not native PostgreSQL enum types.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM_VALUE = sa.String(length=32)
JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

OPEN_TRAINING = sa.text("status IN ('assigned', 'in_progress')")
OPEN_AUDIT = sa.text("status IN ('scheduled', 'in_progress')")


def _id() -> sa.Column:
    return sa.Column("id", sa.UUID(), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _user_fk(column: str, table: str, ondelete: str = "SET NULL") -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        [column],
        ["users.id"],
        name=op.f(f"fk_{table}_{column}_users"),
        ondelete=ondelete,
    )


def _kpi_fk(table: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["kpi_score_id"],
        ["kpi_scores.id"],
        name=op.f(f"fk_{table}_kpi_score_id_kpi_scores"),
        ondelete="SET NULL",
    )


def upgrade() -> None:
    """Create initial database schema."""
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("employee_id", sa.String(length=50), nullable=True),
        sa.Column("role", ENUM_VALUE, server_default="employee", nullable=False),
        sa.Column("department", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "kpi_scores",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("period", sa.String(length=7), nullable=False),
        sa.Column("source", ENUM_VALUE, server_default="manual", nullable=False),
        sa.Column("submitted_by_id", sa.UUID(), nullable=True),
        # Raw inputs
        sa.Column("tat", sa.Float(), nullable=False),
        sa.Column("major_negativity", sa.Integer(), nullable=False),
        sa.Column("quality", sa.Float(), nullable=False),
        sa.Column("neighbor_check", sa.Float(), nullable=False),
        sa.Column("general_negativity", sa.Float(), nullable=False),
        sa.Column("app_usage", sa.Float(), nullable=False),
        sa.Column("insufficiency", sa.Integer(), nullable=False),
        # Derived
        sa.Column("overall_score", sa.Float(), nullable=False),
        sa.Column("rating", ENUM_VALUE, nullable=False),
        sa.Column("config_version", sa.Integer(), nullable=False),
        # Automation
        sa.Column("automation_status", ENUM_VALUE, server_default="pending", nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("automation_result", JSON_DOCUMENT, nullable=True),
        # Override
        sa.Column("override_score", sa.Float(), nullable=True),
        sa.Column("override_rating", ENUM_VALUE, nullable=True),
        sa.Column("override_reason", sa.Text(), nullable=True),
        sa.Column("overridden_by_id", sa.UUID(), nullable=True),
        sa.Column("overridden_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_kpi_scores")),
        _user_fk("user_id", "kpi_scores", ondelete="CASCADE"),
        _user_fk("submitted_by_id", "kpi_scores"),
        _user_fk("overridden_by_id", "kpi_scores"),
        sa.UniqueConstraint("user_id", "period", name="uq_kpi_scores_user_period"),
    )
    op.create_index("ix_kpi_scores_user_id", "kpi_scores", ["user_id"], unique=False)
    op.create_index("ix_kpi_scores_automation_status", "kpi_scores", ["automation_status"], unique=False)
    op.create_index("ix_kpi_scores_rating", "kpi_scores", ["rating"], unique=False)
    op.create_index("ix_kpi_scores_created_at", "kpi_scores", ["created_at"], unique=False)

    op.create_table(
        "kpi_configurations",
        _id(),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("document", JSON_DOCUMENT, nullable=False),
        sa.Column("change_kind", ENUM_VALUE, nullable=False),
        sa.Column("changed_by_id", sa.UUID(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_kpi_configurations")),
        _user_fk("changed_by_id", "kpi_configurations"),
        sa.UniqueConstraint("version", name=op.f("uq_kpi_configurations_version")),
    )
    op.create_index("ix_kpi_configurations_is_active", "kpi_configurations", ["is_active"], unique=False)

    op.create_table(
        "training_assignments",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("training_type", ENUM_VALUE, nullable=False),
        sa.Column("status", ENUM_VALUE, server_default="assigned", nullable=False),
        sa.Column("assigned_by", ENUM_VALUE, nullable=False),
        sa.Column("assigned_by_user_id", sa.UUID(), nullable=True),
        sa.Column("kpi_score_id", sa.UUID(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completion_score", sa.Float(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_training_assignments")),
        _user_fk("user_id", "training_assignments", ondelete="CASCADE"),
        _user_fk("assigned_by_user_id", "training_assignments"),
        _kpi_fk("training_assignments"),
    )
    op.create_index("ix_training_assignments_kpi_score_id", "training_assignments", ["kpi_score_id"])
    op.create_index("ix_training_assignments_user_status", "training_assignments", ["user_id", "status"])
    op.create_index(
        "uq_training_assignments_open_user_type",
        "training_assignments",
        ["user_id", "training_type"],
        unique=True,
        postgresql_where=OPEN_TRAINING,
        sqlite_where=OPEN_TRAINING,
    )

    op.create_table(
        "audit_schedules",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("audit_type", ENUM_VALUE, nullable=False),
        sa.Column("status", ENUM_VALUE, server_default="scheduled", nullable=False),
        sa.Column("scheduled_by", ENUM_VALUE, nullable=False),
        sa.Column("scheduled_by_user_id", sa.UUID(), nullable=True),
        sa.Column("kpi_score_id", sa.UUID(), nullable=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("audit_scope", sa.Text(), nullable=True),
        sa.Column("audit_method", sa.Text(), nullable=True),
        sa.Column("findings", sa.Text(), nullable=True),
        sa.Column("risk_level", ENUM_VALUE, nullable=True),
        sa.Column("compliance_status", ENUM_VALUE, nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_audit_schedules")),
        _user_fk("user_id", "audit_schedules", ondelete="CASCADE"),
        _user_fk("scheduled_by_user_id", "audit_schedules"),
        _kpi_fk("audit_schedules"),
    )
    op.create_index("ix_audit_schedules_kpi_score_id", "audit_schedules", ["kpi_score_id"])
    op.create_index("ix_audit_schedules_user_status", "audit_schedules", ["user_id", "status"])
    op.create_index("ix_audit_schedules_scheduled_date", "audit_schedules", ["scheduled_date"])
    op.create_index(
        "uq_audit_schedules_open_user_type",
        "audit_schedules",
        ["user_id", "audit_type"],
        unique=True,
        postgresql_where=OPEN_AUDIT,
        sqlite_where=OPEN_AUDIT,
    )

    op.create_table(
        "email_logs",
        _id(),
        sa.Column("kpi_score_id", sa.UUID(), nullable=True),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("template", ENUM_VALUE, nullable=False),
        sa.Column("recipients", JSON_DOCUMENT, nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("status", ENUM_VALUE, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempt_number", sa.Integer(), server_default="1", nullable=False),
        sa.Column("retry_of_id", sa.UUID(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_email_logs")),
        _kpi_fk("email_logs"),
        _user_fk("user_id", "email_logs", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["retry_of_id"],
            ["email_logs.id"],
            name=op.f("fk_email_logs_retry_of_id_email_logs"),
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_email_logs_kpi_score_template", "email_logs", ["kpi_score_id", "template"])
    op.create_index("ix_email_logs_user_id", "email_logs", ["user_id"])
    op.create_index("ix_email_logs_status", "email_logs", ["status"])

    op.create_table(
        "notifications",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("kpi_score_id", sa.UUID(), nullable=True),
        sa.Column("notification_type", ENUM_VALUE, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", ENUM_VALUE, server_default="unread", nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
        _user_fk("user_id", "notifications", ondelete="CASCADE"),
        _kpi_fk("notifications"),
        sa.UniqueConstraint("kpi_score_id", "notification_type", name="uq_notifications_kpi_score_type"),
    )
    op.create_index("ix_notifications_user_status", "notifications", ["user_id", "status"])

    op.create_table(
        "lifecycle_events",
        _id(),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("event_type", ENUM_VALUE, nullable=False),
        sa.Column("category", ENUM_VALUE, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", JSON_DOCUMENT, nullable=True),
        sa.Column("kpi_score_id", sa.UUID(), nullable=True),
        sa.Column("triggered_by_id", sa.UUID(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lifecycle_events")),
        _user_fk("user_id", "lifecycle_events", ondelete="CASCADE"),
        _user_fk("triggered_by_id", "lifecycle_events"),
        _kpi_fk("lifecycle_events"),
    )
    op.create_index("ix_lifecycle_events_user_created", "lifecycle_events", ["user_id", "created_at"])
    op.create_index("ix_lifecycle_events_event_type", "lifecycle_events", ["event_type"])


def downgrade() -> None:
    """Drop all tables (reverse order due to foreign keys)."""
    op.drop_table("lifecycle_events")
    op.drop_table("notifications")
    op.drop_table("email_logs")
    op.drop_table("audit_schedules")
    op.drop_table("training_assignments")
    op.drop_table("kpi_configurations")
    op.drop_table("kpi_scores")
    op.drop_table("users")
