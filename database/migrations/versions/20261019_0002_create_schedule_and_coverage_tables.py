"""create schedule, coverage, notification and activity tables

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:10:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


assignment_status_enum = sa.Enum("assigned", "escalated", name="substitute_assignment_status")


def upgrade() -> None:
    op.create_table(
        "schedule_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("instructor_id", sa.String(length=36), nullable=False),
        sa.Column("weekday", sa.String(length=10), nullable=False),
        sa.Column("period", sa.Integer(), nullable=False),
        sa.Column("on_date", sa.Date(), nullable=True),
        sa.Column("section", sa.String(length=50), nullable=True),
        sa.Column("subject", sa.String(length=200), nullable=True),
        sa.Column("assignment_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("instructor_id", "on_date", "period", name="uq_schedule_entry_dated_slot"),
    )
    op.create_index("ix_schedule_entries_instructor_id", "schedule_entries", ["instructor_id"])
    op.create_index("ix_schedule_entries_on_date", "schedule_entries", ["on_date"])
    op.create_index("ix_schedule_entries_assignment_id", "schedule_entries", ["assignment_id"])

    op.create_table(
        "substitute_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("leave_request_id", sa.String(length=36), nullable=False),
        sa.Column("original_instructor_id", sa.String(length=36), nullable=False),
        sa.Column("substitute_instructor_id", sa.String(length=36), nullable=True),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("section", sa.String(length=50), nullable=False),
        sa.Column("period_range", sa.String(length=200), nullable=False),
        sa.Column("status", assignment_status_enum, nullable=False),
        sa.Column("tier", sa.String(length=30), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_substitute_assignments_leave_request_id",
        "substitute_assignments",
        ["leave_request_id"],
        unique=True,
    )
    op.create_index(
        "ix_substitute_assignments_original_instructor_id",
        "substitute_assignments",
        ["original_instructor_id"],
    )
    op.create_index(
        "ix_substitute_assignments_substitute_instructor_id",
        "substitute_assignments",
        ["substitute_instructor_id"],
    )
    op.create_index("ix_substitute_assignments_status", "substitute_assignments", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("event", sa.String(length=100), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_entity_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_substitute_assignments_status", table_name="substitute_assignments")
    op.drop_index("ix_substitute_assignments_substitute_instructor_id", table_name="substitute_assignments")
    op.drop_index("ix_substitute_assignments_original_instructor_id", table_name="substitute_assignments")
    op.drop_index("ix_substitute_assignments_leave_request_id", table_name="substitute_assignments")
    op.drop_table("substitute_assignments")
    op.drop_index("ix_schedule_entries_assignment_id", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_on_date", table_name="schedule_entries")
    op.drop_index("ix_schedule_entries_instructor_id", table_name="schedule_entries")
    op.drop_table("schedule_entries")
    assignment_status_enum.drop(op.get_bind(), checkfirst=True)
