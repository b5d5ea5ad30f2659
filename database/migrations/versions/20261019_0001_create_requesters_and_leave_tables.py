"""create requesters and leave tables

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


requester_role_enum = sa.Enum("learner", "instructor", "administrator", name="requester_role")
leave_kind_enum = sa.Enum("sick", "casual", "personal", "emergency", "other", name="leave_kind")
leave_status_enum = sa.Enum(
    "pending",
    "intermediate_approved",
    "approved",
    "rejected",
    "cancelled",
    name="leave_status",
)
leave_priority_enum = sa.Enum("normal", "urgent", name="leave_priority")
review_decision_enum = sa.Enum("approve", "reject", "cancel", name="review_decision")


def upgrade() -> None:
    op.create_table(
        "requesters",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", requester_role_enum, nullable=False),
        sa.Column("department", sa.String(length=200), nullable=True),
        sa.Column("section", sa.String(length=50), nullable=True),
        sa.Column("subjects", sa.JSON(), nullable=False),
        sa.Column("experience_years", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_requesters_email", "requesters", ["email"], unique=True)

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("requester_id", sa.String(length=36), nullable=False),
        sa.Column("leave_kind", leave_kind_enum, nullable=False),
        sa.Column("from_date", sa.Date(), nullable=False),
        sa.Column("to_date", sa.Date(), nullable=False),
        sa.Column("day_count", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", leave_status_enum, nullable=False),
        sa.Column("priority", leave_priority_enum, nullable=False),
        sa.Column("reviewer_chain", sa.JSON(), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_year", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_leave_requests_requester_id", "leave_requests", ["requester_id"])
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"])

    op.create_table(
        "leave_reviews",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("leave_request_id", sa.String(length=36), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("reviewer_id", sa.String(length=36), nullable=False),
        sa.Column("decision", review_decision_enum, nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("leave_request_id", "step_index", name="uq_leave_review_step"),
    )
    op.create_index("ix_leave_reviews_leave_request_id", "leave_reviews", ["leave_request_id"])

    op.create_table(
        "balance_accounts",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("requester_id", sa.String(length=36), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("used_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("requester_id", "year", name="uq_balance_account_requester_year"),
        sa.CheckConstraint("used_days >= 0 AND pending_days >= 0", name="ck_balance_account_non_negative"),
        sa.CheckConstraint("used_days + pending_days <= total_days", name="ck_balance_account_within_total"),
    )
    op.create_index("ix_balance_accounts_requester_id", "balance_accounts", ["requester_id"])


def downgrade() -> None:
    op.drop_index("ix_balance_accounts_requester_id", table_name="balance_accounts")
    op.drop_table("balance_accounts")
    op.drop_index("ix_leave_reviews_leave_request_id", table_name="leave_reviews")
    op.drop_table("leave_reviews")
    op.drop_index("ix_leave_requests_status", table_name="leave_requests")
    op.drop_index("ix_leave_requests_requester_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_index("ix_requesters_email", table_name="requesters")
    op.drop_table("requesters")
    bind = op.get_bind()
    for enum in (review_decision_enum, leave_priority_enum, leave_status_enum, leave_kind_enum, requester_role_enum):
        enum.drop(bind, checkfirst=True)
