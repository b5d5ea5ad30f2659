import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from leaveflow.db.base import Base


class LeaveKind(str, Enum):
    sick = "sick"
    casual = "casual"
    personal = "personal"
    emergency = "emergency"
    other = "other"


class LeavePriority(str, Enum):
    normal = "normal"
    urgent = "urgent"


class LeaveStatus(str, Enum):
    pending = "pending"
    intermediate_approved = "intermediate_approved"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled})

# Statuses that keep an instructor out of the substitute pool.
BLOCKING_STATUSES = frozenset({LeaveStatus.pending, LeaveStatus.intermediate_approved, LeaveStatus.approved})

ALLOWED_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset(
        {
            LeaveStatus.intermediate_approved,
            LeaveStatus.approved,
            LeaveStatus.rejected,
            LeaveStatus.cancelled,
        }
    ),
    LeaveStatus.intermediate_approved: frozenset({LeaveStatus.approved, LeaveStatus.rejected}),
    LeaveStatus.approved: frozenset(),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    requester_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    leave_kind: Mapped[LeaveKind] = mapped_column(SAEnum(LeaveKind, name="leave_kind"), nullable=False)
    from_date: Mapped[date] = mapped_column(Date, nullable=False)
    to_date: Mapped[date] = mapped_column(Date, nullable=False)
    day_count: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(
        SAEnum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
        index=True,
    )
    priority: Mapped[LeavePriority] = mapped_column(
        SAEnum(LeavePriority, name="leave_priority"),
        nullable=False,
        default=LeavePriority.normal,
    )
    # Captured at submission; later policy changes never re-route an in-flight request.
    reviewer_chain: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_year: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def reviewer_for_step(self, step: int) -> str | None:
        if 0 <= step < len(self.reviewer_chain or []):
            return self.reviewer_chain[step]["reviewer_id"]
        return None

    @property
    def current_reviewer_id(self) -> str | None:
        if self.status.is_terminal:
            return None
        return self.reviewer_for_step(self.current_step)
