import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from leaveflow.db.base import Base


class ScheduleEntry(Base):
    """One booked teaching period.

    ``on_date`` is empty for a recurring weekly timetable slot and set for a
    one-off booking such as a substitute cover. The unique constraint only
    bites on dated rows (NULLs never compare equal), which is exactly the set
    the substitute matcher appends to.
    """

    __tablename__ = "schedule_entries"
    __table_args__ = (
        UniqueConstraint("instructor_id", "on_date", "period", name="uq_schedule_entry_dated_slot"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    instructor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    weekday: Mapped[str] = mapped_column(String(10), nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    on_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    section: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    assignment_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
