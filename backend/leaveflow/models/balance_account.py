import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from leaveflow.db.base import Base


class BalanceAccount(Base):
    __tablename__ = "balance_accounts"
    __table_args__ = (
        UniqueConstraint("requester_id", "year", name="uq_balance_account_requester_year"),
        CheckConstraint("used_days >= 0 AND pending_days >= 0", name="ck_balance_account_non_negative"),
        CheckConstraint("used_days + pending_days <= total_days", name="ck_balance_account_within_total"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    requester_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False)
    used_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def available_days(self) -> int:
        return self.total_days - self.used_days - self.pending_days
