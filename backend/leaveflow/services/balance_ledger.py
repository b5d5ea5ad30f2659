"""Per-requester, per-year leave-day accounts.

Every mutation is one conditional ``UPDATE`` whose ``WHERE`` clause carries the
invariant it must preserve. The database applies the read-modify-write
atomically, so two sessions touching the same row serialize on it and a lost
update is impossible regardless of backend. A zero rowcount means the guard
failed and nothing was written.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leaveflow.core.exceptions import Conflict, InsufficientBalance, ResourceNotFoundError, ValidationError
from leaveflow.models.balance_account import BalanceAccount

logger = logging.getLogger(__name__)


def _account_filter(requester_id: str, year: int):
    return (BalanceAccount.requester_id == requester_id, BalanceAccount.year == year)


def _require_positive(days: int) -> None:
    if days <= 0:
        raise ValidationError("Leave days must be a positive number", details={"days": days})


def get_account(db: Session, *, requester_id: str, year: int) -> BalanceAccount | None:
    return db.execute(
        select(BalanceAccount)
        .where(*_account_filter(requester_id, year))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _load_account(db: Session, *, requester_id: str, year: int) -> BalanceAccount:
    account = get_account(db, requester_id=requester_id, year=year)
    if account is None:
        raise ResourceNotFoundError("BalanceAccount", f"{requester_id}/{year}")
    return account


def open_account(db: Session, *, requester_id: str, year: int, total_days: int) -> BalanceAccount:
    """Return the account for the year, creating it with ``total_days`` on first use.

    Commits the creation on its own so a concurrent opener that loses the race
    on the unique key can simply re-read the winner's row.
    """
    account = get_account(db, requester_id=requester_id, year=year)
    if account is not None:
        return account

    db.add(BalanceAccount(requester_id=requester_id, year=year, total_days=total_days, used_days=0, pending_days=0))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("Balance account %s/%s opened concurrently; re-reading", requester_id, year)
    return _load_account(db, requester_id=requester_id, year=year)


def reserve(db: Session, *, requester_id: str, year: int, days: int) -> BalanceAccount:
    _require_positive(days)
    result = db.execute(
        update(BalanceAccount)
        .where(
            *_account_filter(requester_id, year),
            BalanceAccount.total_days - BalanceAccount.used_days - BalanceAccount.pending_days >= days,
        )
        .values(pending_days=BalanceAccount.pending_days + days)
        .execution_options(synchronize_session=False)
    )
    account = _load_account(db, requester_id=requester_id, year=year)
    if result.rowcount != 1:
        raise InsufficientBalance(requested=days, available=account.available_days)
    return account


def commit(db: Session, *, requester_id: str, year: int, days: int) -> BalanceAccount:
    _require_positive(days)
    result = db.execute(
        update(BalanceAccount)
        .where(*_account_filter(requester_id, year), BalanceAccount.pending_days >= days)
        .values(
            pending_days=BalanceAccount.pending_days - days,
            used_days=BalanceAccount.used_days + days,
        )
        .execution_options(synchronize_session=False)
    )
    account = _load_account(db, requester_id=requester_id, year=year)
    if result.rowcount != 1:
        raise Conflict(
            "Pending days do not cover the committed amount",
            details={"days": days, "pending_days": account.pending_days},
        )
    return account


def release(db: Session, *, requester_id: str, year: int, days: int) -> BalanceAccount:
    _require_positive(days)
    result = db.execute(
        update(BalanceAccount)
        .where(*_account_filter(requester_id, year), BalanceAccount.pending_days >= days)
        .values(pending_days=BalanceAccount.pending_days - days)
        .execution_options(synchronize_session=False)
    )
    account = _load_account(db, requester_id=requester_id, year=year)
    if result.rowcount != 1:
        raise Conflict(
            "Pending days do not cover the released amount",
            details={"days": days, "pending_days": account.pending_days},
        )
    return account


def set_allotment(db: Session, *, requester_id: str, year: int, total_days: int) -> BalanceAccount:
    if total_days < 0:
        raise ValidationError("Total leave days cannot be negative", details={"total_days": total_days})
    open_account(db, requester_id=requester_id, year=year, total_days=total_days)
    result = db.execute(
        update(BalanceAccount)
        .where(
            *_account_filter(requester_id, year),
            BalanceAccount.used_days + BalanceAccount.pending_days <= total_days,
        )
        .values(total_days=total_days)
        .execution_options(synchronize_session=False)
    )
    account = _load_account(db, requester_id=requester_id, year=year)
    if result.rowcount != 1:
        raise Conflict(
            "New allotment is below days already used or pending",
            details={
                "total_days": total_days,
                "used_days": account.used_days,
                "pending_days": account.pending_days,
            },
        )
    return account
