from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from leaveflow.api.deps import get_app_settings, get_clock, get_current_requester, get_db, require_roles
from leaveflow.core.clock import SystemClock
from leaveflow.core.config import Settings
from leaveflow.core.exceptions import AppError, ResourceNotFoundError
from leaveflow.models.requester import Requester, RequesterRole
from leaveflow.schemas.balance import BalanceAccountOut, BalanceAllotmentUpdate
from leaveflow.services import balance_ledger
from leaveflow.services.audit import log_activity

router = APIRouter()


@router.get("/balances/me", response_model=BalanceAccountOut)
def get_my_balance(
    year: int | None = Query(default=None, ge=1900, le=9999),
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
    clock: SystemClock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> BalanceAccountOut:
    target_year = year or clock.today().year
    account = balance_ledger.get_account(db, requester_id=current_requester.id, year=target_year)
    if account is None:
        # Not opened yet; report what the first submission would open it with.
        allotment = settings.default_annual_leave_days
        return BalanceAccountOut(
            requester_id=current_requester.id,
            year=target_year,
            total_days=allotment,
            used_days=0,
            pending_days=0,
            available_days=allotment,
        )
    return BalanceAccountOut.model_validate(account)


@router.put("/balances/{requester_id}/{year}", response_model=BalanceAccountOut)
def set_allotment(
    requester_id: str,
    year: int,
    payload: BalanceAllotmentUpdate,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(require_roles(RequesterRole.administrator)),
) -> BalanceAccountOut:
    if db.get(Requester, requester_id) is None:
        raise ResourceNotFoundError("Requester", requester_id)
    try:
        account = balance_ledger.set_allotment(db, requester_id=requester_id, year=year, total_days=payload.total_days)
        log_activity(
            db,
            actor_id=current_requester.id,
            action="balance.allotment",
            entity_type="balance_account",
            entity_id=account.id,
            details={"requester_id": requester_id, "year": year, "total_days": payload.total_days},
        )
        db.commit()
    except AppError:
        db.rollback()
        raise
    db.refresh(account)
    return BalanceAccountOut.model_validate(account)
