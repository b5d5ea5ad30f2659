from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from leaveflow.api.deps import (
    get_app_settings,
    get_clock,
    get_current_requester,
    get_db,
    get_dispatcher,
    get_routing_policy,
    require_roles,
)
from leaveflow.core.clock import SystemClock
from leaveflow.core.config import Settings
from leaveflow.core.exceptions import ResourceNotFoundError
from leaveflow.models.leave_request import LeaveRequest
from leaveflow.models.requester import Requester, RequesterRole
from leaveflow.schemas.leave import (
    LeaveAnnotationCreate,
    LeaveAnnotationOut,
    LeaveDecisionCreate,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveReviewOut,
    SubstituteAssignmentCreate,
    SubstituteAssignmentOut,
)
from leaveflow.services import coverage, request_ledger
from leaveflow.services.approval_router import RoutingPolicy
from leaveflow.services.notifications import NotificationDispatcher

router = APIRouter()


def _to_out(db: Session, request: LeaveRequest) -> LeaveRequestOut:
    assignment = coverage.get_assignment(db, request.id)
    return LeaveRequestOut.model_validate(request).model_copy(
        update={
            "reviews": [LeaveReviewOut.model_validate(item) for item in request_ledger.list_reviews(db, request.id)],
            "substitute_assignment": SubstituteAssignmentOut.model_validate(assignment) if assignment else None,
        }
    )


def _visible_request(db: Session, leave_id: str, current_requester: Requester) -> LeaveRequest:
    request = request_ledger.get_request(db, leave_id)
    if not request_ledger.is_participant(request, current_requester):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this leave request")
    return request


@router.post("/leaves", response_model=LeaveRequestOut, status_code=status.HTTP_201_CREATED)
def submit_leave(
    payload: LeaveRequestCreate,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
    policy: RoutingPolicy = Depends(get_routing_policy),
    clock: SystemClock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
) -> LeaveRequestOut:
    request = request_ledger.submit(
        db,
        requester=current_requester,
        leave_kind=payload.leave_kind,
        from_date=payload.from_date,
        to_date=payload.to_date,
        reason=payload.reason,
        priority=payload.priority,
        policy=policy,
        default_allotment=settings.default_annual_leave_days,
        clock=clock,
        dispatcher=dispatcher,
    )
    return _to_out(db, request)


@router.get("/leaves", response_model=list[LeaveRequestOut])
def list_leaves(
    scope: str = Query(default="own", pattern="^(own|review)$"),
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
) -> list[LeaveRequestOut]:
    requests = request_ledger.list_requests(db, actor=current_requester, scope=scope)
    return [_to_out(db, item) for item in requests]


@router.get("/leaves/{leave_id}", response_model=LeaveRequestOut)
def get_leave(
    leave_id: str,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
) -> LeaveRequestOut:
    return _to_out(db, _visible_request(db, leave_id, current_requester))


@router.post("/leaves/{leave_id}/decision", response_model=LeaveRequestOut)
def decide_leave(
    leave_id: str,
    payload: LeaveDecisionCreate,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
    policy: RoutingPolicy = Depends(get_routing_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
) -> LeaveRequestOut:
    request = request_ledger.transition(
        db,
        request_id=leave_id,
        actor_id=current_requester.id,
        decision=payload.review_decision,
        comment=payload.comment,
        policy=policy,
        working_days=settings.working_days,
        periods_per_day=settings.periods_per_day,
        dispatcher=dispatcher,
    )
    return _to_out(db, request)


@router.post("/leaves/{leave_id}/cancel", response_model=LeaveRequestOut)
def cancel_leave(
    leave_id: str,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> LeaveRequestOut:
    request = request_ledger.cancel(db, request_id=leave_id, actor_id=current_requester.id, dispatcher=dispatcher)
    return _to_out(db, request)


@router.post(
    "/leaves/{leave_id}/annotations",
    response_model=LeaveAnnotationOut,
    status_code=status.HTTP_201_CREATED,
)
def annotate_leave(
    leave_id: str,
    payload: LeaveAnnotationCreate,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
) -> LeaveAnnotationOut:
    record = request_ledger.annotate(db, request_id=leave_id, actor=current_requester, note=payload.note)
    return LeaveAnnotationOut.model_validate(record)


@router.get("/leaves/{leave_id}/substitute", response_model=SubstituteAssignmentOut)
def get_substitute(
    leave_id: str,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
) -> SubstituteAssignmentOut:
    request = _visible_request(db, leave_id, current_requester)
    assignment = coverage.get_assignment(db, request.id)
    if assignment is None:
        raise ResourceNotFoundError("SubstituteAssignment", request.id)
    return SubstituteAssignmentOut.model_validate(assignment)


@router.post("/leaves/{leave_id}/substitute", response_model=SubstituteAssignmentOut)
def assign_substitute(
    leave_id: str,
    payload: SubstituteAssignmentCreate,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(require_roles(RequesterRole.administrator)),
    policy: RoutingPolicy = Depends(get_routing_policy),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
) -> SubstituteAssignmentOut:
    request = request_ledger.get_request(db, leave_id)
    absent = db.get(Requester, request.requester_id)
    if absent is None:
        raise ResourceNotFoundError("Requester", request.requester_id)
    outcome = coverage.assign_manually(
        db,
        request=request,
        requester=absent,
        substitute_id=payload.substitute_instructor_id,
        actor_id=current_requester.id,
        policy=policy,
        working_days=settings.working_days,
        periods_per_day=settings.periods_per_day,
    )
    dispatcher.dispatch(outcome.events)
    return SubstituteAssignmentOut.model_validate(outcome.assignment)
