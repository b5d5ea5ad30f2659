"""Leave-request state machine.

A request is born ``pending`` with its reviewer chain frozen on the row and
reaches exactly one terminal state. Every status write is a compare-and-swap on
``(id, status, current_step)`` issued after a ``SELECT ... FOR UPDATE`` of the
row, so a second decision racing the first finds zero rows and gets
``Conflict`` instead of touching the balance twice. Notifications go out only
after the transaction commits.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leaveflow.core.clock import SystemClock, system_clock
from leaveflow.core.exceptions import (
    AppError,
    Conflict,
    InsufficientBalance,
    ResourceNotFoundError,
    UnauthorizedTransition,
    ValidationError,
)
from leaveflow.models.activity_log import ActivityLog
from leaveflow.models.leave_request import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    LeaveKind,
    LeavePriority,
    LeaveRequest,
    LeaveStatus,
)
from leaveflow.models.leave_review import LeaveReview, ReviewDecision
from leaveflow.models.requester import Requester, RequesterRole
from leaveflow.services import balance_ledger
from leaveflow.services.approval_router import RoutingPolicy, route
from leaveflow.services.audit import activity_record, log_activity
from leaveflow.services.coverage import cover_approved_leave
from leaveflow.services.notifications import LeaveEvent, NotificationDispatcher

logger = logging.getLogger(__name__)


def inclusive_day_count(from_date: date, to_date: date) -> int:
    return (to_date - from_date).days + 1


def get_request(db: Session, request_id: str, *, for_update: bool = False) -> LeaveRequest:
    query = select(LeaveRequest).where(LeaveRequest.id == request_id)
    if for_update:
        query = query.with_for_update()
    request = db.execute(query.execution_options(populate_existing=True)).scalar_one_or_none()
    if request is None:
        raise ResourceNotFoundError("LeaveRequest", request_id)
    return request


def list_reviews(db: Session, request_id: str) -> list[LeaveReview]:
    return list(
        db.execute(
            select(LeaveReview).where(LeaveReview.leave_request_id == request_id).order_by(LeaveReview.step_index)
        ).scalars()
    )


def list_requests(db: Session, *, actor: Requester, scope: str = "own") -> list[LeaveRequest]:
    """``own``: the actor's submissions. ``review``: requests waiting on the actor
    (every request for administrators)."""
    query = select(LeaveRequest).order_by(LeaveRequest.created_at.desc(), LeaveRequest.id)
    if scope == "own":
        return list(db.execute(query.where(LeaveRequest.requester_id == actor.id)).scalars())
    if scope != "review":
        raise ValidationError(f"Unknown scope '{scope}'", details={"scope": scope})
    if actor.role == RequesterRole.administrator:
        return list(db.execute(query).scalars())
    open_requests = db.execute(query.where(LeaveRequest.status.not_in(list(TERMINAL_STATUSES)))).scalars()
    return [item for item in open_requests if item.current_reviewer_id == actor.id]


def is_participant(request: LeaveRequest, actor: Requester) -> bool:
    if actor.role == RequesterRole.administrator or actor.id == request.requester_id:
        return True
    return any(step.get("reviewer_id") == actor.id for step in request.reviewer_chain or [])


def _dispatch(dispatcher: NotificationDispatcher | None, events: Sequence[LeaveEvent]) -> None:
    if dispatcher is not None and events:
        dispatcher.dispatch(events)


def _event_data(request: LeaveRequest) -> dict:
    return {
        "leave_request_id": request.id,
        "status": request.status.value,
        "from_date": request.from_date.isoformat(),
        "to_date": request.to_date.isoformat(),
        "day_count": request.day_count,
    }


def _validate_submission(*, from_date: date, to_date: date, reason: str, today: date) -> None:
    if to_date < from_date:
        raise ValidationError(
            "End date cannot be before start date",
            details={"from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
        )
    if from_date < today:
        raise ValidationError(
            "Leave cannot start in the past",
            details={"from_date": from_date.isoformat(), "today": today.isoformat()},
        )
    if from_date.year != to_date.year:
        raise ValidationError(
            "Leave cannot span two calendar years; submit one request per year",
            details={"from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
        )
    if not reason or not reason.strip():
        raise ValidationError("Reason is required")


def submit(
    db: Session,
    *,
    requester: Requester,
    leave_kind: LeaveKind,
    from_date: date,
    to_date: date,
    reason: str,
    policy: RoutingPolicy,
    default_allotment: int,
    priority: LeavePriority = LeavePriority.normal,
    clock: SystemClock = system_clock,
    dispatcher: NotificationDispatcher | None = None,
) -> LeaveRequest:
    _validate_submission(from_date=from_date, to_date=to_date, reason=reason, today=clock.today())
    if not requester.is_active:
        raise ValidationError("Inactive requesters cannot submit leave", details={"requester_id": requester.id})

    day_count = inclusive_day_count(from_date, to_date)
    chain = route(requester, day_count, policy)
    year = from_date.year

    existing = balance_ledger.get_account(db, requester_id=requester.id, year=year)
    if existing is None and day_count > default_allotment:
        # Refuse before the year's account row is created.
        raise InsufficientBalance(requested=day_count, available=default_allotment)
    balance_ledger.open_account(db, requester_id=requester.id, year=year, total_days=default_allotment)
    try:
        balance_ledger.reserve(db, requester_id=requester.id, year=year, days=day_count)
        request = LeaveRequest(
            requester_id=requester.id,
            leave_kind=leave_kind,
            from_date=from_date,
            to_date=to_date,
            day_count=day_count,
            reason=reason.strip(),
            status=LeaveStatus.pending,
            priority=priority,
            reviewer_chain=[step.as_dict() for step in chain],
            current_step=0,
            balance_year=year,
        )
        db.add(request)
        db.flush()
        log_activity(
            db,
            actor_id=requester.id,
            action="leave.submit",
            entity_type="leave_request",
            entity_id=request.id,
            details={"day_count": day_count, "year": year, "chain": request.reviewer_chain},
        )
        db.commit()
    except AppError:
        db.rollback()
        raise
    db.refresh(request)

    logger.info("Leave %s submitted by %s (%d days, %d step chain)", request.id, requester.id, day_count, len(chain))
    _dispatch(
        dispatcher,
        [
            LeaveEvent(
                name="leave.submitted",
                title="Leave request awaiting review",
                message=f"{requester.name} requested {day_count} day(s) of {leave_kind.value} leave.",
                recipient_ids=(chain[0].reviewer_id,),
                data=_event_data(request),
            )
        ],
    )
    return request


def _check_actor(request: LeaveRequest, actor_id: str) -> None:
    if request.status.is_terminal:
        raise Conflict(
            f"Leave request is already {request.status.value}",
            details={"status": request.status.value},
        )
    if actor_id == request.current_reviewer_id:
        return
    earlier = {request.reviewer_for_step(step) for step in range(request.current_step)}
    if actor_id in earlier:
        raise Conflict("Reviewer has already decided this request", details={"current_step": request.current_step})
    raise UnauthorizedTransition(
        "Only the current reviewer can decide this request",
        details={"current_step": request.current_step},
    )


def _swap_status(
    db: Session,
    request: LeaveRequest,
    *,
    target: LeaveStatus,
    next_step: int,
) -> None:
    if target not in ALLOWED_TRANSITIONS[request.status]:
        raise Conflict(
            f"Cannot move leave request from {request.status.value} to {target.value}",
            details={"from": request.status.value, "to": target.value},
        )
    result = db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == request.id,
            LeaveRequest.status == request.status,
            LeaveRequest.current_step == request.current_step,
        )
        .values(status=target, current_step=next_step)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict("Leave request was decided concurrently", details={"leave_request_id": request.id})


def transition(
    db: Session,
    *,
    request_id: str,
    actor_id: str,
    decision: ReviewDecision,
    comment: str | None = None,
    policy: RoutingPolicy,
    working_days: Sequence[str],
    periods_per_day: int,
    dispatcher: NotificationDispatcher | None = None,
) -> LeaveRequest:
    if decision == ReviewDecision.cancel:
        return cancel(db, request_id=request_id, actor_id=actor_id, dispatcher=dispatcher)

    request = get_request(db, request_id, for_update=True)
    try:
        _check_actor(request, actor_id)
        comment = (comment or "").strip() or None
        if decision == ReviewDecision.reject and comment is None:
            raise ValidationError("A comment is required when rejecting a leave request")

        step = request.current_step
        chain_length = len(request.reviewer_chain or [])
        if decision == ReviewDecision.reject:
            target, next_step = LeaveStatus.rejected, step
        elif step + 1 < chain_length:
            target, next_step = LeaveStatus.intermediate_approved, step + 1
        else:
            target, next_step = LeaveStatus.approved, step

        _swap_status(db, request, target=target, next_step=next_step)
        db.add(
            LeaveReview(
                leave_request_id=request.id,
                step_index=step,
                reviewer_id=actor_id,
                decision=decision,
                comment=comment,
            )
        )
        if target == LeaveStatus.rejected:
            balance_ledger.release(db, requester_id=request.requester_id, year=request.balance_year, days=request.day_count)
        elif target == LeaveStatus.approved:
            balance_ledger.commit(db, requester_id=request.requester_id, year=request.balance_year, days=request.day_count)
        log_activity(
            db,
            actor_id=actor_id,
            action="leave.decision",
            entity_type="leave_request",
            entity_id=request.id,
            details={"decision": decision.value, "step": step, "status": target.value, "comment": comment},
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Leave request was decided concurrently", details={"leave_request_id": request_id}) from exc
    except AppError:
        db.rollback()
        raise

    request = get_request(db, request_id)
    requester = db.get(Requester, request.requester_id)
    logger.info("Leave %s: %s by %s at step %d -> %s", request.id, decision.value, actor_id, step, target.value)

    events = [_decision_event(request, requester, comment=comment)]
    if target == LeaveStatus.approved and requester is not None and requester.role == RequesterRole.instructor:
        outcome = cover_approved_leave(
            db,
            request=request,
            requester=requester,
            policy=policy,
            working_days=working_days,
            periods_per_day=periods_per_day,
            actor_id=actor_id,
        )
        events.extend(outcome.events)
    _dispatch(dispatcher, events)
    return request


def _decision_event(request: LeaveRequest, requester: Requester | None, *, comment: str | None) -> LeaveEvent:
    name = requester.name if requester is not None else request.requester_id
    if request.status == LeaveStatus.intermediate_approved:
        return LeaveEvent(
            name="leave.advanced",
            title="Leave request awaiting review",
            message=f"{name}'s leave request passed step {request.current_step} and awaits your decision.",
            recipient_ids=(request.current_reviewer_id, request.requester_id),
            data=_event_data(request),
        )
    if request.status == LeaveStatus.approved:
        return LeaveEvent(
            name="leave.approved",
            title="Leave approved",
            message=f"Leave from {request.from_date.isoformat()} to {request.to_date.isoformat()} was approved.",
            recipient_ids=(request.requester_id,),
            data=_event_data(request),
        )
    return LeaveEvent(
        name="leave.rejected",
        title="Leave rejected",
        message=f"Leave from {request.from_date.isoformat()} was rejected: {comment or ''}".strip(),
        recipient_ids=(request.requester_id,),
        data=_event_data(request),
    )


def cancel(
    db: Session,
    *,
    request_id: str,
    actor_id: str,
    dispatcher: NotificationDispatcher | None = None,
) -> LeaveRequest:
    request = get_request(db, request_id, for_update=True)
    try:
        if actor_id != request.requester_id:
            raise UnauthorizedTransition("Only the requester can cancel a leave request")
        if request.status != LeaveStatus.pending:
            raise Conflict(
                f"Only pending requests can be cancelled; this one is {request.status.value}",
                details={"status": request.status.value},
            )
        reviewer_id = request.current_reviewer_id
        _swap_status(db, request, target=LeaveStatus.cancelled, next_step=request.current_step)
        db.add(
            LeaveReview(
                leave_request_id=request.id,
                step_index=request.current_step,
                reviewer_id=actor_id,
                decision=ReviewDecision.cancel,
            )
        )
        balance_ledger.release(db, requester_id=request.requester_id, year=request.balance_year, days=request.day_count)
        log_activity(
            db,
            actor_id=actor_id,
            action="leave.cancel",
            entity_type="leave_request",
            entity_id=request.id,
            details={"day_count": request.day_count},
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Leave request was decided concurrently", details={"leave_request_id": request_id}) from exc
    except AppError:
        db.rollback()
        raise

    request = get_request(db, request_id)
    logger.info("Leave %s cancelled by requester", request.id)
    _dispatch(
        dispatcher,
        [
            LeaveEvent(
                name="leave.cancelled",
                title="Leave request cancelled",
                message=f"Leave from {request.from_date.isoformat()} was withdrawn by the requester.",
                recipient_ids=(reviewer_id, request.requester_id),
                data=_event_data(request),
            )
        ],
    )
    return request


def annotate(db: Session, *, request_id: str, actor: Requester, note: str) -> ActivityLog:
    """Attach an audit note. Allowed on terminal requests, which are otherwise immutable."""
    request = get_request(db, request_id)
    if not is_participant(request, actor):
        raise UnauthorizedTransition("Only participants of this request can annotate it")
    text = (note or "").strip()
    if not text:
        raise ValidationError("Annotation text is required")

    record = activity_record(
        actor_id=actor.id,
        action="leave.annotate",
        entity_type="leave_request",
        entity_id=request.id,
        details={"note": text, "status": request.status.value},
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record
