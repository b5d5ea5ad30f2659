"""Persistence side of substitute matching.

Builds the snapshots ``substitute_matcher.assign`` works on, then books the
chosen substitute's dated periods and the assignment row in one transaction.
A booking that loses a race to a concurrent writer is rolled back, the
candidate is dropped and matching reruns on a fresh snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leaveflow.core.exceptions import Conflict, ResourceNotFoundError, ScheduleConflict, ValidationError
from leaveflow.models.leave_request import BLOCKING_STATUSES, LeavePriority, LeaveRequest
from leaveflow.models.requester import Requester, RequesterRole
from leaveflow.models.schedule_entry import ScheduleEntry
from leaveflow.models.substitute_assignment import AssignmentStatus, SubstituteAssignment
from leaveflow.services.approval_router import RoutingPolicy
from leaveflow.services.audit import activity_record
from leaveflow.services.notifications import LeaveEvent
from leaveflow.services.schedule_store import append_entries, list_entries
from leaveflow.services.substitute_matcher import (
    GENERAL_COVERAGE,
    BookedSlot,
    CandidateProfile,
    CoverageRequest,
    CoverageSlot,
    MatchDecision,
    assign,
    build_coverage_slots,
    validate_placement,
)

logger = logging.getLogger(__name__)

MAX_PLACEMENT_ATTEMPTS = 5
UNASSIGNED_SECTION = "UNASSIGNED"


@dataclass
class CoverageOutcome:
    assignment: SubstituteAssignment
    events: list[LeaveEvent] = field(default_factory=list)


@dataclass(frozen=True)
class CoverageSnapshot:
    request: CoverageRequest
    candidates: list[CandidateProfile]
    schedule: list[BookedSlot]


def get_assignment(db: Session, leave_request_id: str, *, for_update: bool = False) -> SubstituteAssignment | None:
    query = select(SubstituteAssignment).where(SubstituteAssignment.leave_request_id == leave_request_id)
    if for_update:
        query = query.with_for_update()
    return db.execute(query.execution_options(populate_existing=True)).scalar_one_or_none()


def _booked(entry: ScheduleEntry) -> BookedSlot:
    return BookedSlot(
        instructor_id=entry.instructor_id,
        weekday=entry.weekday,
        period=entry.period,
        on_date=entry.on_date,
        section=entry.section,
        subject=entry.subject,
    )


def build_snapshot(
    db: Session,
    *,
    request: LeaveRequest,
    requester: Requester,
    working_days: Sequence[str],
    periods_per_day: int,
) -> CoverageSnapshot:
    schedule = [_booked(item) for item in list_entries(db, from_date=request.from_date, to_date=request.to_date)]
    own_schedule = [item for item in schedule if item.instructor_id == requester.id]

    own_subjects = sorted(requester.subjects or [])
    slots = build_coverage_slots(
        instructor_id=requester.id,
        from_date=request.from_date,
        to_date=request.to_date,
        own_schedule=own_schedule,
        working_days=working_days,
        periods_per_day=periods_per_day,
        fallback_section=requester.section or UNASSIGNED_SECTION,
        fallback_subject=own_subjects[0] if own_subjects else GENERAL_COVERAGE,
    )
    taught = {slot.subject for slot in slots if slot.subject and slot.subject != GENERAL_COVERAGE}
    required = frozenset(taught or own_subjects)

    on_leave = set(
        db.execute(
            select(LeaveRequest.requester_id).where(
                LeaveRequest.status.in_(list(BLOCKING_STATUSES)),
                LeaveRequest.from_date <= request.to_date,
                LeaveRequest.to_date >= request.from_date,
            )
        ).scalars()
    )
    instructors = db.execute(select(Requester).where(Requester.role == RequesterRole.instructor)).scalars()
    candidates = [
        CandidateProfile(
            instructor_id=item.id,
            department=item.department or "",
            subjects=frozenset(item.subjects or []),
            experience_years=float(item.experience_years or 0),
            is_active=item.is_active,
            on_leave=item.id in on_leave,
        )
        for item in instructors
    ]

    coverage = CoverageRequest(
        leave_request_id=request.id,
        original_instructor_id=requester.id,
        department=requester.department or "",
        section=requester.section or UNASSIGNED_SECTION,
        from_date=request.from_date,
        to_date=request.to_date,
        required_subjects=required,
        slots=slots,
    )
    return CoverageSnapshot(request=coverage, candidates=candidates, schedule=schedule)


def format_period_range(slots: Sequence[CoverageSlot]) -> str:
    if not slots:
        return "no periods"
    first, last = slots[0], slots[-1]
    return (
        f"{first.on_date.isoformat()} P{first.period} - {last.on_date.isoformat()} P{last.period} "
        f"({len(slots)} periods)"
    )


def _cover_entries(assignment_id: str, substitute_id: str, slots: Sequence[CoverageSlot]) -> list[ScheduleEntry]:
    return [
        ScheduleEntry(
            instructor_id=substitute_id,
            weekday=slot.weekday,
            period=slot.period,
            on_date=slot.on_date,
            section=slot.section,
            subject=slot.subject,
            assignment_id=assignment_id,
        )
        for slot in slots
    ]


def _section_label(coverage: CoverageRequest) -> str:
    sections = sorted({slot.section for slot in coverage.slots if slot.section})
    return ", ".join(sections)[:50] if sections else coverage.section


def _affected_learner_ids(db: Session, sections: Iterable[str]) -> list[str]:
    wanted = sorted({item for item in sections if item and item != UNASSIGNED_SECTION})
    if not wanted:
        return []
    query = (
        select(Requester.id)
        .where(
            Requester.role == RequesterRole.learner,
            Requester.is_active.is_(True),
            Requester.section.in_(wanted),
        )
        .order_by(Requester.id)
    )
    return list(db.execute(query).scalars())


def _assigned_event(
    db: Session,
    *,
    assignment: SubstituteAssignment,
    request: LeaveRequest,
    requester: Requester,
    policy: RoutingPolicy,
    slots: Sequence[CoverageSlot],
) -> LeaveEvent:
    """Substitute, absent instructor, department head and the learners whose
    sections lose their instructor; the senior administrator too for urgent leave."""
    recipients = [
        assignment.substitute_instructor_id,
        assignment.original_instructor_id,
        policy.department_head(requester.department),
        *_affected_learner_ids(db, [slot.section for slot in slots] or [requester.section]),
    ]
    if request.priority == LeavePriority.urgent:
        recipients.append(policy.senior_administrator_id)
    return LeaveEvent(
        name="substitute.assigned",
        title="Substitute assigned",
        message=f"Coverage for {assignment.subject} ({assignment.period_range}) has been booked.",
        recipient_ids=tuple(recipients),
        data={
            "leave_request_id": assignment.leave_request_id,
            "assignment_id": assignment.id,
            "substitute_id": assignment.substitute_instructor_id,
            "priority": request.priority.value,
        },
    )


def _escalated_event(assignment: SubstituteAssignment, requester: Requester, policy: RoutingPolicy) -> LeaveEvent:
    return LeaveEvent(
        name="substitute.escalated",
        title="Substitute needed",
        message=(
            f"No conflict-free substitute was found for {requester.name} "
            f"({assignment.period_range}). Manual assignment required."
        ),
        recipient_ids=(policy.department_head(requester.department), policy.senior_administrator_id),
        data={"leave_request_id": assignment.leave_request_id, "assignment_id": assignment.id},
    )


def _try_place(
    db: Session,
    *,
    snapshot: CoverageSnapshot,
    decision: MatchDecision,
    actor_id: str | None,
) -> SubstituteAssignment:
    coverage = snapshot.request
    assignment = SubstituteAssignment(
        id=str(uuid.uuid4()),
        leave_request_id=coverage.leave_request_id,
        original_instructor_id=coverage.original_instructor_id,
        substitute_instructor_id=decision.substitute_id,
        subject=decision.subject,
        section=_section_label(coverage),
        period_range=format_period_range(decision.slots),
        status=AssignmentStatus.assigned,
        tier=decision.tier.value if decision.tier else None,
        score=decision.score,
    )
    audit = activity_record(
        actor_id=actor_id,
        action="leave.substitute.assign",
        entity_type="leave_request",
        entity_id=coverage.leave_request_id,
        details={
            "substitute_id": decision.substitute_id,
            "tier": assignment.tier,
            "score": decision.score,
            "slots": len(decision.slots),
        },
    )
    append_entries(
        db,
        _cover_entries(assignment.id, decision.substitute_id, decision.slots),
        records=[assignment, audit],
    )
    return assignment


def _persist_escalation(
    db: Session,
    *,
    snapshot: CoverageSnapshot,
    notes: str,
    actor_id: str | None,
) -> SubstituteAssignment | None:
    coverage = snapshot.request
    assignment = SubstituteAssignment(
        id=str(uuid.uuid4()),
        leave_request_id=coverage.leave_request_id,
        original_instructor_id=coverage.original_instructor_id,
        substitute_instructor_id=None,
        subject=", ".join(sorted(coverage.required_subjects)) or GENERAL_COVERAGE,
        section=_section_label(coverage),
        period_range=format_period_range(coverage.slots),
        status=AssignmentStatus.escalated,
        notes=notes,
    )
    db.add(assignment)
    db.add(
        activity_record(
            actor_id=actor_id,
            action="leave.substitute.escalate",
            entity_type="leave_request",
            entity_id=coverage.leave_request_id,
            details={"slots": len(coverage.slots), "notes": notes},
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Coverage for leave %s was recorded concurrently", coverage.leave_request_id)
        return None
    return assignment


def cover_approved_leave(
    db: Session,
    *,
    request: LeaveRequest,
    requester: Requester,
    policy: RoutingPolicy,
    working_days: Sequence[str],
    periods_per_day: int,
    actor_id: str | None = None,
) -> CoverageOutcome:
    """Find and book a substitute for an approved instructor leave.

    Never raises for an unplaceable leave: the result is then an ``escalated``
    assignment plus a ``substitute.escalated`` event. Calling it again for the
    same leave returns the existing assignment without new events.
    """
    excluded: set[str] = set()
    notes: list[str] = []
    snapshot: CoverageSnapshot | None = None

    for attempt in range(1, MAX_PLACEMENT_ATTEMPTS + 1):
        existing = get_assignment(db, request.id)
        if existing is not None:
            return CoverageOutcome(existing)

        snapshot = build_snapshot(
            db,
            request=request,
            requester=requester,
            working_days=working_days,
            periods_per_day=periods_per_day,
        )
        candidates = [item for item in snapshot.candidates if item.instructor_id not in excluded]
        decision = assign(snapshot.request, candidates, snapshot.schedule)
        notes.extend(f"{instructor_id}: {reason}" for instructor_id, reason in decision.rejected)
        if decision.is_escalated:
            break

        try:
            assignment = _try_place(db, snapshot=snapshot, decision=decision, actor_id=actor_id)
        except ScheduleConflict as exc:
            excluded.add(decision.substitute_id)
            notes.append(f"{decision.substitute_id}: {exc.message}")
            logger.info(
                "Leave %s: placement of %s lost a booking race (attempt %d)",
                request.id,
                decision.substitute_id,
                attempt,
            )
            continue

        logger.info(
            "Leave %s covered by %s (%s tier, score %s)",
            request.id,
            assignment.substitute_instructor_id,
            assignment.tier,
            assignment.score,
        )
        event = _assigned_event(
            db,
            assignment=assignment,
            request=request,
            requester=requester,
            policy=policy,
            slots=decision.slots,
        )
        return CoverageOutcome(assignment, [event])

    if snapshot is None:
        raise ValidationError("Coverage placement attempts must be positive")

    summary = "; ".join(dict.fromkeys(notes)) or "No eligible candidate in either tier"
    assignment = _persist_escalation(db, snapshot=snapshot, notes=summary, actor_id=actor_id)
    if assignment is None:
        return CoverageOutcome(get_assignment(db, request.id))
    logger.warning("Leave %s escalated: no conflict-free substitute", request.id)
    return CoverageOutcome(assignment, [_escalated_event(assignment, requester, policy)])


def assign_manually(
    db: Session,
    *,
    request: LeaveRequest,
    requester: Requester,
    substitute_id: str,
    actor_id: str,
    policy: RoutingPolicy,
    working_days: Sequence[str],
    periods_per_day: int,
) -> CoverageOutcome:
    assignment = get_assignment(db, request.id, for_update=True)
    if assignment is None:
        raise ResourceNotFoundError("SubstituteAssignment", request.id)
    if assignment.status != AssignmentStatus.escalated:
        raise Conflict(
            "Coverage is already assigned",
            details={"assignment_id": assignment.id, "substitute_id": assignment.substitute_instructor_id},
        )

    substitute = db.get(Requester, substitute_id)
    if substitute is None:
        raise ResourceNotFoundError("Requester", substitute_id)
    if substitute.role != RequesterRole.instructor or not substitute.is_active:
        raise ValidationError("Substitute must be an active instructor", details={"substitute_id": substitute_id})
    if substitute.id == requester.id:
        raise ValidationError("An instructor cannot cover their own leave")

    snapshot = build_snapshot(
        db,
        request=request,
        requester=requester,
        working_days=working_days,
        periods_per_day=periods_per_day,
    )
    if any(item.instructor_id == substitute_id and item.on_leave for item in snapshot.candidates):
        raise ValidationError("Substitute is on leave during this period", details={"substitute_id": substitute_id})
    validate_placement(substitute_id, snapshot.request.slots, snapshot.schedule)

    result = db.execute(
        update(SubstituteAssignment)
        .where(
            SubstituteAssignment.id == assignment.id,
            SubstituteAssignment.status == AssignmentStatus.escalated,
        )
        .values(
            substitute_instructor_id=substitute_id,
            status=AssignmentStatus.assigned,
            notes=f"Assigned manually by {actor_id}",
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise Conflict("Coverage was resolved concurrently", details={"assignment_id": assignment.id})

    audit = activity_record(
        actor_id=actor_id,
        action="leave.substitute.assign",
        entity_type="leave_request",
        entity_id=request.id,
        details={"substitute_id": substitute_id, "manual": True, "slots": len(snapshot.request.slots)},
    )
    try:
        append_entries(
            db,
            _cover_entries(assignment.id, substitute_id, snapshot.request.slots),
            records=[audit],
        )
    except ScheduleConflict:
        db.rollback()
        raise

    assignment = get_assignment(db, request.id)
    logger.info("Leave %s manually covered by %s", request.id, substitute_id)
    event = _assigned_event(
        db,
        assignment=assignment,
        request=request,
        requester=requester,
        policy=policy,
        slots=snapshot.request.slots,
    )
    return CoverageOutcome(assignment, [event])
