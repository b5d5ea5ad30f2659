from datetime import date, timedelta

import pytest
from sqlalchemy import select

from conftest import WORKING_DAYS, book, make_requester
from leaveflow.core.exceptions import Conflict, ScheduleConflict
from leaveflow.models import (
    ActivityLog,
    AssignmentStatus,
    LeaveKind,
    LeavePriority,
    LeaveStatus,
    RequesterRole,
    ReviewDecision,
    ScheduleEntry,
)
from leaveflow.services import balance_ledger, coverage, request_ledger
from leaveflow.services.substitute_matcher import GENERAL_COVERAGE

MONDAY = date(2026, 3, 9)
TUESDAY = date(2026, 3, 10)


@pytest.fixture()
def timetable(db, staff):
    book(db, "instructor-1", "Monday", 1, section="CSE-A", subject="Algorithms")
    book(db, "instructor-1", "Tuesday", 2, section="CSE-A", subject="Databases")
    return {
        "inst-a": make_requester(
            db, "inst-a", RequesterRole.instructor, subjects=["Algorithms", "Databases"], experience_years=8
        ),
        "inst-b": make_requester(db, "inst-b", RequesterRole.instructor, subjects=["Algorithms"], experience_years=2),
        "inst-e": make_requester(
            db, "inst-e", RequesterRole.instructor, department="ECE", subjects=["Signals"], experience_years=4
        ),
    }


def _submit(db, requester, policy, clock, dispatcher, *, start=MONDAY, days=2, priority=LeavePriority.normal):
    return request_ledger.submit(
        db,
        requester=requester,
        leave_kind=LeaveKind.sick,
        from_date=start,
        to_date=start + timedelta(days=days - 1),
        reason="Medical",
        policy=policy,
        default_allotment=30,
        clock=clock,
        priority=priority,
        dispatcher=dispatcher,
    )


def _approve(db, request_id, policy, dispatcher, actor_id="head-cse"):
    return request_ledger.transition(
        db,
        request_id=request_id,
        actor_id=actor_id,
        decision=ReviewDecision.approve,
        policy=policy,
        working_days=WORKING_DAYS,
        periods_per_day=7,
        dispatcher=dispatcher,
    )


def _cover_entries(db, assignment_id):
    return list(
        db.execute(
            select(ScheduleEntry)
            .where(ScheduleEntry.assignment_id == assignment_id)
            .order_by(ScheduleEntry.on_date, ScheduleEntry.period)
        ).scalars()
    )


def test_final_approval_books_best_substitute(db, staff, timetable, policy, clock, dispatcher):
    request = _submit(db, staff["instructor"], policy, clock, dispatcher)
    request = _approve(db, request.id, policy, dispatcher)

    assignment = coverage.get_assignment(db, request.id)
    assert request.status == LeaveStatus.approved
    assert assignment.status == AssignmentStatus.assigned
    assert assignment.substitute_instructor_id == "inst-a"
    assert assignment.tier == "department"
    assert assignment.score == 96
    assert assignment.subject == "Algorithms, Databases"
    assert [(item.instructor_id, item.on_date, item.period) for item in _cover_entries(db, assignment.id)] == [
        ("inst-a", MONDAY, 1),
        ("inst-a", TUESDAY, 2),
    ]

    assert dispatcher.names() == ["leave.submitted", "leave.approved", "substitute.assigned"]
    recipients = dispatcher.payloads("substitute.assigned")[0]["recipient_ids"]
    assert recipients == ["inst-a", "instructor-1", "head-cse", "learner-1"]
    actions = set(db.execute(select(ActivityLog.action).where(ActivityLog.entity_id == request.id)).scalars())
    assert "leave.substitute.assign" in actions


def test_busy_candidate_is_passed_over(db, staff, timetable, policy, clock, dispatcher):
    book(db, "inst-a", "Tuesday", 2, section="CSE-B", subject="Databases")

    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher).id, policy, dispatcher)

    assert coverage.get_assignment(db, request.id).substitute_instructor_id == "inst-b"


def test_candidate_on_overlapping_leave_is_excluded(db, staff, timetable, policy, clock, dispatcher):
    _submit(db, timetable["inst-a"], policy, clock, dispatcher, start=TUESDAY, days=1)

    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher).id, policy, dispatcher)

    assert coverage.get_assignment(db, request.id).substitute_instructor_id == "inst-b"


def test_cross_department_fallback_uses_general_coverage(db, staff, timetable, policy, clock, dispatcher):
    book(db, "inst-a", "Monday", 1)
    book(db, "inst-b", "Tuesday", 2, on_date=TUESDAY)

    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher).id, policy, dispatcher)

    assignment = coverage.get_assignment(db, request.id)
    assert assignment.substitute_instructor_id == "inst-e"
    assert assignment.tier == "cross_department"
    assert assignment.subject == GENERAL_COVERAGE


def test_no_free_candidate_escalates_without_reverting_approval(db, staff, timetable, policy, clock, dispatcher):
    for instructor_id in ("inst-a", "inst-b", "inst-e"):
        book(db, instructor_id, "Monday", 1)

    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher).id, policy, dispatcher)

    assignment = coverage.get_assignment(db, request.id)
    assert request.status == LeaveStatus.approved
    assert assignment.status == AssignmentStatus.escalated
    assert assignment.substitute_instructor_id is None
    assert "inst-a" in assignment.notes
    assert _cover_entries(db, assignment.id) == []
    assert balance_ledger.get_account(db, requester_id="instructor-1", year=2026).used_days == 2

    escalated = dispatcher.payloads("substitute.escalated")
    assert len(escalated) == 1
    assert escalated[0]["recipient_ids"] == ["head-cse", "senior-admin"]


def test_booking_race_moves_to_next_candidate(db, session_factory, staff, timetable, policy, clock, dispatcher, monkeypatch):
    real_append = coverage.append_entries
    calls = []

    def racing_append(session, entries, *, records=()):
        if not calls:
            # Another writer books inst-a on Monday between our snapshot and our insert.
            other = session_factory()
            other.add(ScheduleEntry(instructor_id="inst-a", weekday="Monday", period=1, on_date=MONDAY))
            other.commit()
            other.close()
        calls.append(entries[0].instructor_id)
        return real_append(session, entries, records=records)

    monkeypatch.setattr(coverage, "append_entries", racing_append)

    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher).id, policy, dispatcher)

    assert calls == ["inst-a", "inst-b"]
    assignment = coverage.get_assignment(db, request.id)
    assert assignment.substitute_instructor_id == "inst-b"
    assert [item.instructor_id for item in _cover_entries(db, assignment.id)] == ["inst-b", "inst-b"]


def test_covering_twice_returns_the_existing_assignment(db, staff, timetable, policy, clock, dispatcher):
    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher).id, policy, dispatcher)
    first = coverage.get_assignment(db, request.id)

    outcome = coverage.cover_approved_leave(
        db,
        request=request,
        requester=staff["instructor"],
        policy=policy,
        working_days=WORKING_DAYS,
        periods_per_day=7,
    )

    assert outcome.assignment.id == first.id
    assert outcome.events == []
    assert len(_cover_entries(db, first.id)) == 2


def test_unbooked_instructor_is_covered_for_every_period(db, staff, policy, clock, dispatcher):
    make_requester(db, "inst-a", RequesterRole.instructor, subjects=["Algorithms"])

    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher, days=1).id, policy, dispatcher)

    assignment = coverage.get_assignment(db, request.id)
    entries = _cover_entries(db, assignment.id)
    assert [item.period for item in entries] == list(range(1, 8))
    assert {item.section for item in entries} == {"CSE-A"}


def test_learner_approval_needs_no_coverage(db, staff, timetable, policy, clock, dispatcher):
    request = _submit(db, staff["learner"], policy, clock, dispatcher)
    _approve(db, request.id, policy, dispatcher, actor_id="reviewer-a")
    request = _approve(db, request.id, policy, dispatcher)

    assert request.status == LeaveStatus.approved
    assert coverage.get_assignment(db, request.id) is None


def test_manual_assignment_resolves_an_escalation(db, staff, timetable, policy, clock, dispatcher):
    for instructor_id in ("inst-a", "inst-b", "inst-e"):
        book(db, instructor_id, "Monday", 1)
    request = _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher).id, policy, dispatcher)
    busy = make_requester(db, "inst-busy", RequesterRole.instructor)
    book(db, busy.id, "Tuesday", 2)
    make_requester(db, "inst-free", RequesterRole.instructor, department="MECH")

    with pytest.raises(ScheduleConflict):
        coverage.assign_manually(
            db,
            request=request,
            requester=staff["instructor"],
            substitute_id="inst-busy",
            actor_id="senior-admin",
            policy=policy,
            working_days=WORKING_DAYS,
            periods_per_day=7,
        )
    assert coverage.get_assignment(db, request.id).status == AssignmentStatus.escalated

    outcome = coverage.assign_manually(
        db,
        request=request,
        requester=staff["instructor"],
        substitute_id="inst-free",
        actor_id="senior-admin",
        policy=policy,
        working_days=WORKING_DAYS,
        periods_per_day=7,
    )
    assert outcome.assignment.status == AssignmentStatus.assigned
    assert outcome.assignment.substitute_instructor_id == "inst-free"
    assert [event.name for event in outcome.events] == ["substitute.assigned"]
    assert len(_cover_entries(db, outcome.assignment.id)) == 2

    with pytest.raises(Conflict):
        coverage.assign_manually(
            db,
            request=request,
            requester=staff["instructor"],
            substitute_id="inst-free",
            actor_id="senior-admin",
            policy=policy,
            working_days=WORKING_DAYS,
            periods_per_day=7,
        )


def test_urgent_coverage_reaches_every_stakeholder(db, staff, timetable, policy, clock, dispatcher):
    make_requester(db, "learner-2", RequesterRole.learner, section="CSE-A")
    make_requester(db, "learner-gone", RequesterRole.learner, section="CSE-A", is_active=False)
    make_requester(db, "learner-b", RequesterRole.learner, section="CSE-B")

    request = _submit(db, staff["instructor"], policy, clock, dispatcher, priority=LeavePriority.urgent)
    _approve(db, request.id, policy, dispatcher)

    payload = dispatcher.payloads("substitute.assigned")[0]
    assert payload["recipient_ids"] == [
        "inst-a",
        "instructor-1",
        "head-cse",
        "learner-1",
        "learner-2",
        "senior-admin",
    ]
    assert payload["priority"] == "urgent"


def test_learners_of_every_covered_section_are_told(db, staff, timetable, policy, clock, dispatcher):
    book(db, "instructor-1", "Wednesday", 3, section="CSE-B", subject="Algorithms")
    make_requester(db, "learner-b", RequesterRole.learner, section="CSE-B")

    _approve(db, _submit(db, staff["instructor"], policy, clock, dispatcher, days=3).id, policy, dispatcher)

    recipients = dispatcher.payloads("substitute.assigned")[0]["recipient_ids"]
    assert "senior-admin" not in recipients
    assert {"learner-1", "learner-b"} <= set(recipients)
