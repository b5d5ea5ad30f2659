from datetime import date

import pytest

from leaveflow.core.exceptions import ScheduleConflict
from leaveflow.services.substitute_matcher import (
    GENERAL_COVERAGE,
    BookedSlot,
    CandidateProfile,
    CoverageRequest,
    MatchOutcome,
    MatchTier,
    assign,
    build_coverage_slots,
    score_candidate,
    validate_placement,
    working_dates,
)

WORKING_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
MONDAY = date(2026, 3, 9)
REQUIRED = frozenset({"Algorithms", "Databases", "Networks", "Compilers", "Graphics"})


def _request(own_schedule, *, from_date=MONDAY, to_date=MONDAY, required=REQUIRED):
    slots = build_coverage_slots(
        instructor_id="absent",
        from_date=from_date,
        to_date=to_date,
        own_schedule=own_schedule,
        working_days=WORKING_DAYS,
        periods_per_day=7,
        fallback_section="CSE-A",
        fallback_subject="Algorithms",
    )
    return CoverageRequest(
        leave_request_id="leave-1",
        original_instructor_id="absent",
        department="CSE",
        section="CSE-A",
        from_date=from_date,
        to_date=to_date,
        required_subjects=required,
        slots=slots,
    )


ABSENT_MONDAY_P1 = BookedSlot("absent", "Monday", 1, section="CSE-A", subject="Algorithms")


def _candidate(instructor_id, department="CSE", subjects=(), experience=0.0, **flags):
    return CandidateProfile(
        instructor_id=instructor_id,
        department=department,
        subjects=frozenset(subjects),
        experience_years=experience,
        **flags,
    )


def test_score_combines_department_subjects_experience_and_capacity():
    candidate = _candidate("c", subjects={"Algorithms", "Networks"}, experience=15)
    score = score_candidate(
        candidate,
        target_department="CSE",
        required_subjects=frozenset({"Algorithms", "Databases", "Networks", "Compilers"}),
        workload=0,
        max_workload=0,
    )
    assert score == 30 + 20 + 20 + 10


def test_subject_overlap_ignores_case():
    candidate = _candidate("c", subjects={"algorithms"})
    score = score_candidate(
        candidate,
        target_department="ECE",
        required_subjects=frozenset({"ALGORITHMS"}),
        workload=3,
        max_workload=3,
    )
    assert score == 40


def test_empty_required_subjects_contribute_nothing():
    candidate = _candidate("c", subjects={"Algorithms"}, experience=10)
    score = score_candidate(
        candidate,
        target_department="CSE",
        required_subjects=frozenset(),
        workload=1,
        max_workload=2,
    )
    assert score == 30 + 0 + 20 + 5


def test_equal_scores_break_ties_on_lower_workload():
    # Scenario D: both candidates score 72; B carries less teaching.
    four_of_five = {"Algorithms", "Databases", "Networks", "Compilers"}
    candidates = [
        _candidate("A", subjects=four_of_five, experience=5),
        _candidate("B", subjects=four_of_five, experience=2.5),
    ]
    schedule = [
        ABSENT_MONDAY_P1,
        BookedSlot("A", "Tuesday", 1),
        BookedSlot("A", "Tuesday", 2),
        BookedSlot("B", "Wednesday", 3),
    ]

    decision = assign(_request([ABSENT_MONDAY_P1]), candidates, schedule)

    assert decision.outcome == MatchOutcome.assigned
    assert decision.substitute_id == "B"
    assert decision.score == 72
    assert decision.tier == MatchTier.department


def test_equal_score_and_workload_break_ties_on_id():
    candidates = [_candidate("zed", subjects={"Algorithms"}), _candidate("amy", subjects={"Algorithms"})]
    decision = assign(_request([ABSENT_MONDAY_P1]), candidates, [ABSENT_MONDAY_P1])
    assert decision.substitute_id == "amy"


def test_candidate_order_does_not_change_the_decision():
    candidates = [
        _candidate("c1", subjects={"Algorithms"}, experience=3),
        _candidate("c2", subjects={"Networks", "Graphics"}, experience=8),
        _candidate("c3", subjects={"Databases"}, experience=1),
    ]
    schedule = [ABSENT_MONDAY_P1, BookedSlot("c2", "Friday", 4)]
    request = _request([ABSENT_MONDAY_P1])

    first = assign(request, candidates, schedule)
    second = assign(request, list(reversed(candidates)), list(reversed(schedule)))

    assert first == second


def test_conflict_on_second_day_moves_to_next_candidate():
    # Scenario E: the best candidate is free on Monday but busy on Tuesday.
    own = [ABSENT_MONDAY_P1, BookedSlot("absent", "Tuesday", 1, section="CSE-A", subject="Algorithms")]
    candidates = [
        _candidate("best", subjects=REQUIRED, experience=10),
        _candidate("next", subjects={"Algorithms"}),
    ]
    schedule = [*own, BookedSlot("best", "Tuesday", 1)]

    decision = assign(_request(own, to_date=date(2026, 3, 10)), candidates, schedule)

    assert decision.substitute_id == "next"
    assert [instructor_id for instructor_id, _ in decision.rejected] == ["best"]


def test_department_pool_exhausted_falls_back_to_general_coverage():
    # Scenario E: everyone in CSE already teaches Monday period 1.
    candidates = [
        _candidate("cse-1", subjects=REQUIRED, experience=10),
        _candidate("cse-2", subjects={"Algorithms"}),
        _candidate("ece-1", department="ECE", subjects={"Signals"}, experience=4),
    ]
    schedule = [
        ABSENT_MONDAY_P1,
        BookedSlot("cse-1", "Monday", 1),
        BookedSlot("cse-2", "Monday", 1, on_date=MONDAY),
    ]

    decision = assign(_request([ABSENT_MONDAY_P1]), candidates, schedule)

    assert decision.outcome == MatchOutcome.assigned
    assert decision.substitute_id == "ece-1"
    assert decision.tier == MatchTier.cross_department
    assert decision.subject == GENERAL_COVERAGE
    # Subject and department terms are dropped: 20 * 0.4 + 10 * (1 - 0).
    assert decision.score == 18


def test_escalates_when_no_candidate_validates():
    candidates = [_candidate("cse-1"), _candidate("ece-1", department="ECE")]
    schedule = [ABSENT_MONDAY_P1, BookedSlot("cse-1", "Monday", 1), BookedSlot("ece-1", "Monday", 1)]

    decision = assign(_request([ABSENT_MONDAY_P1]), candidates, schedule)

    assert decision.is_escalated
    assert decision.substitute_id is None
    assert {instructor_id for instructor_id, _ in decision.rejected} == {"cse-1", "ece-1"}


def test_inactive_on_leave_and_absent_instructors_are_never_chosen():
    candidates = [
        _candidate("absent", subjects=REQUIRED, experience=10),
        _candidate("inactive", subjects=REQUIRED, experience=10, is_active=False),
        _candidate("away", subjects=REQUIRED, experience=10, on_leave=True),
    ]
    decision = assign(_request([ABSENT_MONDAY_P1]), candidates, [ABSENT_MONDAY_P1])
    assert decision.is_escalated


def test_coverage_slots_follow_booked_periods_on_working_days():
    own = [
        BookedSlot("absent", "Monday", 1, section="CSE-A", subject="Algorithms"),
        BookedSlot("absent", "Monday", 3, section="CSE-B", subject="Databases"),
        BookedSlot("absent", "Tuesday", 2, on_date=date(2026, 3, 10), section="CSE-A", subject="Networks"),
        BookedSlot("absent", "Sunday", 1, section="CSE-A", subject="Algorithms"),
    ]
    # Monday 9th to Sunday 15th; the Tuesday booking is dated for the 10th only.
    slots = _request(own, from_date=MONDAY, to_date=date(2026, 3, 15)).slots

    assert [(slot.on_date.day, slot.period, slot.subject) for slot in slots] == [
        (9, 1, "Algorithms"),
        (9, 3, "Databases"),
        (10, 2, "Networks"),
    ]


def test_instructor_without_bookings_gets_full_day_grid():
    slots = _request([], from_date=MONDAY, to_date=date(2026, 3, 10)).slots

    assert len(slots) == 2 * 7
    assert {slot.section for slot in slots} == {"CSE-A"}
    assert {slot.period for slot in slots} == set(range(1, 8))


def test_validate_placement_reports_recurring_and_dated_clashes():
    slots = _request([ABSENT_MONDAY_P1, BookedSlot("absent", "Monday", 2)]).slots
    schedule = [BookedSlot("sub", "Monday", 1), BookedSlot("sub", "Monday", 2, on_date=MONDAY)]

    with pytest.raises(ScheduleConflict) as exc:
        validate_placement("sub", slots, schedule)

    assert exc.value.instructor_id == "sub"
    assert [item["period"] for item in exc.value.conflicts] == [1, 2]


def test_validate_placement_ignores_dated_bookings_on_other_days():
    slots = _request([ABSENT_MONDAY_P1]).slots
    validate_placement("sub", slots, [BookedSlot("sub", "Monday", 1, on_date=date(2026, 3, 16))])


def test_working_dates_accept_abbreviated_day_names():
    days = working_dates(MONDAY, date(2026, 3, 15), ["mon", "Wed", "Saturday"])

    assert [day.day for day in days] == [9, 11, 14]
