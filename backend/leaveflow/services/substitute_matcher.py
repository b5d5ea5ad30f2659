"""Substitute-instructor matching over immutable snapshots.

Nothing in this module touches the database. Callers build a
``CoverageRequest``, the candidate profiles and the booked slots, and get back a
``MatchDecision`` value; persistence lives in ``leaveflow.services.coverage``.

Matching runs in two tiers. The department tier scores candidates from the
absent instructor's department on department fit, subject overlap, experience
and spare capacity. When no one there can be placed without a timetable clash,
the cross-department tier retries with subjects ignored ("general coverage").
If that pool is exhausted too, the decision is an escalation for a human.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
import logging

from leaveflow.core.exceptions import NoSubstituteAvailable, ScheduleConflict
from leaveflow.core.weekdays import WEEKDAY_NAMES, normalize_weekday

logger = logging.getLogger(__name__)

GENERAL_COVERAGE = "General Coverage"

DEPARTMENT_WEIGHT = 30
SUBJECT_WEIGHT = 40
EXPERIENCE_WEIGHT = 20
WORKLOAD_WEIGHT = 10
EXPERIENCE_CAP_YEARS = 10


class MatchTier(str, Enum):
    department = "department"
    cross_department = "cross_department"


class MatchOutcome(str, Enum):
    assigned = "assigned"
    escalated = "escalated"


@dataclass(frozen=True)
class CandidateProfile:
    instructor_id: str
    department: str
    subjects: frozenset[str] = frozenset()
    experience_years: float = 0.0
    is_active: bool = True
    on_leave: bool = False


@dataclass(frozen=True)
class BookedSlot:
    instructor_id: str
    weekday: str
    period: int
    on_date: date | None = None
    section: str | None = None
    subject: str | None = None


@dataclass(frozen=True)
class CoverageSlot:
    on_date: date
    period: int
    section: str
    subject: str

    @property
    def weekday(self) -> str:
        return WEEKDAY_NAMES[self.on_date.weekday()]


@dataclass(frozen=True)
class CoverageRequest:
    leave_request_id: str
    original_instructor_id: str
    department: str
    section: str
    from_date: date
    to_date: date
    required_subjects: frozenset[str]
    slots: tuple[CoverageSlot, ...]


@dataclass(frozen=True)
class ScoredCandidate:
    profile: CandidateProfile
    score: float
    workload: int

    @property
    def sort_key(self) -> tuple[float, int, str]:
        return (-self.score, self.workload, self.profile.instructor_id)


@dataclass(frozen=True)
class MatchDecision:
    outcome: MatchOutcome
    substitute_id: str | None = None
    tier: MatchTier | None = None
    score: float | None = None
    slots: tuple[CoverageSlot, ...] = ()
    subject: str = GENERAL_COVERAGE
    rejected: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def is_escalated(self) -> bool:
        return self.outcome == MatchOutcome.escalated


def _fold(values: Iterable[str]) -> set[str]:
    return {item.strip().lower() for item in values if item and item.strip()}


def working_dates(from_date: date, to_date: date, working_days: Sequence[str]) -> list[date]:
    allowed = {normalize_weekday(item) for item in working_days}
    cursor = from_date
    result: list[date] = []
    while cursor <= to_date:
        if WEEKDAY_NAMES[cursor.weekday()] in allowed:
            result.append(cursor)
        cursor += timedelta(days=1)
    return result


def build_coverage_slots(
    *,
    instructor_id: str,
    from_date: date,
    to_date: date,
    own_schedule: Iterable[BookedSlot],
    working_days: Sequence[str],
    periods_per_day: int,
    fallback_section: str,
    fallback_subject: str,
) -> tuple[CoverageSlot, ...]:
    """Periods the absent instructor would have taught in the range.

    An instructor with no bookings at all in the range gets the whole
    working-day grid, so a substitute is still held for their section.
    """
    lessons = [item for item in own_schedule if item.instructor_id == instructor_id]
    days = working_dates(from_date, to_date, working_days)

    slots: dict[tuple[date, int], CoverageSlot] = {}
    for day in days:
        weekday = WEEKDAY_NAMES[day.weekday()]
        for lesson in lessons:
            if lesson.on_date is not None and lesson.on_date != day:
                continue
            if lesson.on_date is None and lesson.weekday != weekday:
                continue
            slots.setdefault(
                (day, lesson.period),
                CoverageSlot(
                    on_date=day,
                    period=lesson.period,
                    section=lesson.section or fallback_section,
                    subject=lesson.subject or fallback_subject,
                ),
            )

    if not slots:
        for day in days:
            for period in range(1, periods_per_day + 1):
                slots[(day, period)] = CoverageSlot(day, period, fallback_section, fallback_subject)
    return tuple(slots[key] for key in sorted(slots))


def workload_by_instructor(schedule: Iterable[BookedSlot]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for slot in schedule:
        counts[slot.instructor_id] = counts.get(slot.instructor_id, 0) + 1
    return counts


def score_candidate(
    candidate: CandidateProfile,
    *,
    target_department: str,
    required_subjects: frozenset[str],
    workload: int,
    max_workload: int,
    general_coverage: bool = False,
) -> float:
    score = 0.0
    if not general_coverage:
        if candidate.department == target_department:
            score += DEPARTMENT_WEIGHT
        required = _fold(required_subjects)
        if required:
            overlap = required & _fold(candidate.subjects)
            score += SUBJECT_WEIGHT * (len(overlap) / len(required))
    score += EXPERIENCE_WEIGHT * min(candidate.experience_years / EXPERIENCE_CAP_YEARS, 1)
    normalized_workload = workload / max_workload if max_workload > 0 else 0.0
    score += WORKLOAD_WEIGHT * (1 - normalized_workload)
    return round(score, 2)


def rank_candidates(
    pool: Sequence[CandidateProfile],
    *,
    request: CoverageRequest,
    workloads: dict[str, int],
    general_coverage: bool,
) -> list[ScoredCandidate]:
    max_workload = max((workloads.get(item.instructor_id, 0) for item in pool), default=0)
    scored = [
        ScoredCandidate(
            profile=item,
            score=score_candidate(
                item,
                target_department=request.department,
                required_subjects=request.required_subjects,
                workload=workloads.get(item.instructor_id, 0),
                max_workload=max_workload,
                general_coverage=general_coverage,
            ),
            workload=workloads.get(item.instructor_id, 0),
        )
        for item in pool
    ]
    return sorted(scored, key=lambda item: item.sort_key)


def validate_placement(instructor_id: str, slots: Sequence[CoverageSlot], schedule: Iterable[BookedSlot]) -> None:
    """Raise ``ScheduleConflict`` if ``instructor_id`` is already booked in any slot."""
    recurring: set[tuple[str, int]] = set()
    dated: set[tuple[date, int]] = set()
    for booked in schedule:
        if booked.instructor_id != instructor_id:
            continue
        if booked.on_date is None:
            recurring.add((booked.weekday, booked.period))
        else:
            dated.add((booked.on_date, booked.period))

    conflicts = [
        {"day": slot.on_date.isoformat(), "period": slot.period}
        for slot in slots
        if (slot.on_date, slot.period) in dated or (slot.weekday, slot.period) in recurring
    ]
    if conflicts:
        raise ScheduleConflict(instructor_id, conflicts)


def _eligible(candidate: CandidateProfile, request: CoverageRequest) -> bool:
    return (
        candidate.is_active
        and not candidate.on_leave
        and candidate.instructor_id != request.original_instructor_id
    )


def _place_in_pool(
    ranked: Sequence[ScoredCandidate],
    *,
    slots: Sequence[CoverageSlot],
    schedule: Sequence[BookedSlot],
    rejected: list[tuple[str, str]],
) -> ScoredCandidate:
    for candidate in ranked:
        try:
            validate_placement(candidate.profile.instructor_id, slots, schedule)
        except ScheduleConflict as exc:
            rejected.append((candidate.profile.instructor_id, exc.message))
            continue
        return candidate
    raise NoSubstituteAvailable(f"No conflict-free candidate among {len(ranked)}")


def _subject_label(request: CoverageRequest) -> str:
    subjects = sorted({slot.subject for slot in request.slots if slot.subject})
    return ", ".join(subjects) if subjects else GENERAL_COVERAGE


def assign(
    request: CoverageRequest,
    candidates: Sequence[CandidateProfile],
    schedule: Sequence[BookedSlot],
) -> MatchDecision:
    workloads = workload_by_instructor(schedule)
    eligible = sorted(
        (item for item in candidates if _eligible(item, request)),
        key=lambda item: item.instructor_id,
    )
    tiers = (
        (MatchTier.department, [item for item in eligible if item.department == request.department], False),
        (MatchTier.cross_department, [item for item in eligible if item.department != request.department], True),
    )

    rejected: list[tuple[str, str]] = []
    for tier, pool, general_coverage in tiers:
        ranked = rank_candidates(pool, request=request, workloads=workloads, general_coverage=general_coverage)
        try:
            chosen = _place_in_pool(ranked, slots=request.slots, schedule=schedule, rejected=rejected)
        except NoSubstituteAvailable as exc:
            logger.debug("Leave %s: %s tier exhausted (%s)", request.leave_request_id, tier.value, exc.message)
            continue
        return MatchDecision(
            outcome=MatchOutcome.assigned,
            substitute_id=chosen.profile.instructor_id,
            tier=tier,
            score=chosen.score,
            slots=request.slots,
            subject=_subject_label(request) if tier == MatchTier.department else GENERAL_COVERAGE,
            rejected=tuple(rejected),
        )

    return MatchDecision(outcome=MatchOutcome.escalated, slots=request.slots, rejected=tuple(rejected))
