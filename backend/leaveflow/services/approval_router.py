from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from leaveflow.core.config import Settings
from leaveflow.core.exceptions import ValidationError
from leaveflow.models.requester import Requester, RequesterRole


class ReviewerRole(str, Enum):
    section_reviewer = "section_reviewer"
    department_head = "department_head"
    senior_administrator = "senior_administrator"


@dataclass(frozen=True)
class ReviewerStep:
    role: ReviewerRole
    reviewer_id: str

    def as_dict(self) -> dict:
        return {"role": self.role.value, "reviewer_id": self.reviewer_id}


@dataclass(frozen=True)
class RoutingPolicy:
    long_leave_threshold: int = 10
    section_reviewers: dict[str, str] = field(default_factory=dict)
    department_heads: dict[str, str] = field(default_factory=dict)
    senior_administrator_id: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoutingPolicy":
        return cls(
            long_leave_threshold=settings.long_leave_threshold_days,
            section_reviewers=dict(settings.section_reviewers),
            department_heads=dict(settings.department_heads),
            senior_administrator_id=settings.senior_administrator_id,
        )

    def section_reviewer(self, section: str | None) -> str | None:
        key = (section or "").strip().upper()
        return self.section_reviewers.get(key) if key else None

    def department_head(self, department: str | None) -> str | None:
        key = (department or "").strip().upper()
        return self.department_heads.get(key) if key else None


def _department_head_step(requester: Requester, policy: RoutingPolicy) -> ReviewerStep:
    head_id = policy.department_head(requester.department)
    if not head_id:
        raise ValidationError(
            f"No department head configured for department '{requester.department or ''}'",
            details={"department": requester.department},
        )
    return ReviewerStep(ReviewerRole.department_head, head_id)


def route(requester: Requester, day_count: int, policy: RoutingPolicy) -> list[ReviewerStep]:
    """Return the ordered reviewer chain for a request of ``day_count`` days."""
    if requester.role == RequesterRole.learner:
        reviewer_id = policy.section_reviewer(requester.section)
        if not reviewer_id:
            raise ValidationError(
                f"No reviewer configured for section '{requester.section or ''}'",
                details={"section": requester.section},
            )
        chain = [
            ReviewerStep(ReviewerRole.section_reviewer, reviewer_id),
            _department_head_step(requester, policy),
        ]
    elif requester.role == RequesterRole.instructor:
        chain = [_department_head_step(requester, policy)]
        if day_count > policy.long_leave_threshold:
            if not policy.senior_administrator_id:
                raise ValidationError("No senior administrator configured for long leave escalation")
            chain.append(ReviewerStep(ReviewerRole.senior_administrator, policy.senior_administrator_id))
    else:
        raise ValidationError(
            f"Role '{requester.role.value}' has no approval chain",
            details={"role": requester.role.value},
        )

    if any(step.reviewer_id == requester.id for step in chain):
        raise ValidationError("Requester cannot review their own leave request")
    return chain
