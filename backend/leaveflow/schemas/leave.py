from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from leaveflow.models.leave_request import LeaveKind, LeavePriority, LeaveStatus
from leaveflow.models.leave_review import ReviewDecision
from leaveflow.models.substitute_assignment import AssignmentStatus


class LeaveRequestCreate(BaseModel):
    leave_kind: LeaveKind
    from_date: date
    to_date: date
    reason: str = Field(min_length=1, max_length=1000)
    priority: LeavePriority = LeavePriority.normal


class LeaveDecisionCreate(BaseModel):
    decision: Literal["approve", "reject"]
    comment: str | None = Field(default=None, max_length=1000)

    @property
    def review_decision(self) -> ReviewDecision:
        return ReviewDecision(self.decision)


class LeaveAnnotationCreate(BaseModel):
    note: str = Field(min_length=1, max_length=2000)


class LeaveAnnotationOut(BaseModel):
    id: str
    actor_id: str | None = None
    action: str
    entity_id: str | None = None
    details: dict
    created_at: datetime

    model_config = {"from_attributes": True}


class ReviewerStepOut(BaseModel):
    role: str
    reviewer_id: str


class LeaveReviewOut(BaseModel):
    id: str
    step_index: int
    reviewer_id: str
    decision: ReviewDecision
    comment: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SubstituteAssignmentCreate(BaseModel):
    substitute_instructor_id: str = Field(min_length=1, max_length=36)


class SubstituteAssignmentOut(BaseModel):
    id: str
    leave_request_id: str
    original_instructor_id: str
    substitute_instructor_id: str | None = None
    subject: str
    section: str
    period_range: str
    status: AssignmentStatus
    tier: str | None = None
    score: float | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class LeaveRequestOut(BaseModel):
    id: str
    requester_id: str
    leave_kind: LeaveKind
    from_date: date
    to_date: date
    day_count: int
    reason: str
    status: LeaveStatus
    priority: LeavePriority
    reviewer_chain: list[ReviewerStepOut]
    current_step: int
    current_reviewer_id: str | None = None
    balance_year: int
    reviews: list[LeaveReviewOut] = []
    substitute_assignment: SubstituteAssignmentOut | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
