from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from leaveflow.core.weekdays import WEEKDAY_NAMES, normalize_weekday


class ScheduleEntryCreate(BaseModel):
    instructor_id: str = Field(min_length=1, max_length=36)
    weekday: str
    period: int = Field(ge=1)
    section: str | None = Field(default=None, max_length=50)
    subject: str | None = Field(default=None, max_length=200)

    @field_validator("weekday")
    @classmethod
    def validate_weekday(cls, value: str) -> str:
        normalized = normalize_weekday(value)
        if normalized not in WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday '{value}'")
        return normalized


class ScheduleEntriesCreate(BaseModel):
    entries: list[ScheduleEntryCreate] = Field(min_length=1)


class ScheduleEntryOut(BaseModel):
    id: str
    instructor_id: str
    weekday: str
    period: int
    on_date: date | None = None
    section: str | None = None
    subject: str | None = None
    assignment_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
