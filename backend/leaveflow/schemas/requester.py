from pydantic import BaseModel, EmailStr

from leaveflow.models.requester import RequesterRole


class RequesterOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: RequesterRole
    department: str | None = None
    section: str | None = None
    subjects: list[str] = []
    experience_years: float
    is_active: bool

    model_config = {"from_attributes": True}
