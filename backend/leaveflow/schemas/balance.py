from pydantic import BaseModel, Field


class BalanceAccountOut(BaseModel):
    requester_id: str
    year: int
    total_days: int
    used_days: int
    pending_days: int
    available_days: int

    model_config = {"from_attributes": True}


class BalanceAllotmentUpdate(BaseModel):
    total_days: int = Field(ge=0, le=366)
