from fastapi import APIRouter, Depends

from leaveflow.api.deps import get_current_requester
from leaveflow.models.requester import Requester
from leaveflow.schemas.requester import RequesterOut

router = APIRouter()


@router.get("/requesters/me", response_model=RequesterOut)
def get_me(current_requester: Requester = Depends(get_current_requester)) -> RequesterOut:
    return RequesterOut.model_validate(current_requester)
