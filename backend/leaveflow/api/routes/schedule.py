from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from leaveflow.api.deps import get_current_requester, get_db, require_roles
from leaveflow.core.exceptions import ValidationError
from leaveflow.models.requester import Requester, RequesterRole
from leaveflow.models.schedule_entry import ScheduleEntry
from leaveflow.schemas.schedule import ScheduleEntriesCreate, ScheduleEntryOut
from leaveflow.services import schedule_store
from leaveflow.services.audit import activity_record

router = APIRouter()


@router.get("/schedule", response_model=list[ScheduleEntryOut])
def get_schedule(
    instructor_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
) -> list[ScheduleEntryOut]:
    target = instructor_id or current_requester.id
    if target != current_requester.id and current_requester.role != RequesterRole.administrator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return [ScheduleEntryOut.model_validate(item) for item in schedule_store.list_entries(db, instructor_ids=[target])]


@router.post("/schedule/entries", response_model=list[ScheduleEntryOut], status_code=status.HTTP_201_CREATED)
def create_schedule_entries(
    payload: ScheduleEntriesCreate,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(require_roles(RequesterRole.administrator)),
) -> list[ScheduleEntryOut]:
    instructor_ids = {item.instructor_id for item in payload.entries}
    for instructor_id in sorted(instructor_ids):
        instructor = db.get(Requester, instructor_id)
        if instructor is None or instructor.role != RequesterRole.instructor:
            raise ValidationError(
                "Schedule entries can only be booked for instructors",
                details={"instructor_id": instructor_id},
            )

    entries = [
        ScheduleEntry(
            instructor_id=item.instructor_id,
            weekday=item.weekday,
            period=item.period,
            on_date=None,
            section=item.section,
            subject=item.subject,
        )
        for item in payload.entries
    ]
    audit = activity_record(
        actor_id=current_requester.id,
        action="schedule.load",
        entity_type="schedule_entry",
        details={"count": len(entries), "instructor_ids": sorted(instructor_ids)},
    )
    schedule_store.append_entries(db, entries, records=[audit])
    for item in entries:
        db.refresh(item)
    return [ScheduleEntryOut.model_validate(item) for item in entries]
