from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from leaveflow.api.deps import get_current_requester, get_db
from leaveflow.core.exceptions import ResourceNotFoundError
from leaveflow.models.notification import Notification
from leaveflow.models.requester import Requester
from leaveflow.schemas.notification import NotificationOut

router = APIRouter()


@router.get("/notifications", response_model=list[NotificationOut])
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
) -> list[NotificationOut]:
    query = select(Notification).where(Notification.user_id == current_requester.id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc()).limit(limit)
    return [NotificationOut.model_validate(item) for item in db.execute(query).scalars()]


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
def mark_notification_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_requester: Requester = Depends(get_current_requester),
) -> NotificationOut:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != current_requester.id:
        raise ResourceNotFoundError("Notification", notification_id)
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return NotificationOut.model_validate(notification)
