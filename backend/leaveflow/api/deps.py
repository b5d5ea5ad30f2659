from collections.abc import Callable, Generator, Iterable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from leaveflow.core.clock import SystemClock, system_clock
from leaveflow.core.config import Settings, get_settings
from leaveflow.core.security import decode_token
from leaveflow.db.session import SessionLocal
from leaveflow.models.requester import Requester, RequesterRole
from leaveflow.services.approval_router import RoutingPolicy
from leaveflow.services.notifications import NotificationDispatcher, get_notification_dispatcher

security = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_routing_policy(settings: Settings = Depends(get_app_settings)) -> RoutingPolicy:
    return RoutingPolicy.from_settings(settings)


def get_clock() -> SystemClock:
    return system_clock


def get_dispatcher() -> NotificationDispatcher:
    return get_notification_dispatcher()


def get_current_requester(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Requester:
    token = credentials.credentials
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        requester_id = payload.get("sub")
        if requester_id is None:
            raise credentials_exception
    except JWTError as exc:
        raise credentials_exception from exc

    requester = db.get(Requester, requester_id)
    if requester is None:
        raise credentials_exception
    if not requester.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Requester account is inactive")
    return requester


def require_roles(*roles: RequesterRole) -> Callable[[Requester], Requester]:
    allowed_roles: Iterable[RequesterRole] = set(roles)

    def role_checker(current_requester: Requester = Depends(get_current_requester)) -> Requester:
        if current_requester.role not in allowed_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_requester

    return role_checker
