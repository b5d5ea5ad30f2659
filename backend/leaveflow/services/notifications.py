from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
import logging
import time
from typing import Protocol

from sqlalchemy.orm import Session

from leaveflow.core.config import get_settings
from leaveflow.models.notification import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaveEvent:
    name: str
    title: str
    message: str
    recipient_ids: tuple[str, ...] = ()
    data: dict = field(default_factory=dict)

    def as_payload(self) -> dict:
        recipients = [item for item in dict.fromkeys(self.recipient_ids) if item]
        return {
            "title": self.title,
            "message": self.message,
            "recipient_ids": recipients,
            **self.data,
        }


class NotificationChannel(Protocol):
    name: str

    def deliver(self, event: str, payload: dict) -> None: ...


class LoggingChannel:
    name = "log"

    def deliver(self, event: str, payload: dict) -> None:
        logger.info(
            "Notification %s -> %s: %s",
            event,
            ", ".join(payload.get("recipient_ids", [])) or "(no recipients)",
            payload.get("message", ""),
        )


class InAppChannel:
    """Stores one ``Notification`` row per recipient using its own session."""

    name = "in_app"

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def deliver(self, event: str, payload: dict) -> None:
        recipients = payload.get("recipient_ids") or []
        if not recipients:
            return
        db = self._session_factory()
        try:
            for user_id in recipients:
                db.add(
                    Notification(
                        user_id=user_id,
                        event=event,
                        title=payload.get("title") or event,
                        message=payload.get("message") or "",
                    )
                )
            db.commit()
        finally:
            db.close()


class NotificationDispatcher:
    """Best-effort fan-out of state-change events.

    ``notify`` only enqueues work on a thread pool and returns immediately.
    Each channel is retried a few times; a channel that keeps failing is logged
    and skipped, and nothing is ever raised back to the caller.
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        *,
        max_workers: int = 4,
        retry_attempts: int = 2,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        self._channels = list(channels)
        self._retry_attempts = max(0, retry_attempts)
        self._retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="leaveflow-notify")

    def notify(self, event: str, payload: dict) -> None:
        try:
            self._executor.submit(self._deliver, event, dict(payload))
        except RuntimeError:
            logger.warning("Notification dispatcher is shut down; dropping %s", event)

    def dispatch(self, events: Iterable[LeaveEvent]) -> None:
        for item in events:
            self.notify(item.name, item.as_payload())

    def _deliver(self, event: str, payload: dict) -> None:
        for channel in self._channels:
            for attempt in range(self._retry_attempts + 1):
                try:
                    channel.deliver(event, payload)
                    break
                except Exception:
                    if attempt >= self._retry_attempts:
                        logger.warning(
                            "Notification channel %s failed for %s after %d attempt(s)",
                            channel.name,
                            event,
                            attempt + 1,
                            exc_info=True,
                        )
                        break
                    time.sleep(self._retry_backoff_seconds * (attempt + 1))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    from leaveflow.db.session import SessionLocal

    settings = get_settings()
    return NotificationDispatcher(
        [InAppChannel(SessionLocal), LoggingChannel()],
        max_workers=settings.notification_workers,
        retry_attempts=settings.notification_retry_attempts,
        retry_backoff_seconds=settings.notification_retry_backoff_seconds,
    )
