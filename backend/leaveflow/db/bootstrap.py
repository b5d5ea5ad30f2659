from __future__ import annotations

import logging

from sqlalchemy import inspect

import leaveflow.models  # noqa: F401
from leaveflow.db.base import Base
from leaveflow.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_TABLES: set[str] = {
    "requesters",
    "leave_requests",
    "leave_reviews",
    "balance_accounts",
    "schedule_entries",
    "substitute_assignments",
    "notifications",
    "activity_logs",
}


def ensure_schema() -> None:
    with engine.begin() as connection:
        existing = set(inspect(connection).get_table_names())
        missing = sorted(REQUIRED_TABLES - existing)
        if not missing:
            return
        logger.info("Creating missing tables: %s", ", ".join(missing))
        Base.metadata.create_all(bind=connection)
