from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import Connection, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from leaveflow.db.base import Base
from leaveflow.db.session import engine
import leaveflow.models  # noqa: F401

logger = logging.getLogger(__name__)

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def schema_gaps(connection: Connection) -> tuple[list[str], dict[str, list[str]]]:
    """Mapped tables and columns the connected database does not have yet."""
    inspector = inspect(connection)
    present = set(inspector.get_table_names())
    missing_tables = sorted(name for name in Base.metadata.tables if name not in present)
    missing_columns: dict[str, list[str]] = {}
    for name, table in Base.metadata.tables.items():
        if name not in present:
            continue
        existing = {item["name"] for item in inspector.get_columns(name)}
        gaps = sorted(column.name for column in table.columns if column.name not in existing)
        if gaps:
            missing_columns[name] = gaps
    return missing_tables, missing_columns


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/live")
def health_live() -> dict:
    return {"status": "ok", "timestamp": _now()}


@router.get("/health/ready")
def health_ready() -> JSONResponse:
    database: dict = {"reachable": False, "missing_tables": [], "missing_columns": {}, "error": None}
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            database["reachable"] = True
            database["missing_tables"], database["missing_columns"] = schema_gaps(connection)
    except SQLAlchemyError as exc:
        logger.warning("Readiness check could not reach the database: %s", exc)
        database["error"] = str(exc)

    ready = database["reachable"] and not database["missing_tables"] and not database["missing_columns"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "degraded", "timestamp": _now(), "database": database},
    )
