from __future__ import annotations

from collections.abc import Iterable
from datetime import date
import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leaveflow.core.exceptions import ScheduleConflict
from leaveflow.core.weekdays import WEEKDAY_NAMES
from leaveflow.models.schedule_entry import ScheduleEntry

logger = logging.getLogger(__name__)


def weekday_name(value: date) -> str:
    return WEEKDAY_NAMES[value.weekday()]


def list_entries(
    db: Session,
    *,
    instructor_ids: Iterable[str] | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[ScheduleEntry]:
    """Recurring slots plus dated bookings, optionally narrowed to a date window."""
    query = select(ScheduleEntry)
    if instructor_ids is not None:
        query = query.where(ScheduleEntry.instructor_id.in_(list(instructor_ids)))
    if from_date is not None and to_date is not None:
        query = query.where(
            or_(
                ScheduleEntry.on_date.is_(None),
                ScheduleEntry.on_date.between(from_date, to_date),
            )
        )
    query = query.order_by(ScheduleEntry.instructor_id, ScheduleEntry.on_date, ScheduleEntry.weekday, ScheduleEntry.period)
    return list(db.execute(query).scalars())


def find_conflicts(db: Session, entries: list[ScheduleEntry]) -> list[dict]:
    if not entries:
        return []
    instructor_ids = {item.instructor_id for item in entries}
    dates = [item.on_date for item in entries if item.on_date is not None]
    existing = list_entries(
        db,
        instructor_ids=instructor_ids,
        from_date=min(dates) if dates else None,
        to_date=max(dates) if dates else None,
    )
    recurring = {(item.instructor_id, item.weekday, item.period): item for item in existing if item.on_date is None}
    dated = {(item.instructor_id, item.on_date, item.period): item for item in existing if item.on_date is not None}

    conflicts: list[dict] = []
    seen: set[tuple] = set()
    for entry in entries:
        key = (entry.instructor_id, entry.on_date or entry.weekday, entry.period)
        if key in seen:
            conflicts.append(
                {"instructor_id": entry.instructor_id, "day": str(key[1]), "period": entry.period, "existing_entry_id": None}
            )
            continue
        seen.add(key)
        clash = dated.get((entry.instructor_id, entry.on_date, entry.period)) if entry.on_date else None
        if clash is None:
            clash = recurring.get((entry.instructor_id, entry.weekday, entry.period))
        if clash is not None:
            conflicts.append(
                {
                    "instructor_id": entry.instructor_id,
                    "day": entry.on_date.isoformat() if entry.on_date else entry.weekday,
                    "period": entry.period,
                    "existing_entry_id": clash.id,
                }
            )
    return conflicts


def append_entries(db: Session, entries: list[ScheduleEntry], *, records: Iterable[object] = ()) -> None:
    """Check-then-insert ``entries`` and commit them, together with ``records``, as one unit.

    The pre-check catches clashes with recurring slots; the unique constraint on
    dated slots catches a concurrent session that booked the same period after
    our check. Either way nothing is written and ``ScheduleConflict`` is raised.
    """
    records = list(records)
    if not entries and not records:
        return
    instructor_id = entries[0].instructor_id if entries else ""
    conflicts = find_conflicts(db, entries)
    if conflicts:
        raise ScheduleConflict(instructor_id, conflicts)

    db.add_all(entries)
    db.add_all(records)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info("Concurrent booking detected for instructor %s; append rolled back", instructor_id)
        raise ScheduleConflict(instructor_id, [{"reason": "concurrent_booking"}]) from exc
