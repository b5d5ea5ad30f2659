import threading

import pytest
from sqlalchemy.orm import sessionmaker

from leaveflow.core.exceptions import Conflict, InsufficientBalance, ValidationError
from leaveflow.db.base import Base
from leaveflow.db.session import create_db_engine
from leaveflow.services import balance_ledger


def _open(db, total=10):
    return balance_ledger.open_account(db, requester_id="r-1", year=2026, total_days=total)


def test_reserve_then_commit_moves_days_from_pending_to_used(db):
    _open(db)
    balance_ledger.reserve(db, requester_id="r-1", year=2026, days=4)
    account = balance_ledger.commit(db, requester_id="r-1", year=2026, days=4)
    db.commit()

    assert (account.total_days, account.used_days, account.pending_days) == (10, 4, 0)
    assert account.available_days == 6


def test_release_returns_pending_days(db):
    _open(db)
    balance_ledger.reserve(db, requester_id="r-1", year=2026, days=3)
    account = balance_ledger.release(db, requester_id="r-1", year=2026, days=3)

    assert account.pending_days == 0
    assert account.available_days == 10


def test_reserve_beyond_available_leaves_account_untouched(db):
    _open(db, total=5)
    balance_ledger.reserve(db, requester_id="r-1", year=2026, days=4)

    with pytest.raises(InsufficientBalance) as exc:
        balance_ledger.reserve(db, requester_id="r-1", year=2026, days=2)

    assert exc.value.details == {"requested": 2, "available": 1}
    account = balance_ledger.get_account(db, requester_id="r-1", year=2026)
    assert account.pending_days == 4


def test_commit_or_release_without_matching_reservation_is_a_conflict(db):
    _open(db)
    balance_ledger.reserve(db, requester_id="r-1", year=2026, days=2)

    with pytest.raises(Conflict):
        balance_ledger.commit(db, requester_id="r-1", year=2026, days=3)
    with pytest.raises(Conflict):
        balance_ledger.release(db, requester_id="r-1", year=2026, days=5)


@pytest.mark.parametrize("days", [0, -2])
def test_days_must_be_positive(db, days):
    _open(db)
    with pytest.raises(ValidationError):
        balance_ledger.reserve(db, requester_id="r-1", year=2026, days=days)


def test_open_account_keeps_existing_total(db):
    _open(db, total=12)
    account = _open(db, total=30)
    assert account.total_days == 12


def test_set_allotment_never_drops_below_used_plus_pending(db):
    _open(db)
    balance_ledger.reserve(db, requester_id="r-1", year=2026, days=6)

    with pytest.raises(Conflict):
        balance_ledger.set_allotment(db, requester_id="r-1", year=2026, total_days=5)

    account = balance_ledger.set_allotment(db, requester_id="r-1", year=2026, total_days=6)
    assert account.available_days == 0


def test_set_allotment_opens_missing_account(db):
    account = balance_ledger.set_allotment(db, requester_id="r-2", year=2027, total_days=18)
    assert (account.year, account.total_days, account.used_days) == (2027, 18, 0)


def test_concurrent_reservations_never_overdraw(tmp_path):
    engine = create_db_engine(f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with Session() as db:
        balance_ledger.open_account(db, requester_id="r-1", year=2026, total_days=10)

    outcomes = []
    barrier = threading.Barrier(8)

    def worker():
        with Session() as db:
            barrier.wait()
            try:
                balance_ledger.reserve(db, requester_id="r-1", year=2026, days=3)
                db.commit()
                outcomes.append("reserved")
            except InsufficientBalance:
                db.rollback()
                outcomes.append("insufficient")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    with Session() as db:
        account = balance_ledger.get_account(db, requester_id="r-1", year=2026)

    assert outcomes.count("reserved") == 3
    assert outcomes.count("insufficient") == 5
    assert account.pending_days == 9
    assert account.available_days == 1
    engine.dispose()
