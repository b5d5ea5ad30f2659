import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leaveflow.api.deps import get_clock, get_db, get_dispatcher, get_routing_policy
from leaveflow.core.clock import FixedClock
from leaveflow.core.security import create_access_token
from leaveflow.db.base import Base
from leaveflow.main import app
from leaveflow.models import Requester, RequesterRole, ScheduleEntry
from leaveflow.services.approval_router import RoutingPolicy

# Monday 2 March 2026.
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
WORKING_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class RecordingDispatcher:
    """Collects events synchronously instead of fanning them out."""

    def __init__(self):
        self.events = []

    def notify(self, event, payload):
        self.events.append((event, payload))

    def dispatch(self, events):
        for item in events:
            self.notify(item.name, item.as_payload())

    def names(self):
        return [name for name, _ in self.events]

    def payloads(self, name):
        return [payload for event, payload in self.events if event == name]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FixedClock(NOW)


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def policy():
    return RoutingPolicy(
        long_leave_threshold=10,
        section_reviewers={"CSE-A": "reviewer-a"},
        department_heads={"CSE": "head-cse", "ECE": "head-ece"},
        senior_administrator_id="senior-admin",
    )


def make_requester(db, requester_id, role, **fields):
    defaults = {
        "name": requester_id.replace("-", " ").title(),
        "email": f"{requester_id}@college.edu",
        "department": "CSE",
        "section": None,
        "subjects": [],
        "experience_years": 0.0,
        "is_active": True,
    }
    defaults.update(fields)
    requester = Requester(id=requester_id, role=role, **defaults)
    db.add(requester)
    db.commit()
    return requester


def book(db, instructor_id, weekday, period, *, on_date=None, section=None, subject=None):
    entry = ScheduleEntry(
        instructor_id=instructor_id,
        weekday=weekday,
        period=period,
        on_date=on_date,
        section=section,
        subject=subject,
    )
    db.add(entry)
    db.commit()
    return entry


@pytest.fixture()
def staff(db):
    """Reviewers plus one learner and one instructor in CSE."""
    people = {
        "reviewer": make_requester(db, "reviewer-a", RequesterRole.administrator),
        "head": make_requester(db, "head-cse", RequesterRole.administrator),
        "senior": make_requester(db, "senior-admin", RequesterRole.administrator, department="Administration"),
        "learner": make_requester(db, "learner-1", RequesterRole.learner, section="CSE-A"),
        "instructor": make_requester(
            db,
            "instructor-1",
            RequesterRole.instructor,
            section="CSE-A",
            subjects=["Algorithms", "Databases"],
            experience_years=6,
        ),
    }
    return people


def auth_headers(requester_id):
    return {"Authorization": f"Bearer {create_access_token(requester_id)}"}


@pytest.fixture()
def client(session_factory, clock, dispatcher, policy):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_routing_policy] = lambda: policy

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
