"""
Shared fixtures - in-memory SQLite database, store/manager wiring and schedule factories
"""
import time
from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carecycle.database import Base, enable_sqlite_savepoints, get_db
from carecycle.domain.schedules.lifecycle_service import LifecycleManager
from carecycle.domain.schedules.repository import ScheduleStore
from carecycle.main import app
from carecycle.models import (
    Notification,
    OrganizationPolicy,
    Schedule,
    ScheduleExecution,
    UserProfile,
    generate_id,
)

ORG_ID = "org-1"
NURSE_ID = "nurse-1"


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return ScheduleStore(db)


@pytest.fixture
def manager(store):
    return LifecycleManager(store)


@pytest.fixture
def nurse(db):
    profile = UserProfile(id=NURSE_ID, organization_id=ORG_ID, role="nurse", full_name="Test Nurse")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def make_schedule(db):
    """
    Insert an active schedule directly, with a planned execution for its next due
    date and a pending reminder, the way a running system would hold it.
    """

    def _make(with_dependents=True, **overrides):
        today = date.today()
        fields = {
            "id": generate_id(),
            "organization_id": ORG_ID,
            "patient_id": "patient-1",
            "item_id": "item-1",
            "interval_weeks": 2,
            "start_date": today - timedelta(weeks=4),
            "end_date": None,
            "next_due_date": today + timedelta(weeks=1),
            "status": "active",
            "assigned_user_id": NURSE_ID,
            "created_by": NURSE_ID,
            "priority": 0,
            "requires_notification": True,
            "notification_days_before": 1,
            "created_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        fields.update(overrides)
        schedule_id = fields["id"]
        schedule = Schedule(**fields)
        db.add(schedule)

        if with_dependents:
            db.add(
                ScheduleExecution(
                    id=generate_id(),
                    organization_id=ORG_ID,
                    schedule_id=schedule_id,
                    planned_date=fields["next_due_date"],
                    status="planned",
                )
            )
            db.add(
                Notification(
                    id=generate_id(),
                    organization_id=ORG_ID,
                    schedule_id=schedule_id,
                    recipient_id=NURSE_ID,
                    notify_date=fields["next_due_date"] - timedelta(days=1),
                    state="pending",
                    title="Upcoming scheduled task",
                )
            )

        db.commit()
        return schedule_id

    return _make


@pytest.fixture
def auto_hold_policy(db):
    def _policy(days, organization_id=ORG_ID):
        db.add(OrganizationPolicy(organization_id=organization_id, auto_hold_overdue_days=days))
        db.commit()

    return _policy


@pytest.fixture
def client(engine):
    """Test client bound to the in-memory database"""
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seoul_clock(monkeypatch):
    """Run with the process clock set to UTC+9"""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")
    monkeypatch.setenv("TZ", "Asia/Seoul")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
