"""
Background job tests - pause notices, reconciliation and auto-hold crons
"""
import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from carecycle import worker
from carecycle.models import Notification

TODAY = date.today()


@pytest.fixture(autouse=True)
def worker_sessions(engine, monkeypatch):
    """Point the worker at the in-memory test database"""
    monkeypatch.setattr(
        worker, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )


def test_create_pause_notice(db, make_schedule):
    schedule_id = make_schedule()

    result = asyncio.run(worker.create_pause_notice_task({}, schedule_id, "nurse-1", "lab closed"))

    notice = db.query(Notification).filter(Notification.id == result["notification_id"]).one()
    assert notice.schedule_id is None
    assert notice.recipient_id == "nurse-1"
    assert notice.state == "ready"
    assert notice.organization_id == "org-1"
    assert "lab closed" in notice.message
    assert notice.details == {"type": "system", "schedule_id": schedule_id}


def test_reconcile_schedules(store, make_schedule):
    paused_id = make_schedule(status="paused", patient_id="patient-1")
    active_id = make_schedule(with_dependents=False, patient_id="patient-2")

    result = asyncio.run(worker.reconcile_schedules_task({}))

    assert result == {"reconciled": 2, "failed": 0}
    assert [e.status for e in store.list_executions(paused_id)] == ["skipped"]
    assert [e.status for e in store.list_executions(active_id)] == ["planned"]


def test_auto_hold_pauses_overdue_schedules(store, make_schedule, auto_hold_policy):
    auto_hold_policy(7)
    overdue_id = make_schedule(patient_id="patient-1", next_due_date=TODAY - timedelta(days=10))
    recent_id = make_schedule(patient_id="patient-2", next_due_date=TODAY - timedelta(days=3))
    other_org_id = make_schedule(
        patient_id="patient-3",
        organization_id="org-2",
        next_due_date=TODAY - timedelta(days=30),
    )

    result = asyncio.run(worker.auto_hold_overdue_schedules_task({}))

    assert result == {"paused": 1, "failed": 0}
    assert store.fetch_schedule(overdue_id).status == "paused"
    assert store.fetch_schedule(recent_id).status == "active"
    assert store.fetch_schedule(other_org_id).status == "active"

    history = store.list_transition_logs(overdue_id)
    assert history[0].reason.startswith("auto_hold")
    assert [e.status for e in store.list_executions(overdue_id)] == ["skipped"]


def test_auto_hold_skips_ended_schedules(make_schedule, auto_hold_policy):
    auto_hold_policy(7)
    make_schedule(
        next_due_date=TODAY - timedelta(days=20),
        end_date=TODAY - timedelta(days=1),
    )

    result = asyncio.run(worker.auto_hold_overdue_schedules_task({}))

    assert result == {"paused": 0, "failed": 1}


def test_auto_hold_disabled(monkeypatch, make_schedule, auto_hold_policy):
    monkeypatch.setattr(worker.config, "AUTO_HOLD_ENABLED", False)
    auto_hold_policy(7)
    make_schedule(next_due_date=TODAY - timedelta(days=10))

    assert asyncio.run(worker.auto_hold_overdue_schedules_task({})) == {"paused": 0, "failed": 0}
