"""
API route tests - verifies schedule endpoints and error mapping
"""
from datetime import date, timedelta

import pytest

from carecycle.domain.schedules import router as schedules_router

TODAY = date.today()
HEADERS = {"X-User-ID": "nurse-1"}


@pytest.fixture
def queued(monkeypatch):
    """Capture jobs handed to the background queue instead of contacting Redis"""
    captured = []

    async def fake_enqueue(jobs):
        captured.extend(jobs)
        return [f"job-{i}" for i, _ in enumerate(jobs)]

    monkeypatch.setattr(schedules_router, "enqueue_jobs", fake_enqueue)
    return captured


def create_payload(**overrides):
    payload = {
        "patientId": "patient-1",
        "itemId": "item-1",
        "intervalWeeks": 2,
        "startDate": (TODAY + timedelta(weeks=1)).isoformat(),
        "requiresNotification": True,
        "notificationDaysBefore": 2,
    }
    payload.update(overrides)
    return payload


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "running" in response.json()["message"]


def test_create_and_get_schedule(client, nurse):
    response = client.post("/schedules", json=create_payload(), headers=HEADERS)
    assert response.status_code == 201
    created = response.json()
    assert created["status"] == "active"
    assert created["nextDueDate"] == (TODAY + timedelta(weeks=1)).isoformat()
    assert created["remainingExecutions"] is None

    response = client.get(f"/schedules/{created['id']}")
    assert response.status_code == 200
    assert response.json()["patientId"] == "patient-1"

    executions = client.get(f"/schedules/{created['id']}/executions").json()
    assert [e["status"] for e in executions] == ["planned"]

    notifications = client.get(f"/schedules/{created['id']}/notifications").json()
    assert [n["notifyDate"] for n in notifications] == [
        (TODAY + timedelta(weeks=1) - timedelta(days=2)).isoformat()
    ]


def test_create_with_end_date_reports_remaining(client):
    payload = create_payload(
        startDate=TODAY.isoformat(), endDate=(TODAY + timedelta(weeks=6)).isoformat()
    )
    response = client.post("/schedules", json=payload)
    assert response.status_code == 201
    assert response.json()["remainingExecutions"] == 4


def test_create_rejects_invalid_interval(client):
    response = client.post("/schedules", json=create_payload(intervalWeeks=60))
    assert response.status_code == 422


def test_create_rejects_end_before_start(client):
    payload = create_payload(endDate=TODAY.isoformat())
    response = client.post("/schedules", json=payload)
    assert response.status_code == 422


def test_create_duplicate_active(client):
    assert client.post("/schedules", json=create_payload()).status_code == 201

    response = client.post("/schedules", json=create_payload())
    assert response.status_code == 422
    assert "already" in response.json()["detail"]


def test_get_missing_schedule(client):
    response = client.get("/schedules/missing")
    assert response.status_code == 404


def test_pause_and_resume(client, make_schedule, queued):
    schedule_id = make_schedule()

    response = client.post(
        f"/schedules/{schedule_id}/pause", json={"reason": "surgery"}, headers=HEADERS
    )
    assert response.status_code == 200
    body = response.json()
    assert body["toStatus"] == "paused"
    assert body["executionsUpdated"] == 1
    assert body["notificationsCancelled"] == 1
    assert body["syncErrors"] == []
    assert queued == []

    response = client.post(
        f"/schedules/{schedule_id}/resume",
        json={"strategy": "next_cycle", "handleMissed": "skip"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["nextDueDate"] == (TODAY + timedelta(weeks=2)).isoformat()

    history = client.get(f"/schedules/{schedule_id}/history").json()
    assert [h["toStatus"] for h in history] == ["active", "paused"]
    assert history[1]["reason"] == "surgery"
    assert history[1]["performedBy"] == "nurse-1"


def test_pause_without_body(client, make_schedule, queued):
    schedule_id = make_schedule()

    response = client.post(f"/schedules/{schedule_id}/pause")
    assert response.status_code == 200
    assert response.json()["toStatus"] == "paused"


def test_pause_notifies_assignee(client, make_schedule, queued):
    schedule_id = make_schedule()

    response = client.post(
        f"/schedules/{schedule_id}/pause", json={"reason": "fever", "notifyAssignee": True}
    )
    assert response.status_code == 200
    assert response.json()["queuedJobs"] == ["create_pause_notice_task"]
    assert [job.args for job in queued] == [[schedule_id, "nurse-1", "fever"]]


def test_resume_active_schedule_is_rejected(client, make_schedule):
    schedule_id = make_schedule()

    response = client.post(f"/schedules/{schedule_id}/resume", json={})
    assert response.status_code == 422
    assert response.json()["reasons"]


def test_resume_custom_without_date(client, make_schedule):
    schedule_id = make_schedule(status="paused")

    response = client.post(f"/schedules/{schedule_id}/resume", json={"strategy": "custom"})
    assert response.status_code == 422


def test_resume_rejects_unknown_strategy(client, make_schedule):
    schedule_id = make_schedule(status="paused")

    response = client.post(f"/schedules/{schedule_id}/resume", json={"strategy": "later"})
    assert response.status_code == 422


def test_cancel_and_complete(client, make_schedule):
    first = make_schedule(patient_id="patient-1")
    second = make_schedule(patient_id="patient-2")

    response = client.post(f"/schedules/{first}/cancel", json={"reason": "discharged"})
    assert response.status_code == 200
    assert response.json()["toStatus"] == "cancelled"

    response = client.post(f"/schedules/{second}/complete")
    assert response.status_code == 200
    assert response.json()["toStatus"] == "completed"

    response = client.post(f"/schedules/{second}/pause")
    assert response.status_code == 422


def test_complete_execution(client, make_schedule):
    schedule_id = make_schedule()

    response = client.post(
        f"/schedules/{schedule_id}/executions/complete",
        json={"executedDate": TODAY.isoformat(), "notes": "no reaction"},
    )
    assert response.status_code == 200
    assert response.json()["nextDueDate"] == (TODAY + timedelta(weeks=2)).isoformat()

    completed = client.get(f"/schedules/{schedule_id}/executions", params={"status": "completed"})
    assert [e["executedDate"] for e in completed.json()] == [TODAY.isoformat()]


def test_complete_execution_rejects_future_date(client, make_schedule):
    schedule_id = make_schedule()

    response = client.post(
        f"/schedules/{schedule_id}/executions/complete",
        json={"executedDate": (TODAY + timedelta(days=1)).isoformat()},
    )
    assert response.status_code == 422


def test_resume_suggestion(client, make_schedule):
    schedule_id = make_schedule()

    response = client.get(f"/schedules/{schedule_id}/resume-suggestion")
    assert response.status_code == 200
    assert response.json() == {
        "scheduleId": schedule_id,
        "strategy": "immediate",
        "pauseDurationWeeks": None,
    }


def test_validate_transition_endpoint(client):
    response = client.get("/schedules/transitions/validate", params={"from": "paused", "to": "active"})
    assert response.status_code == 200
    body = response.json()
    assert body["isValid"] is True
    assert body["requiredActions"] == ["recalculate_next_due_date", "sync_related_data"]

    response = client.get(
        "/schedules/transitions/validate", params={"from": "cancelled", "to": "active"}
    )
    assert response.json()["isValid"] is False


def test_reconcile_endpoint(client, make_schedule):
    schedule_id = make_schedule(status="paused")

    response = client.post(f"/schedules/{schedule_id}/reconcile")
    assert response.status_code == 200
    body = response.json()
    assert body["executionsUpdated"] == 1
    assert body["notificationsCancelled"] == 1
