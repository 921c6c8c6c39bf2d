import logging
import time

import pytest
from fastapi.testclient import TestClient

from mailflow.main import create_app

USER = {"X-User-Id": "user-42"}


@pytest.fixture
def client(config, mailer):
    with TestClient(create_app(config, mailer=mailer)) as client:
        yield client


def _sequence(*recipients):
    return [
        {"id": "source", "type": "leadSource", "data": {}},
        *[
            {"id": f"n{i}", "type": "coldEmail",
             "data": {"recipient": r, "subject": f"Step {i}", "body": "<p>Hi {{ email }}</p>"}}
            for i, r in enumerate(recipients)
        ],
    ]


def test_health_reports_store_and_scheduler(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.json() == {
        "status": "Server is running", "databaseConnected": True, "schedulerAvailable": True,
    }


def test_scheduler_status(client):
    body = client.get("/api/scheduler/status").json()
    assert body["initialized"] is True
    assert body["handlers"] == ["send email"]


def test_scheduling_requires_identity(client):
    res = client.post("/api/schedule-email", json={"to": "lead@example.com"})
    assert res.status_code == 401


def test_schedule_email_then_deliver(client, smtp):
    res = client.post(
        "/api/schedule-email",
        json={"to": "lead@example.com", "subject": "Hello {{ email }}", "body": "Hi", "delay": 0},
        headers=USER,
    )
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Email scheduled successfully"
    job_id = body["jobId"]

    assert client.post("/api/run-scheduler").status_code == 200

    # the poll loop may have picked the job up first
    job = None
    for _ in range(100):
        job = client.get(f"/api/jobs/{job_id}").json()
        if job["completed_at"]:
            break
        time.sleep(0.05)
    assert job["completed_at"]
    assert job["data"]["userId"] == "user-42"
    assert len(smtp.sent) == 1
    assert smtp.sent[0]["Subject"] == "Hello lead@example.com"


def test_schedule_email_rejects_bad_unit(client):
    res = client.post(
        "/api/schedule-email", json={"to": "a@example.com", "delay": 1, "unit": "weeks"}, headers=USER
    )
    assert res.status_code == 422


def test_schedule_sequence_deferred(client):
    res = client.post("/api/schedule-sequence", headers=USER, json={
        "sequence": _sequence("a@example.com", "b@example.com"),
        "schedulingOptions": {
            "startDate": "2030-01-01", "fromTime": "09:00", "toTime": "11:00", "days": ["monday"],
        },
    })
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Sequence scheduled successfully"
    sent = body["scheduledEmails"]
    assert [s["email"] for s in sent] == ["a@example.com", "b@example.com"]
    assert sent[0]["scheduledFor"].startswith("2030-01-07T")
    assert sent[1]["scheduledFor"].startswith("2030-01-14T")
    assert body["schedulingOptions"]["startDate"].startswith("2030-01-01")
    assert body["schedulingOptions"]["days"] == ["monday"]

    jobs = client.get("/api/jobs").json()
    assert len(jobs) == 2


def test_schedule_sequence_now_reports_skips(client):
    res = client.post("/api/schedule-sequence", headers=USER, json={
        "sequence": _sequence("a@example.com", ""), "sendNow": True,
    })
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Sequence sent successfully"
    assert len(body["scheduledEmails"]) == 1
    assert body["skipped"] == [{"itemId": "n1", "email": None, "reason": "missing_recipient"}]


def test_schedule_sequence_now_without_recipients(client):
    res = client.post("/api/schedule-sequence", headers=USER, json={
        "sequence": _sequence("", None), "sendNow": True,
    })
    assert res.status_code == 400
    assert res.json()["message"] == "Failed to send emails"
    assert "recipient" in res.json()["error"]


def test_schedule_sequence_rejects_inverted_window(client):
    res = client.post("/api/schedule-sequence", headers=USER, json={
        "sequence": _sequence("a@example.com"),
        "schedulingOptions": {"fromTime": "18:00", "toTime": "09:00"},
    })
    assert res.status_code == 422


def test_job_introspection(client):
    created = client.post(
        "/api/schedule-email",
        json={"to": "a@example.com", "delay": 2, "unit": "days"},
        headers=USER,
    ).json()
    job_id = created["jobId"]

    jobs = client.get("/api/jobs").json()
    assert [str(j["id"]) for j in jobs] == [job_id]
    assert jobs[0]["name"] == "send email"
    assert jobs[0]["data"]["subject"] == "No Subject"

    stats = client.get("/api/jobs/stats").json()
    assert stats["total"] == 1 and stats["scheduled"] == 1

    assert client.delete(f"/api/jobs/{job_id}").status_code == 200
    assert client.get(f"/api/jobs/{job_id}").status_code == 404
    assert client.delete(f"/api/jobs/{job_id}").status_code == 404


def test_test_email_endpoint(client, smtp):
    res = client.post("/api/test-email", json={"to": "me@example.com"})
    assert res.status_code == 200
    assert res.json()["success"] is True
    assert smtp.sent[0]["To"] == "me@example.com"

    assert client.post("/api/test-email", json={"to": "not-an-address"}).status_code == 400


def test_test_email_reports_delivery_failure(client, smtp):
    smtp.fail_on.add("send")
    res = client.post("/api/test-email", json={"to": "me@example.com"})
    assert res.status_code == 500
    assert "Failed to send test email" in res.json()["detail"]


def test_diagnose_email(client):
    diagnostics = client.get("/api/diagnose-email").json()["diagnostics"]
    assert diagnostics["email"]["configured"] is True
    assert diagnostics["email"]["verifyResult"] == {"success": True}
    assert diagnostics["database"]["connected"] is True
    assert diagnostics["scheduler"]["initialized"] is True


def test_dev_routes_are_locked_outside_dev_mode(client):
    assert client.post("/dev/reset-jobs").status_code == 403
    assert client.post("/dev/generate-jobs").status_code == 403


def test_dev_routes_in_dev_mode(config, mailer):
    config.DEV_MODE = True
    with TestClient(create_app(config, mailer=mailer)) as client:
        assert client.post("/dev/generate-jobs", params={"n": 3, "spread_minutes": 60}).json() == {"added": 3}
        assert len(client.get("/api/jobs").json()) == 3

        assert client.post("/dev/sweep").json()["reclaimed"] == 0
        assert client.post("/dev/reset-jobs").json()["deleted"] == 3
        assert client.get("/api/jobs").json() == []


def test_startup_verifies_the_mail_transport(config, mailer, smtp, caplog):
    caplog.set_level(logging.INFO)
    with TestClient(create_app(config, mailer=mailer)):
        assert "login" in smtp.calls and "noop" in smtp.calls
        assert smtp.sent == []
    assert "Server is ready to send emails" in caplog.text


def test_failed_transport_check_does_not_block_startup(config, mailer, smtp, caplog):
    caplog.set_level(logging.INFO)
    smtp.fail_on.add("login")
    with TestClient(create_app(config, mailer=mailer)) as client:
        assert client.get("/api/health").status_code == 200
    assert "Email transporter verification failed" in caplog.text
    assert "Server is ready to send emails" not in caplog.text
