"""
API tests for the ops router.

The app's lifespan is not entered (no context manager), so no database is
created on disk; get_db is overridden with the in-memory test session.
"""
import pytest
from fastapi.testclient import TestClient

from app import config
from app.database import get_db
from app.main import app

HEADERS = {"X-Internal-Key": "test-internal-key"}

ACTION = {
    "controller_key": "justdial",
    "redacted_identity": {"name": "A•••", "email": "a•••@••••.com", "city": "Pune"},
    "evidence_urls": ["https://www.justdial.com/Pune/listing-1"],
    "draft": {"subject": "Remove my listing", "body": "Please remove my listing."},
    "initial_status": "prepared",
}


@pytest.fixture
def client(db, settings, monkeypatch):
    monkeypatch.setattr(config, "_settings", settings)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAccess:

    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_wrong_internal_key(self, client):
        response = client.post("/ops/dispatch/policy", json={"controller_id": "justdial"},
                               headers={"X-Internal-Key": "nope"})
        assert response.status_code == 403


class TestPolicyRoutes:

    def test_preview_policy(self, client):
        response = client.post("/ops/dispatch/policy",
                               json={"controller_id": "truecaller", "region": "MH"}, headers=HEADERS)
        body = response.json()

        assert response.status_code == 200
        assert body["preferred_channel"] == "webform"
        assert body["can_auto_submit"] is False

    def test_override_upsert(self, client):
        response = client.post("/ops/controllers/overrides",
                               json={"controller_key": "justdial", "killed": True, "daily_cap": 3},
                               headers=HEADERS)
        policy = response.json()["policy"]

        assert policy["killed"] is True
        assert policy["daily_cap"] == 3

    def test_override_rejects_unknown_channel(self, client):
        response = client.post("/ops/controllers/overrides",
                               json={"controller_key": "justdial", "preferred_channel": "fax"},
                               headers=HEADERS)
        assert response.status_code == 400


class TestActionRoutes:

    def test_create_is_idempotent_and_verifiable(self, client):
        first = client.post("/ops/actions", json=ACTION, headers=HEADERS).json()
        second = client.post("/ops/actions", json=ACTION, headers=HEADERS).json()

        assert first["status"] == "prepared"
        assert first["idempotent"] is False
        assert second["idempotent"] is True
        assert second["id"] == first["id"]

        proof = first["proof"]
        valid = client.post("/ops/ledger/verify",
                            json={"hash": proof["hash"], "signature": proof["signature"]},
                            headers=HEADERS).json()
        tampered = client.post("/ops/ledger/verify",
                               json={"hash": proof["hash"], "signature": "f" * 64},
                               headers=HEADERS).json()
        assert valid == {"valid": True}
        assert tampered == {"valid": False}

    def test_create_without_subject(self, client):
        payload = {**ACTION, "draft": {"subject": "  "}}
        response = client.post("/ops/actions", json=payload, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_input"

    def test_send_unknown_action(self, client):
        response = client.post("/ops/dispatch/send", json={"action_id": "missing"}, headers=HEADERS)
        assert response.status_code == 404

    def test_auto_from_scan_without_dispatch(self, client):
        hits = [{"broker": "Justdial", "confidence": 0.80, "url": "https://justdial.com/x"}]
        response = client.post("/ops/pipeline/auto-from-scan", json={"hits": hits}, headers=HEADERS)
        body = response.json()

        assert body["created"] == []
        assert body["rejected"][0]["reason"] == "below-min:0.80<0.84"


class TestWebformRoutes:

    def test_retry_unknown_job(self, client):
        response = client.post("/ops/webform/job/missing/retry", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "job_not_found"

    def test_list_jobs_rejects_unknown_status(self, client):
        response = client.get("/ops/webform/jobs?status=paused", headers=HEADERS)
        assert response.status_code == 400

    def test_list_and_cancel(self, client, db, settings):
        from app.services.automation import WebformQueue

        job = WebformQueue(db, settings).enqueue("truecaller", {"name": "A•••"})

        listed = client.get("/ops/webform/jobs?status=queued", headers=HEADERS).json()
        assert listed["count"] == 1

        cancelled = client.post(f"/ops/webform/job/{job.id}/cancel",
                                json={"reason": "duplicate"}, headers=HEADERS).json()
        assert cancelled["job"]["status"] == "failed"
        assert cancelled["job"]["last_error"] == "cancelled: duplicate"

    def test_cancel_running_job(self, client, db, settings):
        from app.services.automation import WebformQueue

        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})
        queue.claim(job.id)

        cancelled = client.post(f"/ops/webform/job/{job.id}/cancel",
                                json={"reason": "subject withdrew"}, headers=HEADERS).json()
        assert cancelled["job"]["status"] == "failed"

    def test_requeue_stale(self, client, db, settings):
        from datetime import timedelta

        from app.models.db_models import utcnow
        from app.services.automation import WebformQueue

        queue = WebformQueue(db, settings)
        stuck = queue.enqueue("truecaller", {"name": "A•••"})
        fresh = queue.enqueue("truecaller", {"name": "B•••"})
        queue.claim(stuck.id, now=utcnow() - timedelta(hours=1))
        queue.claim(fresh.id)

        body = client.post("/ops/webform/requeue-stale", headers=HEADERS).json()

        assert body == {"ok": True, "requeued": 1}
        db.refresh(stuck)
        db.refresh(fresh)
        assert stuck.status.value == "queued"
        assert fresh.status.value == "running"
