"""
Test suite for the Mission Engine API.
Covers missions, task operations, organization quotas/config, engagement webhooks and the tick trigger.
"""
from datetime import timedelta

import pytest
from starlette.testclient import TestClient

from mission_engine import config
from mission_engine.api.app import app
from mission_engine.db import models
from mission_engine.db.connection import to_iso, utcnow


@pytest.fixture
def client(test_db):
    """Test client bound to the per-test database."""
    return TestClient(app)


@pytest.fixture
def mission(client):
    resp = client.post("/api/missions", json={
        "organization_id": "org_1",
        "user_id": "user_1",
        "title": "Chile SaaS",
        "params": {"job_title": "Head of Sales", "location": "Chile"},
    })
    assert resp.status_code == 200
    return resp.json()


# =============================================================================
# HEALTH
# =============================================================================

class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["tables"] >= 9
        assert data["pending_tasks"] == 0


# =============================================================================
# MISSIONS
# =============================================================================

class TestMissions:
    def test_create_and_get(self, client, mission):
        assert mission["status"] == "active"
        assert mission["params"]["location"] == "Chile"
        assert "daily_search_limit" not in mission

        resp = client.get(f"/api/missions/{mission['id']}")
        assert resp.status_code == 200
        assert resp.json()["funnel"] == {"leads": {}, "evaluations": {}}

    def test_get_missing(self, client):
        assert client.get("/api/missions/mis_nope").status_code == 404

    def test_list_by_org(self, client, mission):
        resp = client.get("/api/missions", params={"organization_id": "org_1"})
        assert [m["id"] for m in resp.json()] == [mission["id"]]
        assert client.get("/api/missions", params={"organization_id": "org_2"}).json() == []

    def test_trigger_search_uses_mission_params(self, client, mission):
        resp = client.post(f"/api/missions/{mission['id']}/trigger", json={})
        assert resp.status_code == 200
        task = resp.json()
        assert task["type"] == "SEARCH"
        assert task["status"] == "pending"
        assert task["payload"]["job_title"] == "Head of Sales"
        assert task["payload"]["mission_title"] == "Chile SaaS"

        logs = client.get(f"/api/missions/{mission['id']}/logs").json()
        assert logs[0]["message"] == "Task SEARCH triggered manually"

    def test_trigger_report_defaults(self, client, mission):
        resp = client.post(f"/api/missions/{mission['id']}/trigger", json={"type": "GENERATE_REPORT"})
        assert resp.status_code == 200
        assert resp.json()["payload"]["report_type"] == "mission"

    def test_trigger_rejects_unknown_and_mid_pipeline_types(self, client, mission):
        url = f"/api/missions/{mission['id']}/trigger"
        assert client.post(url, json={"type": "DANCE"}).status_code == 422
        assert client.post(url, json={"type": "CONTACT"}).status_code == 422

    def test_trigger_rejects_bad_payload(self, client, mission):
        resp = client.post(f"/api/missions/{mission['id']}/trigger",
                           json={"type": "GENERATE_REPORT", "payload": {"report_type": "weekly"}})
        assert resp.status_code == 422

    def test_pause_and_resume(self, client, mission):
        url = f"/api/missions/{mission['id']}"
        assert client.post(f"{url}/pause").json()["status"] == "paused"
        assert client.post(f"{url}/resume").json()["status"] == "active"

    def test_completed_mission_cannot_resume(self, client, mission):
        models.update_mission_status(mission["id"], "completed")
        assert client.post(f"/api/missions/{mission['id']}/resume").status_code == 409


# =============================================================================
# TASKS
# =============================================================================

class TestTasks:
    def _trigger(self, client, mission):
        return client.post(f"/api/missions/{mission['id']}/trigger", json={}).json()

    def test_list_and_get(self, client, mission):
        task = self._trigger(client, mission)
        listed = client.get("/api/tasks", params={"mission_id": mission["id"]}).json()
        assert [t["id"] for t in listed] == [task["id"]]
        assert client.get(f"/api/tasks/{task['id']}").json()["type"] == "SEARCH"
        assert client.get("/api/tasks/tsk_nope").status_code == 404

    def test_cancel(self, client, mission):
        task = self._trigger(client, mission)
        resp = client.post(f"/api/tasks/{task['id']}/cancel")
        assert resp.status_code == 200
        assert resp.json()["status"] == "failed"
        assert resp.json()["error_message"] == "Cancelled by operator"

    def test_cancel_completed_conflicts(self, client, mission):
        task = self._trigger(client, mission)
        models.claim_task(task["id"], "w1")
        models.complete_task(task["id"], {"ok": True})
        assert client.post(f"/api/tasks/{task['id']}/cancel").status_code == 409
        assert client.post("/api/tasks/tsk_nope/cancel").status_code == 404

    def test_retry_failed_task(self, client, mission):
        task = self._trigger(client, mission)
        models.claim_task(task["id"], "w1")
        models.fail_task(task["id"], "boom")

        resp = client.post(f"/api/tasks/{task['id']}/retry")
        assert resp.status_code == 200
        assert resp.json()["status"] == "pending"
        assert resp.json()["retry_count"] == 1
        assert resp.json()["error_message"] is None

    def test_retry_pending_conflicts(self, client, mission):
        task = self._trigger(client, mission)
        assert client.post(f"/api/tasks/{task['id']}/retry").status_code == 409

    def test_rescue_stuck(self, client, mission):
        task = self._trigger(client, mission)
        models.claim_task(task["id"], "w1", now=to_iso(utcnow() - timedelta(minutes=30)))

        resp = client.post("/api/tasks/rescue-stuck", params={"olderThanMinutes": 10})
        assert resp.json()["rescued"] == 1
        assert resp.json()["task_ids"] == [task["id"]]
        assert models.get_task(task["id"])["status"] == "pending"

    def test_rescue_stuck_clamps_window(self, client):
        resp = client.post("/api/tasks/rescue-stuck", params={"olderThanMinutes": 9999, "limit": 0})
        assert resp.json()["older_than_minutes"] == 240
        assert resp.json()["rescued"] == 0


# =============================================================================
# ORGANIZATIONS
# =============================================================================

class TestOrganizations:
    def test_quotas_default_limits(self, client):
        data = client.get("/api/organizations/org_1/quotas").json()
        assert data["usage"] == {"search_runs": 0, "leads_searched": 0, "leads_enriched": 0,
                                 "leads_investigated": 0, "leads_contacted": 0}
        assert data["limits"]["search_runs"] == {"used": 0, "limit": 3, "remaining": 3}

    def test_quotas_follow_org_and_mission(self, client, mission):
        client.put("/api/organizations/org_1/config", json={"daily_search_limit": 9})
        data = client.get("/api/organizations/org_1/quotas",
                          params={"mission_id": mission["id"]}).json()
        assert data["limits"]["search_runs"]["limit"] == 5
        assert data["limits"]["leads_contacted"]["limit"] == 3

    def test_config_roundtrip(self, client):
        resp = client.put("/api/organizations/org_1/config",
                          json={"notification_email": "ops@acme.test", "sender_name": "Bruno"})
        assert resp.status_code == 200
        data = client.get("/api/organizations/org_1/config").json()
        assert data["notification_email"] == "ops@acme.test"
        assert data["sender_name"] == "Bruno"

    def test_excluded_domains(self, client):
        client.post("/api/organizations/org_1/excluded-domains", json={"domain": "Rival.test"})
        resp = client.post("/api/organizations/org_1/excluded-domains", json={"domain": "@other.test"})
        assert resp.json()["domains"] == ["other.test", "rival.test"]
        assert client.get("/api/organizations/org_1/excluded-domains").json() == ["other.test", "rival.test"]

    def test_task_summary(self, client, mission):
        client.post(f"/api/missions/{mission['id']}/trigger", json={})
        summary = client.get("/api/organizations/org_1/tasks/summary").json()
        assert summary["pending"] == 1
        assert summary["failed"] == 0


# =============================================================================
# ENGAGEMENT
# =============================================================================

class TestEngagement:
    @pytest.fixture
    def lead(self, mission):
        lead = models.create_lead({"organization_id": "org_1", "mission_id": mission["id"],
                                   "name": "Ana Rojas", "email": "ana@acme.test",
                                   "status": "contacted"})
        models.create_contacted_lead({"organization_id": "org_1", "mission_id": mission["id"],
                                      "lead_id": lead["id"], "name": "Ana Rojas",
                                      "email": "ana@acme.test"})
        return lead

    def test_interactions_score(self, client, lead):
        client.post(f"/api/leads/{lead['id']}/interactions", json={"type": "open"})
        resp = client.post(f"/api/leads/{lead['id']}/interactions",
                           json={"type": "reply", "content": "Sounds good"})
        assert resp.status_code == 200
        assert resp.json()["engagement_score"] == 4

        detail = client.get(f"/api/leads/{lead['id']}").json()
        assert [r["type"] for r in detail["responses"]] == ["open", "reply"]

    def test_unknown_interaction_type(self, client, lead):
        resp = client.post(f"/api/leads/{lead['id']}/interactions", json={"type": "forward"})
        assert resp.status_code == 422

    def test_missing_lead(self, client):
        resp = client.post("/api/leads/led_nope/interactions", json={"type": "open"})
        assert resp.status_code == 404


# =============================================================================
# TICK
# =============================================================================

class TestTick:
    def test_tick_requires_secret_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(config, "TICK_SECRET", "s3cret")
        assert client.post("/api/tick").status_code == 401
        assert client.post("/api/tick", headers={"X-Cron-Secret": "wrong"}).status_code == 401

        resp = client.post("/api/tick", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200
        assert resp.json()["claimed"] == 0

    def test_tick_refused_without_configured_secret(self, client, monkeypatch):
        monkeypatch.setattr(config, "TICK_SECRET", "")
        monkeypatch.setattr(config, "TICK_ALLOW_UNAUTHENTICATED", False)
        assert client.post("/api/tick").status_code == 401
        assert client.post("/api/tick", headers={"Authorization": "Bearer "}).status_code == 401

    def test_tick_open_with_dev_flag(self, client, monkeypatch):
        monkeypatch.setattr(config, "TICK_SECRET", "")
        monkeypatch.setattr(config, "TICK_ALLOW_UNAUTHENTICATED", True)
        resp = client.post("/api/tick")
        assert resp.status_code == 200
        assert set(resp.json()) >= {"rescued", "scheduled", "claimed", "completed", "failed"}
