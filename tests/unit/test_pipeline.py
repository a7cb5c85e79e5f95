"""
Unit tests for task topology, payload validation and the task table primitives.
"""

import threading

import pytest
from pydantic import ValidationError

from mission_engine.db import models
from mission_engine.error_handler import InvalidTransitionError
from mission_engine.pipeline import (
    ROOT_TYPES, TRANSITIONS, TaskType, can_chain, chain, create_root_task, parse_payload,
)


# ─── TOPOLOGY ────────────────────────────────────────────────

def test_every_type_has_transitions_entry():
    assert set(TRANSITIONS) == set(TaskType)


def test_allowed_edges():
    assert can_chain("GENERATE_CAMPAIGN", "SEARCH")
    assert can_chain("SEARCH", "ENRICH")
    assert can_chain("ENRICH", "INVESTIGATE")
    assert can_chain("ENRICH", "CONTACT")
    assert can_chain("INVESTIGATE", "CONTACT")
    assert can_chain("EVALUATE", "CONTACT_CAMPAIGN")


def test_forbidden_edges():
    assert not can_chain("CONTACT", "EVALUATE")
    assert not can_chain("SEARCH", "INVESTIGATE")
    assert not can_chain("CONTACT_CAMPAIGN", "SEARCH")


def test_unknown_type_rejected():
    with pytest.raises(InvalidTransitionError):
        can_chain("SEARCH", "TELEPORT")


# ─── PAYLOADS ────────────────────────────────────────────────

def test_parse_payload_drops_unknown_keys():
    payload = parse_payload("SEARCH", {"industry": "SaaS", "colour": "blue"})
    assert payload.industry == "SaaS"
    assert not hasattr(payload, "colour")


def test_contact_campaign_requires_campaign_name():
    with pytest.raises(ValidationError):
        parse_payload("CONTACT_CAMPAIGN", {"leads": []})


def test_enrichment_level_is_restricted():
    with pytest.raises(ValidationError):
        parse_payload("ENRICH", {"enrichment_level": "extreme"})


# ─── CHAINING ────────────────────────────────────────────────

def test_chain_sets_parent_and_validates(sample_mission):
    parent = create_root_task("org_1", sample_mission["id"], TaskType.SEARCH, {"industry": "SaaS"})
    child = chain(parent, TaskType.ENRICH, {"leads": [{"id": "lead_1", "name": "Ana"}]})

    assert child["parent_task_id"] == parent["id"]
    assert child["mission_id"] == sample_mission["id"]
    assert child["status"] == "pending"
    assert child["payload"]["leads"][0]["id"] == "lead_1"


def test_chain_rejects_edge_outside_topology(sample_mission):
    parent = create_root_task("org_1", sample_mission["id"], TaskType.SEARCH, {})
    with pytest.raises(InvalidTransitionError):
        chain(parent, TaskType.CONTACT_CAMPAIGN, {"campaign_name": "x"})
    assert len(models.list_tasks(organization_id="org_1")) == 1


def test_root_types_only(sample_mission):
    assert TaskType.CONTACT not in ROOT_TYPES
    with pytest.raises(InvalidTransitionError):
        create_root_task("org_1", sample_mission["id"], TaskType.CONTACT, {})


def test_idempotency_key_dedupes(sample_mission):
    key = f"daily:{sample_mission['id']}:2026-03-10"
    first = create_root_task("org_1", sample_mission["id"], "SEARCH", {}, idempotency_key=key)
    second = create_root_task("org_1", sample_mission["id"], "SEARCH", {}, idempotency_key=key)
    assert "id" in first
    assert second["duplicate"] is True
    assert len(models.list_tasks(mission_id=sample_mission["id"])) == 1


# ─── CLAIM / LIFECYCLE ───────────────────────────────────────

class TestClaim:

    def test_second_claim_gets_nothing(self, test_db):
        task = create_root_task("org_1", None, "SEARCH", {})
        assert models.claim_task(task["id"], "w1")["status"] == "processing"
        assert models.claim_task(task["id"], "w2") is None
        assert models.get_task(task["id"])["worker_id"] == "w1"

    def test_concurrent_claims_have_one_winner(self, test_db):
        task = create_root_task("org_1", None, "SEARCH", {})
        winners = []

        def claim(worker):
            if models.claim_task(task["id"], worker):
                winners.append(worker)

        threads = [threading.Thread(target=claim, args=(f"w{i}",)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(winners) == 1

    def test_due_tasks_respect_schedule(self, test_db):
        now_task = create_root_task("org_1", None, "SEARCH", {})
        create_root_task("org_1", None, "SEARCH", {}, scheduled_for="2999-01-01T08:00:00")
        due = models.list_due_tasks("2026-03-10T12:00:00", 10)
        assert [t["id"] for t in due] == [now_task["id"]]

    def test_complete_requires_processing(self, test_db):
        task = create_root_task("org_1", None, "SEARCH", {})
        models.complete_task(task["id"], {"ok": True})
        assert models.get_task(task["id"])["status"] == "pending"

    def test_requeue_only_finished_tasks(self, test_db):
        task = create_root_task("org_1", None, "SEARCH", {})
        assert models.requeue_task(task["id"]) is None
        models.claim_task(task["id"], "w1")
        models.fail_task(task["id"], "boom")
        requeued = models.requeue_task(task["id"])
        assert requeued["status"] == "pending"
        assert requeued["retry_count"] == 1
        assert requeued["error_message"] is None

    def test_rescue_stuck(self, test_db):
        task = create_root_task("org_1", None, "SEARCH", {})
        models.claim_task(task["id"], "w1", now="2026-03-10T10:00:00")
        assert models.rescue_stuck_tasks("2026-03-10T10:30:00") == [task["id"]]
        assert models.get_task(task["id"])["status"] == "pending"

    def test_heartbeat_defers_rescue(self, test_db):
        task = create_root_task("org_1", None, "SEARCH", {})
        models.claim_task(task["id"], "w1", now="2026-03-10T10:00:00")
        assert models.touch_task(task["id"], "w1", now="2026-03-10T10:25:00") is True
        assert models.rescue_stuck_tasks("2026-03-10T10:20:00") == []
        assert models.rescue_stuck_tasks("2026-03-10T10:30:00") == [task["id"]]
        assert models.touch_task(task["id"], "w1") is False

    def test_only_the_claiming_worker_finishes(self, test_db):
        task = create_root_task("org_1", None, "SEARCH", {})
        models.claim_task(task["id"], "w1")
        assert models.complete_task(task["id"], {"ok": True}, worker_id="w2") is None
        assert models.get_task(task["id"])["status"] == "processing"
        assert models.fail_task(task["id"], "boom", worker_id="w1")["status"] == "failed"
