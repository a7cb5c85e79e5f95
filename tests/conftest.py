"""
Shared pytest fixtures for the mission engine test suite.
"""

import os
import random

import pytest

from mission_engine.clients import Collaborators
from mission_engine.db.init_db import init_db
from mission_engine.error_handler import ServiceError
from mission_engine.stages.base import StageContext


@pytest.fixture
def test_db(tmp_path):
    """Create a fresh test database with the full schema."""
    db_path = str(tmp_path / "test.db")
    os.environ["MISSION_DB_PATH"] = db_path
    os.environ["MISSION_JOURNAL_MODE"] = "DELETE"

    import mission_engine.db.connection as connection
    previous = connection.DB_PATH
    connection.DB_PATH = db_path

    init_db(db_path)

    yield db_path

    connection.DB_PATH = previous
    os.environ.pop("MISSION_DB_PATH", None)
    os.environ.pop("MISSION_JOURNAL_MODE", None)


# ─── FAKE COLLABORATORS ───────────────────────────────────────

class FakeSearch:
    def __init__(self, people=None, error=None):
        self.people = people or []
        self.error = error
        self.calls = []

    def search(self, filters, user_id=None):
        self.calls.append(filters)
        if self.error:
            raise self.error
        return list(self.people)


class FakeEnrichment:
    """Returns an email for every lead it is given, except ids listed in `drop`."""

    def __init__(self, drop=None, error=None):
        self.drop = set(drop or [])
        self.error = error
        self.calls = []

    def enrich(self, leads, reveal_email=True, reveal_phone=False, user_id=None):
        self.calls.append({"leads": leads, "reveal_phone": reveal_phone})
        if self.error:
            raise self.error
        records = []
        for lead in leads:
            if lead["id"] in self.drop:
                continue
            slug = (lead["fullName"] or "lead").lower().replace(" ", ".")
            record = {"clientRef": lead["clientRef"], "email": f"{slug}@acme.test"}
            if reveal_phone:
                record["phone"] = "+56 9 5555 0000"
            records.append(record)
        return records


class FakeResearch:
    def __init__(self, fail_for=None):
        self.fail_for = set(fail_for or [])
        self.calls = []

    def investigate(self, lead, target_company, caller_profile, user_context, user_id=None):
        self.calls.append(lead["id"])
        if lead["id"] in self.fail_for:
            raise ServiceError("research", "upstream timeout", status_code=504)
        return {
            "summary": f"{target_company['name']} is scaling its sales team.",
            "emailDraft": {"subject": "Idea for {{company}}", "body": "<p>Hi {{firstName}}</p>"},
        }


class FakeEmail:
    """Records sends; `fail` maps a recipient to the provider status to raise."""

    def __init__(self, fail=None):
        self.fail = fail or {}
        self.sent = []

    def send(self, to, subject, body_html, user_id=None, lead_id=None, mission_id=None,
             campaign_id=None, metadata=None):
        if to in self.fail:
            raise ServiceError("email", "rejected", status_code=self.fail[to])
        self.sent.append({"to": to, "subject": subject, "body": body_html,
                          "lead_id": lead_id, "campaign_id": campaign_id, "metadata": metadata})
        return {"provider": "fake", "message_id": f"msg-{len(self.sent)}", "thread_id": None}


class FakeCampaignGenerator:
    def __init__(self, steps=None, error=None):
        self.steps = steps
        self.error = error

    def generate(self, context, user_id=None):
        if self.error:
            raise self.error
        return list(self.steps or [])


@pytest.fixture
def fakes():
    """A Collaborators bundle made of fakes. Tests tweak the parts they need."""
    return Collaborators(
        search=FakeSearch(),
        enrichment=FakeEnrichment(),
        research=FakeResearch(),
        email=FakeEmail(),
        campaign_generator=FakeCampaignGenerator(),
    )


@pytest.fixture
def ctx(fakes):
    return StageContext(collaborators=fakes, rng=random.Random(7))


# ─── SAMPLE DATA ──────────────────────────────────────────────

MISSION_PARAMS = {
    "job_title": "Head of Sales",
    "location": "Chile",
    "industry": "SaaS",
    "company_size": "51-200",
    "enrichment_level": "basic",
}


@pytest.fixture
def sample_mission(test_db):
    """An active mission with audience filters and default limits."""
    import mission_engine.db.models as models
    return models.create_mission({
        "organization_id": "org_1",
        "user_id": "user_1",
        "title": "Chile SaaS",
        "params": dict(MISSION_PARAMS),
    })


@pytest.fixture
def make_task(test_db):
    """Insert a task row of any type, the way a parent stage would."""
    import mission_engine.db.models as models

    def _make(type_, payload=None, mission=None, organization_id="org_1", **extra):
        return models.create_task({
            "organization_id": organization_id,
            "mission_id": mission["id"] if mission else None,
            "type": type_,
            "payload": payload or {},
            **extra,
        })

    return _make


@pytest.fixture
def run_stage(ctx):
    """Execute a task row's stage directly, without claiming it."""
    from mission_engine.pipeline import parse_payload, task_type
    from mission_engine.stages import EXECUTORS

    def _run(task, context=None):
        type_ = task_type(task["type"])
        return EXECUTORS[type_](task, parse_payload(type_, task["payload"]), context or ctx)

    return _run


@pytest.fixture
def make_lead(test_db):
    import mission_engine.db.models as models

    def _make(mission, name, status="saved", **extra):
        return models.create_lead({
            "organization_id": mission["organization_id"],
            "mission_id": mission["id"],
            "name": name,
            "status": status,
            **extra,
        })

    return _make
