"""
Unit tests for GENERATE_CAMPAIGN and GENERATE_REPORT.
"""

import pytest

from mission_engine.db import models
from mission_engine.error_handler import MissingEntityError, ServiceError
from mission_engine.pipeline import create_root_task

AI_STEPS = [
    {"name": "Opener", "offset_days": 0, "subject": "Hello {{company}}", "body_html": "<p>Hi</p>"},
    {"name": "Nudge", "offset_days": 4, "subject": "Still there?", "body_html": "<p>Ping</p>"},
    {"name": "Breakup", "offset_days": 9, "subject": "Closing the loop", "body_html": "<p>Bye</p>"},
]


@pytest.fixture
def campaign_task(sample_mission):
    payload = {**sample_mission["params"], "user_id": "user_1", "mission_title": sample_mission["title"]}
    return create_root_task("org_1", sample_mission["id"], "GENERATE_CAMPAIGN", payload)


# ─── GENERATE_CAMPAIGN ───────────────────────────────────────

class TestGenerateCampaign:

    def test_generated_steps_are_stored(self, campaign_task, run_stage, fakes):
        fakes.campaign_generator.steps = AI_STEPS

        result = run_stage(campaign_task)

        assert result["campaign_generated"] is True
        assert result["ai_generated"] is True
        assert result["campaign_name"] == "Mission: Chile SaaS"
        assert result["subject_preview"] == "Hello {{company}}"
        campaign = models.get_campaign_by_name("org_1", "Mission: Chile SaaS")
        assert [s["name"] for s in campaign["steps"]] == ["Opener", "Nudge", "Breakup"]

        children = models.list_tasks(parent_task_id=campaign_task["id"])
        assert [c["type"] for c in children] == ["SEARCH"]
        assert children[0]["payload"]["campaign_name"] == "Mission: Chile SaaS"
        assert children[0]["payload"]["industry"] == "SaaS"

    def test_generator_failure_falls_back_to_template(self, campaign_task, run_stage, fakes):
        fakes.campaign_generator.error = ServiceError("campaign-generation", "timeout")

        result = run_stage(campaign_task)

        assert result["ai_generated"] is False
        campaign = models.get_campaign_by_name("org_1", "Mission: Chile SaaS")
        assert len(campaign["steps"]) == 2

    def test_existing_campaign_is_reused(self, campaign_task, sample_mission, run_stage, fakes):
        run_stage(campaign_task)
        again = create_root_task("org_1", sample_mission["id"], "GENERATE_CAMPAIGN",
                                 campaign_task["payload"])

        result = run_stage(again)

        assert result["campaign_generated"] is False
        assert len(models.list_tasks(task_type="SEARCH")) == 2


# ─── GENERATE_REPORT ─────────────────────────────────────────

class TestGenerateReport:

    def test_skips_without_notification_email(self, sample_mission, run_stage, fakes):
        task = create_root_task("org_1", sample_mission["id"], "GENERATE_REPORT",
                                {"report_type": "mission", "mission_id": sample_mission["id"]})
        result = run_stage(task)
        assert result["skipped"] is True
        assert result["reason"] == "no_notification_email"
        assert fakes.email.sent == []

    def test_mission_report_is_sent_and_stored(self, sample_mission, make_lead, run_stage, fakes):
        models.upsert_org_config("org_1", {"notification_email": "ops@acme.test"})
        make_lead(sample_mission, "Saved One")
        task = create_root_task("org_1", sample_mission["id"], "GENERATE_REPORT",
                                {"report_type": "mission", "mission_id": sample_mission["id"]})

        result = run_stage(task)

        assert result["sent_to"] == "ops@acme.test"
        assert fakes.email.sent[0]["to"] == "ops@acme.test"
        reports = models.list_reports("org_1")
        assert len(reports) == 1
        assert reports[0]["summary"]["leads"] == {"saved": 1}

    def test_daily_report_without_mission(self, test_db, run_stage, fakes):
        models.upsert_org_config("org_1", {"notification_email": "ops@acme.test"})
        task = create_root_task("org_1", None, "GENERATE_REPORT", {"report_type": "daily"})

        result = run_stage(task)

        assert result["report_type"] == "daily"
        summary = models.list_reports("org_1", "daily")[0]["summary"]
        assert "usage_today" in summary
        assert summary["active_missions"] == 0

    def test_missing_mission_is_fatal(self, test_db, run_stage, fakes):
        models.upsert_org_config("org_1", {"notification_email": "ops@acme.test"})
        task = create_root_task("org_1", None, "GENERATE_REPORT",
                                {"report_type": "lead_exhaustion_alert", "mission_id": "mis_gone"})
        with pytest.raises(MissingEntityError):
            run_stage(task)
        assert fakes.email.sent == []
