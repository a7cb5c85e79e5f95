"""GENERATE_CAMPAIGN: create (or reuse) the mission's email campaign, then search."""

from mission_engine.db import models
from mission_engine.error_handler import ServiceError
from mission_engine.logging_config import get_stage_logger
from mission_engine.payloads import GenerateCampaignPayload, goal_fields
from mission_engine.pipeline import TaskType, chain
from mission_engine.stages.base import StageContext, resolve_user_id

logger = get_stage_logger("generate_campaign")

DEFAULT_MISSION_TITLE = "Smart Campaign"


def campaign_name_for(mission_title: str = None) -> str:
    """Campaign names are derived from the mission title; reuse is by name."""
    return f"Mission: {mission_title or DEFAULT_MISSION_TITLE}"


def fallback_steps(payload: GenerateCampaignPayload) -> list:
    industry = payload.industry or "your industry"
    job_title = payload.job_title or "your team"
    context = f"<br/><br/>{payload.campaign_context}" if payload.campaign_context else ""
    body = (
        "<p>Hi {{lead.name}},<br/><br/>"
        f"I noticed you are leading {job_title} initiatives and thought it was worth reaching out."
        f"{context}<br/><br/>"
        "I'd like to share how teams like yours are improving results.<br/><br/>"
        "Do you have 5 minutes this week?<br/><br/>"
        "Best,<br/>{{sender.name}}</p>"
    )
    follow_up = (
        "<p>Hi {{lead.name}},<br/><br/>"
        "Following up on my previous note in case it got buried. "
        "Happy to send a short summary if that is easier.<br/><br/>"
        "Best,<br/>{{sender.name}}</p>"
    )
    return [
        {"name": "Initial contact", "offset_days": 0,
         "subject": f"An idea for {industry}", "body_html": body},
        {"name": "Follow-up", "offset_days": 3,
         "subject": "Re: a quick idea for {{company}}", "body_html": follow_up},
    ]


def execute(task: dict, payload: GenerateCampaignPayload, ctx: StageContext) -> dict:
    org_id = task["organization_id"]
    user_id = resolve_user_id(task, payload)
    name = payload.campaign_name or campaign_name_for(payload.mission_title)

    campaign = models.get_campaign_by_name(org_id, name)
    created = campaign is None
    ai_generated = False

    if created:
        steps = []
        generator = ctx.collaborators.campaign_generator
        if generator is not None:
            try:
                steps = generator.generate({
                    "jobTitle": payload.job_title,
                    "industry": payload.industry,
                    "missionTitle": payload.mission_title,
                    "campaignContext": payload.campaign_context,
                }, user_id=user_id)
                ai_generated = bool(steps)
            except ServiceError as e:
                logger.warning("Campaign generation failed, using template: %s", e,
                               extra={"task_id": task["id"]})
        if not steps:
            steps = fallback_steps(payload)

        campaign = models.create_campaign({
            "organization_id": org_id,
            "user_id": user_id,
            "name": name,
            "settings": {"source": "mission", "ai_generated": ai_generated,
                         "mission_id": task.get("mission_id")},
        }, steps)
        logger.info("Created campaign %s with %d steps", name, len(steps),
                    extra={"task_id": task["id"]})

    first_step = campaign["steps"][0] if campaign.get("steps") else {}

    next_payload = {**goal_fields(payload), "user_id": user_id, "campaign_name": name}
    search_task = chain(task, TaskType.SEARCH, next_payload)

    return {
        "campaign_generated": created,
        "campaign_name": name,
        "campaign_id": campaign["id"],
        "ai_generated": ai_generated,
        "subject_preview": first_step.get("subject_template", ""),
        "next_task_id": search_task.get("id"),
    }
