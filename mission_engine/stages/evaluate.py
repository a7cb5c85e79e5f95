"""EVALUATE: classify contacted leads by their engagement."""

from mission_engine.db import models
from mission_engine.logging_config import get_stage_logger
from mission_engine.payloads import EvaluatePayload
from mission_engine.pipeline import TaskType, chain
from mission_engine.stages.base import StageContext, optional_mission, resolve_user_id
from mission_engine.stages.campaign import campaign_name_for

logger = get_stage_logger("evaluate")

QUALIFY_THRESHOLD = 1


def classify(replied: bool, engagement_score: int) -> str:
    if replied:
        return "action_required"
    if engagement_score > QUALIFY_THRESHOLD:
        return "qualified"
    return "disqualified"


def execute(task: dict, payload: EvaluatePayload, ctx: StageContext) -> dict:
    mission_id = task.get("mission_id")
    mission = optional_mission(task)
    campaign_name = payload.campaign_name
    if not campaign_name and mission:
        campaign_name = (mission.get("params") or {}).get("campaign_name") \
            or campaign_name_for(mission.get("title"))
    user_id = resolve_user_id(task, payload)

    outcomes = {"action_required": 0, "qualified": 0, "disqualified": 0}
    qualified = []
    for lead in payload.leads:
        if not lead.id:
            continue
        replied = any(r["type"] == "reply" for r in models.list_lead_responses(lead.id))
        contacted = models.get_latest_contacted_lead(lead.id, mission_id)
        score = (contacted or {}).get("engagement_score") or 0

        status = classify(replied, score)
        outcomes[status] += 1
        models.set_evaluation_status(lead.id, mission_id, status)

        if status == "qualified":
            qualified.append(lead)
        logger.info("Lead %s: replied=%s score=%s -> %s", lead.id, replied, score, status,
                    extra={"task_id": task["id"]})

    follow_ups = []
    for lead in qualified:
        follow_up = chain(task, TaskType.CONTACT_CAMPAIGN, {
            "user_id": user_id,
            "campaign_name": campaign_name,
            "leads": [lead.model_dump(mode="json")],
        })
        follow_ups.append(follow_up.get("id"))

    return {
        "evaluated_count": sum(outcomes.values()),
        "qualified_count": outcomes["qualified"],
        "action_required_count": outcomes["action_required"],
        "disqualified_count": outcomes["disqualified"],
        "contact_campaign_tasks": follow_ups,
    }
