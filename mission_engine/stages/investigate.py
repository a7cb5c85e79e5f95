"""
INVESTIGATE: research each lead, one service call at a time, and schedule a
CONTACT task per lead at that lead's local morning.

A lead whose research call fails is logged and left out; the rest of the
batch carries on. Any other error fails the whole task: no CONTACT task is
chained and the reserved quota goes back.
"""

from mission_engine import quota
from mission_engine.db import models
from mission_engine.db.connection import to_iso
from mission_engine.error_handler import ServiceError, record_lead_events
from mission_engine.logging_config import get_stage_logger
from mission_engine.payloads import InvestigatePayload, LeadRef, goal_fields
from mission_engine.pipeline import TaskType, chain
from mission_engine.send_window import compute_scheduled_send
from mission_engine.stages.base import (
    StageContext, lead_event, lead_ref_from_row, require_mission, resolve_user_id,
)

logger = get_stage_logger("investigate")


def caller_profile(org_config: dict) -> dict:
    profile = org_config.get("company_profile") or {}
    return {
        "name": profile.get("name", ""),
        "website": profile.get("domain") or profile.get("website", ""),
        "sector": profile.get("sector", ""),
        "description": profile.get("description", ""),
        "services": profile.get("services", ""),
        "valueProposition": profile.get("value_proposition", ""),
    }


def target_company(lead: LeadRef) -> dict:
    return {
        "name": lead.company,
        "domain": lead.company_domain,
        "country": lead.location,
        "industry": lead.industry,
    }


def execute(task: dict, payload: InvestigatePayload, ctx: StageContext) -> dict:
    org_id = task["organization_id"]
    mission = require_mission(task)
    limit = quota.limit_for("leads_investigated", mission)

    used = quota.get_daily_usage(org_id)["leads_investigated"]
    if used >= limit:
        return quota.skipped_result("leads_investigated", limit, used=used)

    leads = list(payload.leads)
    if not leads:
        leads = [LeadRef.model_validate(lead_ref_from_row(r))
                 for r in models.list_enriched_uncontacted(mission["id"], limit=limit - used)]
    if not leads:
        return {"skipped": True, "reason": "no_leads", "investigated_count": 0}

    granted = quota.reserve(org_id, "leads_investigated", len(leads), limit)
    if not granted:
        return quota.skipped_result("leads_investigated", limit)

    to_investigate, deferred = leads[:granted], leads[granted:]
    record_lead_events([
        lead_event(task, lead.id, "lead_investigate_skipped", "investigate", "deferred_by_quota",
                   "Research deferred by daily quota", {"remaining_capacity": granted})
        for lead in deferred if lead.id
    ])

    org_config = models.get_org_config(org_id)
    user_id = resolve_user_id(task, payload)
    profile = caller_profile(org_config)
    user_context = {"id": user_id, "name": org_config.get("sender_name") or ""}
    goal = {**goal_fields(payload), "user_id": user_id}

    researched, failed = [], []
    delivered = 0
    try:
        for lead in to_investigate:
            ctx.heartbeat()
            try:
                report = ctx.collaborators.research.investigate(
                    lead.model_dump(exclude={"research"}), target_company(lead), profile, user_context,
                    user_id=user_id,
                )
            except ServiceError as e:
                logger.warning("Research failed for lead %s: %s", lead.id, e, extra={"task_id": task["id"]})
                failed.append({"lead_id": lead.id, "error": str(e)})
                record_lead_events([lead_event(task, lead.id, "lead_investigate_failed", "investigate",
                                               "service_error", "Research failed", {"error": str(e)[:400]})])
                continue

            if lead.id:
                models.update_lead(lead.id, {"research": report, "last_investigated_at": to_iso(ctx.now)})
            researched.append(lead.model_copy(update={"research": report}))

        # CONTACT tasks are chained only after every research call has returned
        scheduled = []
        for lead in researched:
            send_at = compute_scheduled_send(lead.location, now=ctx.now, rng=ctx.rng)
            contact_task = chain(task, TaskType.CONTACT, {
                **goal,
                "leads": [lead.model_dump(mode="json")],
                "source": "investigate",
            }, scheduled_for=send_at)
            scheduled.append({"lead_id": lead.id, "task_id": contact_task.get("id"), "scheduled_for": send_at})
            record_lead_events([lead_event(task, lead.id, "lead_investigated", "investigate", "researched",
                                           "Research completed", {"scheduled_for": send_at})])
        delivered = len(scheduled)
    finally:
        if delivered < granted:
            quota.release(org_id, "leads_investigated", granted - delivered)

    return {
        "investigated_count": len(scheduled),
        "failed_count": len(failed),
        "deferred_count": len(deferred),
        "failures": failed,
        "contact_tasks": scheduled,
    }
