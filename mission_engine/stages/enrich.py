"""
ENRICH: reveal contact data for saved leads.

Basic and deep enrichment share one counter (leads_enriched) against the
mission's daily_enrich_limit. Deep also reveals phones and hands the leads to
INVESTIGATE; basic goes straight to CONTACT with the leads that have an email.
"""

from mission_engine import quota
from mission_engine.db import models
from mission_engine.db.connection import to_iso
from mission_engine.error_handler import record_lead_events
from mission_engine.logging_config import get_stage_logger
from mission_engine.payloads import EnrichPayload, LeadRef, goal_fields
from mission_engine.pipeline import TaskType, chain
from mission_engine.stages.base import (
    StageContext, lead_event, lead_ref_from_row, require_mission, resolve_user_id,
)

logger = get_stage_logger("enrich")

QUEUE_LIMIT = 50


def _format_for_service(lead) -> dict:
    return {
        "id": lead.id,
        "clientRef": lead.id,
        "fullName": lead.name or "",
        "title": lead.title or "",
        "companyName": lead.company or "",
        "companyDomain": lead.company_domain,
        "linkedinUrl": lead.linkedin_url,
        "email": lead.email,
        "sourceId": lead.source_id,
    }


def _enriched_fields(record: dict, reveal_phone: bool) -> dict:
    fields = {
        "email": record.get("email"),
        "title": record.get("title"),
        "company": record.get("companyName") or record.get("company"),
        "company_domain": record.get("companyDomain") or record.get("company_domain"),
        "linkedin_url": record.get("linkedinUrl") or record.get("linkedin_url"),
        "location": record.get("location"),
    }
    if reveal_phone:
        fields["phone"] = record.get("phone") or record.get("phoneNumber")
    return {k: v for k, v in fields.items() if v}


def execute(task: dict, payload: EnrichPayload, ctx: StageContext) -> dict:
    org_id = task["organization_id"]
    mission = require_mission(task)
    limit = quota.limit_for("leads_enriched", mission)

    used = quota.get_daily_usage(org_id)["leads_enriched"]
    if used >= limit:
        return quota.skipped_result("leads_enriched", limit, used=used)

    leads = [lead for lead in payload.leads if lead.id]
    source = payload.source
    if not leads:
        queued = models.list_leads(mission_id=mission["id"], status="saved",
                                   limit=min(limit - used, QUEUE_LIMIT))
        leads = [LeadRef.model_validate(lead_ref_from_row(r)) for r in queued]
        source = "saved_queue"
    if not leads:
        return {"skipped": True, "reason": "no_leads", "enriched_count": 0}

    granted = quota.reserve(org_id, "leads_enriched", len(leads), limit)
    if not granted:
        return quota.skipped_result("leads_enriched", limit)

    to_enrich, deferred = leads[:granted], leads[granted:]
    record_lead_events([
        lead_event(task, lead.id, "lead_enrich_skipped", "enrich", "deferred_by_quota",
                   "Enrichment deferred by daily quota", {"remaining_capacity": granted})
        for lead in deferred
    ])

    reveal_phone = payload.enrichment_level == "deep"
    user_id = resolve_user_id(task, payload)
    enriched, failed, events = [], [], []
    try:
        ctx.heartbeat()
        records = ctx.collaborators.enrichment.enrich(
            [_format_for_service(lead) for lead in to_enrich],
            reveal_email=True, reveal_phone=reveal_phone, user_id=user_id,
        )
        ctx.heartbeat()

        by_ref = {}
        for record in records:
            ref = record.get("id") or record.get("clientRef")
            if ref:
                by_ref[str(ref)] = record

        now = to_iso(ctx.now)
        for lead in to_enrich:
            record = by_ref.get(lead.id)
            if record is None:
                models.update_lead(lead.id, {"enrichment_error": "not_returned_by_service"})
                failed.append(lead.id)
                events.append(lead_event(task, lead.id, "lead_enrich_failed", "enrich", "not_returned",
                                         "Enrichment service returned no data for this lead"))
                continue
            row = models.update_lead(lead.id, {
                **_enriched_fields(record, reveal_phone),
                "status": "enriched",
                "enrichment_error": None,
                "last_enriched_at": now,
            })
            if row is None:
                failed.append(lead.id)
                continue
            enriched.append(row)
            events.append(lead_event(task, lead.id, "lead_enriched", "enrich", "enriched",
                                     "Lead enriched", {"has_email": bool(row.get("email")),
                                                       "has_phone": bool(row.get("phone"))}))
        record_lead_events(events)
    finally:
        # Leads already written back as enriched stay charged
        if len(enriched) < granted:
            quota.release(org_id, "leads_enriched", granted - len(enriched))

    result = {
        "enriched_count": len(enriched),
        "failed_count": len(failed),
        "deferred_count": len(deferred),
        "enrichment_level": payload.enrichment_level or "basic",
        "source": source,
    }

    contactable = [lead_ref_from_row(r) for r in enriched if r.get("email")]
    if contactable:
        goal = {**goal_fields(payload), "user_id": user_id}
        if reveal_phone:
            next_task = chain(task, TaskType.INVESTIGATE, {**goal, "leads": contactable})
        else:
            next_task = chain(task, TaskType.CONTACT, {**goal, "leads": contactable,
                                                       "source": "enrich"})
        result["next_task_id"] = next_task.get("id")

    logger.info("Enriched %d/%d leads", len(enriched), len(to_enrich), extra={"task_id": task["id"]})
    return result
