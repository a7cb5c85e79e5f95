"""
SEARCH: find new prospects for the mission.

New leads are stored as `saved` and (when enrichment is requested) forwarded to
ENRICH. When the search yields nothing new, the stage falls back in order:

1. saved leads already queued for the mission -> one ENRICH task
2. enriched leads that were never contacted -> one CONTACT task
3. nothing left -> "empty pipeline" log and a lead_exhaustion_alert report
"""

from mission_engine import quota
from mission_engine.db import models
from mission_engine.error_handler import ServiceError, log_mission_event, record_lead_events
from mission_engine.logging_config import get_stage_logger
from mission_engine.payloads import SearchPayload, goal_fields
from mission_engine.pipeline import TaskType, chain
from mission_engine.stages.base import StageContext, lead_event, lead_ref_from_row, resolve_user_id

logger = get_stage_logger("search")

MAX_RESULTS = 100
FORWARD_BATCH = 10
REQUIRED_FILTERS = ("industry", "location", "company_size")


def normalize_person(raw: dict) -> dict:
    """Map a search-service record onto lead columns."""
    first = raw.get("first_name") or raw.get("firstName") or ""
    last = raw.get("last_name") or raw.get("lastName") or ""
    name = (raw.get("full_name") or raw.get("fullName") or f"{first} {last}".strip()
            or raw.get("name") or "").strip()
    org = raw.get("organization") if isinstance(raw.get("organization"), dict) else {}
    company = (org.get("name") or raw.get("organization_name") or raw.get("company_name")
               or raw.get("companyName") or raw.get("company") or "")
    domain = (org.get("domain") or org.get("primary_domain") or raw.get("company_domain")
              or raw.get("companyDomain") or raw.get("organization_domain"))
    source_id = raw.get("source_id") or raw.get("apollo_id") or raw.get("id")
    location = raw.get("location") or ", ".join(
        p for p in (raw.get("city"), raw.get("state"), raw.get("country")) if p)
    return {
        "source_id": str(source_id) if source_id else None,
        "name": name,
        "title": raw.get("title") or "",
        "company": str(company).strip(),
        "company_domain": str(domain).strip() if domain else None,
        "email": raw.get("email") or None,
        "linkedin_url": raw.get("linkedin_url") or raw.get("linkedinUrl"),
        "location": location or None,
    }


def build_filters(payload: SearchPayload) -> dict:
    return {
        "titles": [payload.job_title] if payload.job_title else [],
        "locations": [payload.location.strip()],
        "industry_keywords": [payload.industry.strip()],
        "employee_ranges": [payload.company_size.strip()],
        "seniorities": payload.seniorities,
        "keywords": payload.keywords,
        "max_results": MAX_RESULTS,
    }


def execute(task: dict, payload: SearchPayload, ctx: StageContext) -> dict:
    org_id = task["organization_id"]
    mission_id = task.get("mission_id")
    org_config = models.get_org_config(org_id)
    limit = quota.limit_for("search_runs", org_config=org_config)

    used = quota.get_daily_usage(org_id)["search_runs"]
    if used >= limit:
        return quota.skipped_result("search_runs", limit, used=used, scope="organization")

    missing = [f for f in REQUIRED_FILTERS if not (getattr(payload, f) or "").strip()]
    if missing:
        return {"skipped": True, "reason": "missing_filters", "missing": missing}

    if not quota.try_consume(org_id, "search_runs", 1, limit):
        return quota.skipped_result("search_runs", limit, scope="organization")

    user_id = resolve_user_id(task, payload)
    try:
        raw_people = ctx.collaborators.search.search(build_filters(payload), user_id=user_id)
    except ServiceError:
        quota.release(org_id, "search_runs", 1)
        raise
    ctx.heartbeat()

    people = [p for p in (normalize_person(r) for r in raw_people) if p["name"]]
    known = models.existing_source_ids(mission_id) if mission_id else set()

    inserted = []
    for person in people:
        if person["source_id"] and person["source_id"] in known:
            continue
        if person["source_id"]:
            known.add(person["source_id"])
        inserted.append(models.create_lead({
            **person,
            "organization_id": org_id,
            "mission_id": mission_id,
            "user_id": user_id,
            "industry": payload.industry,
            "location": person["location"] or payload.location,
            "status": "saved",
        }))

    record_lead_events([
        lead_event(task, row["id"], "lead_found", "search", "inserted", f"Lead found: {row['name']}",
                   {"title": row["title"], "company": row["company"], "source_id": row["source_id"]})
        for row in inserted
    ])
    if inserted:
        quota.increment_usage(org_id, "leads_searched", len(inserted))

    criteria = {"job_title": payload.job_title, "location": payload.location,
                "industry": payload.industry, "company_size": payload.company_size}
    result = {
        "leads_found": len(inserted),
        "duplicates_skipped": len(people) - len(inserted),
        "search_criteria": criteria,
    }
    goal = {**goal_fields(payload), "user_id": user_id}

    if inserted:
        if payload.enrichment_level:
            next_task = chain(task, TaskType.ENRICH, {
                **goal,
                "leads": [lead_ref_from_row(r) for r in inserted[:FORWARD_BATCH]],
                "source": "search",
            })
            result["next_task_id"] = next_task.get("id")
        logger.info("Search stored %d new leads", len(inserted), extra={"task_id": task["id"]})
        return result

    # Nothing new: drain what the mission already has before raising the alarm
    log_mission_event("warning", "No new leads found with the current filters",
                      organization_id=org_id, mission_id=mission_id, task_id=task["id"],
                      details={"search_criteria": criteria})
    result["exhausted"] = True

    saved = models.list_leads(mission_id=mission_id, status="saved", limit=FORWARD_BATCH)
    if saved:
        next_task = chain(task, TaskType.ENRICH, {
            **goal,
            "enrichment_level": payload.enrichment_level or "basic",
            "leads": [lead_ref_from_row(r) for r in saved],
            "source": "saved_queue",
        })
        result.update({"fallback": "saved_queue", "reused_leads": len(saved),
                       "next_task_id": next_task.get("id")})
        return result

    stranded = models.list_enriched_uncontacted(mission_id, limit=FORWARD_BATCH)
    if stranded:
        next_task = chain(task, TaskType.CONTACT, {
            **goal,
            "leads": [lead_ref_from_row(r) for r in stranded],
            "source": "stranded_enriched",
        })
        result.update({"fallback": "stranded_enriched", "reused_leads": len(stranded),
                       "next_task_id": next_task.get("id")})
        return result

    log_mission_event("error", "Empty pipeline: no new, saved or uncontacted leads left",
                      organization_id=org_id, mission_id=mission_id, task_id=task["id"],
                      details={"search_criteria": criteria,
                               "recommendation": "Broaden the search filters or pause the mission"})
    alert = chain(task, TaskType.GENERATE_REPORT, {
        "report_type": "lead_exhaustion_alert",
        "user_id": user_id,
        "mission_id": mission_id,
        "reason": "empty_pipeline",
        "details": {"search_criteria": criteria},
    })
    result.update({"fallback": "empty_pipeline", "reused_leads": 0, "critical": True,
                   "next_task_id": alert.get("id")})
    return result
