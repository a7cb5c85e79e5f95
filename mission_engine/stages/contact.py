"""
CONTACT / CONTACT_INITIAL and CONTACT_CAMPAIGN: email leads.

Both go through _send_to_leads(). A failed send is recorded on that lead and
the batch continues. Initial contacts are charged against the mission's daily
contact limit and open a contacted_leads row that the promotion scan later
picks up for evaluation; campaign follow-ups are not charged and finish the
mission.
"""

import re
from typing import Callable, List, Optional, Tuple

from mission_engine import quota
from mission_engine.db import models
from mission_engine.db.connection import to_iso
from mission_engine.error_handler import MissingEntityError, ServiceError, record_lead_events
from mission_engine.logging_config import get_stage_logger
from mission_engine.payloads import ContactCampaignPayload, ContactPayload, LeadRef
from mission_engine.stages.base import StageContext, lead_event, require_mission, resolve_user_id

logger = get_stage_logger("contact")

# Provider answers meaning the recipient must not be emailed again
DO_NOT_CONTACT_STATUSES = {403, 409}

DEFAULT_SUBJECT = "{{company}} and a quick idea"
DEFAULT_BODY = (
    "<p>Hi {{name}},</p>"
    "<p>I came across your work as {{title}} at {{company}}. {{research.summary}}</p>"
    "<p>Would a short call this week be useful?</p>"
    "<p>Best,<br/>{{sender.name}}</p>"
)
DEFAULT_FOLLOWUP_SUBJECT = "Following up"
DEFAULT_FOLLOWUP_BODY = "<p>Hi {{lead.name}},</p><p>Just checking in on my previous note.</p>"

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def render_template(text: str, lead: LeadRef, sender_name: str = "") -> str:
    """Fill {{name}}-style placeholders; unknown placeholders render empty."""
    research = lead.research or {}
    name = lead.name or ""
    values = {
        "name": name,
        "lead.name": name,
        "firstName": name.split(" ")[0] if name else "",
        "company": lead.company or "",
        "title": lead.title or "",
        "email": lead.email or "",
        "research.summary": research.get("summary") or research.get("overview") or "",
        "sender.name": sender_name or "",
    }
    return _PLACEHOLDER.sub(lambda m: str(values.get(m.group(1), "")), text or "")


def initial_message(lead: LeadRef) -> Tuple[str, str]:
    """Subject and body from the research draft, or the default template."""
    draft = (lead.research or {}).get("emailDraft") or (lead.research or {}).get("email_draft")
    if isinstance(draft, dict) and draft.get("body"):
        return draft.get("subject") or DEFAULT_SUBJECT, draft["body"]
    if isinstance(draft, str) and draft.strip():
        return DEFAULT_SUBJECT, draft
    return DEFAULT_SUBJECT, DEFAULT_BODY


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].lower().strip() if email and "@" in email else ""


def _send_to_leads(task: dict, leads: List[LeadRef], message_for: Callable, ctx: StageContext,
                   user_id: Optional[str], sender_name: str, kind: str, dry_run: bool = False,
                   campaign_id: str = None, outcome: dict = None) -> dict:
    """Send one email per lead. Results accumulate in `outcome` as they happen,
    so a caller still sees what went out when a later send raises."""
    outcome = outcome if outcome is not None else {"sent": [], "failed": []}
    sent, failed = outcome["sent"], outcome["failed"]
    for lead in leads:
        ctx.heartbeat()
        subject_tpl, body_tpl = message_for(lead)
        subject = render_template(subject_tpl, lead, sender_name)
        body = render_template(body_tpl, lead, sender_name)

        if dry_run:
            delivery = {"provider": "dry_run", "message_id": None, "thread_id": None}
        else:
            try:
                delivery = ctx.collaborators.email.send(
                    lead.email, subject, body, user_id=user_id, lead_id=lead.id,
                    mission_id=task.get("mission_id"), campaign_id=campaign_id,
                    metadata={"type": kind},
                )
            except ServiceError as e:
                failed.append({"lead_id": lead.id, "email": lead.email, "error": str(e)})
                reason = f"api_{e.status_code}" if e.status_code else "network_error"
                if e.status_code in DO_NOT_CONTACT_STATUSES and lead.id:
                    models.update_lead(lead.id, {"status": "do_not_contact"})
                    reason = "do_not_contact"
                record_lead_events([lead_event(task, lead.id, "lead_contact_failed", "contact", reason,
                                               "Email send failed", {"kind": kind, "error": str(e)[:400]})])
                logger.warning("Send to %s failed: %s", lead.email, e, extra={"task_id": task["id"]})
                continue

        sent.append({"lead_id": lead.id, "email": lead.email, "provider": delivery["provider"]})
        now = to_iso(ctx.now)
        models.create_contacted_lead({
            "organization_id": task["organization_id"],
            "mission_id": task.get("mission_id"),
            "lead_id": lead.id,
            "user_id": user_id,
            "name": lead.name,
            "email": lead.email,
            "company": lead.company,
            "role": lead.title,
            "subject": subject,
            "provider": delivery["provider"],
            "message_id": delivery["message_id"],
            "thread_id": delivery["thread_id"],
            "kind": kind,
            "evaluation_status": "pending" if kind == "initial" else "qualified",
            "engagement_score": 0,
            "sent_at": now,
            "last_interaction_at": now,
        })
        if lead.id:
            models.update_lead(lead.id, {"status": "contacted"})
        record_lead_events([lead_event(task, lead.id, "lead_contact_sent", "contact", "sent",
                                       "Email sent", {"kind": kind, "provider": delivery["provider"],
                                                      "dry_run": dry_run})])

    return outcome


def execute(task: dict, payload: ContactPayload, ctx: StageContext) -> dict:
    org_id = task["organization_id"]
    mission = require_mission(task)
    limit = quota.limit_for("leads_contacted", mission)

    used = quota.get_daily_usage(org_id)["leads_contacted"]
    if used >= limit:
        return quota.skipped_result("leads_contacted", limit, used=used)

    excluded = models.list_excluded_domains(org_id)
    contactable, skipped, events = [], [], []
    for lead in payload.leads:
        if not lead.email:
            skipped.append({"lead_id": lead.id, "reason": "no_email"})
            events.append(lead_event(task, lead.id, "lead_contact_skipped", "contact", "no_email",
                                     "Lead has no email"))
        elif email_domain(lead.email) in excluded:
            skipped.append({"lead_id": lead.id, "reason": "excluded_domain"})
            if lead.id:
                models.update_lead(lead.id, {"status": "do_not_contact"})
            events.append(lead_event(task, lead.id, "lead_contact_skipped", "contact", "excluded_domain",
                                     "Recipient domain is excluded", {"domain": email_domain(lead.email)}))
        else:
            contactable.append(lead)
    record_lead_events(events)

    if not contactable:
        return {"skipped": True, "reason": "no_contactable_leads", "contacted_count": 0,
                "skipped_leads": skipped}

    granted = quota.reserve(org_id, "leads_contacted", len(contactable), limit)
    if not granted:
        return quota.skipped_result("leads_contacted", limit, skipped_leads=skipped)
    to_send, deferred = contactable[:granted], contactable[granted:]
    record_lead_events([
        lead_event(task, lead.id, "lead_contact_skipped", "contact", "deferred_by_quota",
                   "Contact deferred by daily quota", {"remaining_capacity": granted})
        for lead in deferred
    ])

    org_config = models.get_org_config(org_id)
    campaign = models.get_campaign_by_name(org_id, payload.campaign_name) if payload.campaign_name else None
    outcome = {"sent": [], "failed": []}
    try:
        _send_to_leads(
            task, to_send, initial_message, ctx,
            user_id=resolve_user_id(task, payload),
            sender_name=org_config.get("sender_name") or "",
            kind="initial", dry_run=payload.dry_run,
            campaign_id=campaign["id"] if campaign else None,
            outcome=outcome,
        )
    finally:
        # Only emails that actually went out stay charged
        if len(outcome["sent"]) < granted:
            quota.release(org_id, "leads_contacted", granted - len(outcome["sent"]))

    logger.info("Contacted %d/%d leads%s", len(outcome["sent"]), len(to_send),
                " (dry run)" if payload.dry_run else "", extra={"task_id": task["id"]})
    return {
        "contacted_count": len(outcome["sent"]),
        "failed_count": len(outcome["failed"]),
        "deferred_count": len(deferred),
        "dry_run": payload.dry_run,
        "sent": outcome["sent"],
        "failures": outcome["failed"],
        "skipped_leads": skipped,
    }


def followup_step(campaign: dict) -> dict:
    """The first step after the initial one, or the only step there is."""
    steps = campaign.get("steps") or []
    later = [s for s in steps if s["order_index"] > 0]
    if later:
        return later[0]
    return steps[0] if steps else {}


def execute_campaign(task: dict, payload: ContactCampaignPayload, ctx: StageContext) -> dict:
    org_id = task["organization_id"]
    campaign = models.get_campaign_by_name(org_id, payload.campaign_name)
    if not campaign:
        raise MissingEntityError(f"Campaign not found: {payload.campaign_name}")

    step = followup_step(campaign)
    settings = campaign.get("settings") or {}
    subject_tpl = step.get("subject_template") or settings.get("subject") or DEFAULT_FOLLOWUP_SUBJECT
    body_tpl = step.get("body_template") or settings.get("body") or DEFAULT_FOLLOWUP_BODY

    org_config = models.get_org_config(org_id)
    leads = [lead for lead in payload.leads if lead.email]
    outcome = _send_to_leads(
        task, leads, lambda lead: (subject_tpl, body_tpl), ctx,
        user_id=resolve_user_id(task, payload),
        sender_name=org_config.get("sender_name") or "",
        kind="followup", dry_run=payload.dry_run, campaign_id=campaign["id"],
    )

    mission_completed = False
    if task.get("mission_id"):
        require_mission(task)
        models.update_mission_status(task["mission_id"], "completed")
        mission_completed = True

    return {
        "contacted_count": len(outcome["sent"]),
        "failed_count": len(outcome["failed"]),
        "campaign_id": campaign["id"],
        "step": step.get("name"),
        "mission_completed": mission_completed,
        "failures": outcome["failed"],
    }
