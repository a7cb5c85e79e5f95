"""GENERATE_REPORT: daily, per-mission and lead-exhaustion reports for operators."""

from datetime import timedelta
from html import escape

from mission_engine import quota
from mission_engine.db import models
from mission_engine.db.connection import to_iso
from mission_engine.error_handler import MissingEntityError
from mission_engine.logging_config import get_stage_logger
from mission_engine.payloads import ReportPayload
from mission_engine.stages.base import StageContext, resolve_user_id

logger = get_stage_logger("generate_report")


def render_html(title: str, rows: list) -> str:
    body = "".join(f"<tr><td>{escape(str(k))}</td><td>{escape(str(v))}</td></tr>" for k, v in rows)
    return f"<h2>{escape(title)}</h2><table>{body}</table>"


def daily_summary(organization_id: str, ctx: StageContext) -> dict:
    since = to_iso(ctx.now - timedelta(hours=24))
    usage_today = quota.get_daily_usage(organization_id, quota.today(ctx.now))
    return {
        "range_start": since,
        "range_end": to_iso(ctx.now),
        "active_missions": len(models.list_missions(organization_id, status="active")),
        "tasks_completed": models.count_tasks_updated_since(organization_id, "completed", since),
        "tasks_failed": models.count_tasks_updated_since(organization_id, "failed", since),
        "leads_contacted": models.count_contacted_since(organization_id, since),
        "replies": models.count_replies_since(organization_id, since),
        "usage_today": {k: usage_today[k] for k in quota.USAGE_KINDS},
    }


def execute(task: dict, payload: ReportPayload, ctx: StageContext) -> dict:
    org_id = task["organization_id"]
    mission_id = payload.mission_id or task.get("mission_id")

    mission = None
    if payload.report_type != "daily" or mission_id:
        mission = models.get_mission(mission_id) if mission_id else None
        if not mission:
            raise MissingEntityError(f"Mission not found: {mission_id}")

    org_config = models.get_org_config(org_id)
    recipient = org_config.get("notification_email")
    if not recipient:
        return {"skipped": True, "reason": "no_notification_email", "report_type": payload.report_type}

    if payload.report_type == "daily":
        summary = daily_summary(org_id, ctx)
        subject = f"Daily mission report · {summary['range_end'][:10]}"
        rows = [(k, v) for k, v in summary.items() if k != "usage_today"]
        rows += [(f"usage: {k}", v) for k, v in summary["usage_today"].items()]
    elif payload.report_type == "mission":
        summary = {"mission_id": mission["id"], "title": mission["title"], "status": mission["status"],
                   **models.mission_funnel(mission["id"])}
        subject = f"Mission report · {mission['title']}"
        rows = [("status", mission["status"])]
        rows += [(f"leads {k}", v) for k, v in summary["leads"].items()]
        rows += [(f"evaluation {k}", v) for k, v in summary["evaluations"].items()]
    else:
        summary = {"mission_id": mission["id"], "title": mission["title"],
                   "reason": payload.reason, **payload.details}
        subject = f"Action needed: mission '{mission['title']}' ran out of leads"
        rows = [("mission", mission["title"]), ("reason", payload.reason or "empty_pipeline"),
                ("recommendation", "Broaden the search filters or pause the mission")]

    html = render_html(subject, rows)
    delivery = ctx.collaborators.email.send(
        recipient, subject, html, user_id=resolve_user_id(task, payload), mission_id=mission_id,
        metadata={"type": "report", "report_type": payload.report_type},
    )
    report = models.create_report({
        "organization_id": org_id,
        "mission_id": mission_id,
        "report_type": payload.report_type,
        "subject": subject,
        "html": html,
        "summary": summary,
        "sent_to": recipient,
    })
    logger.info("Sent %s report to %s", payload.report_type, recipient, extra={"task_id": task["id"]})
    return {"report_id": report["id"], "report_type": payload.report_type, "sent_to": recipient,
            "provider": delivery["provider"]}
