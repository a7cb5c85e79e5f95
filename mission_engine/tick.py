"""
Tick Driver - the periodic entry point of the orchestrator.

Each run:
  1. rescues processing tasks whose heartbeat is older than STUCK_TASK_MINUTES
  2. schedules at most one SEARCH/GENERATE_CAMPAIGN per active mission per
     UTC day (and one daily report per organization), via idempotency keys
  3. claims up to batch_size due tasks and runs them in parallel
  4. promotes contacted leads past the dwell threshold into EVALUATE tasks

Any number of drivers (timer loop, HTTP trigger) may overlap: they all go
through models.claim_task, so a task runs at most once per claim.

Safety controls:
- Hard cap on batch size and parallelism
- A failed task never stops the rest of the batch
- Every outcome is written to mission_logs by the worker
"""

import logging
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta
from typing import List

from mission_engine import config
from mission_engine.clients import Collaborators
from mission_engine.db import models
from mission_engine.db.connection import to_iso, utcnow
from mission_engine.error_handler import log_mission_event
from mission_engine.payloads import MissionGoal
from mission_engine.pipeline import TaskType, create_root_task
from mission_engine.stages.campaign import campaign_name_for
from mission_engine.worker import process_task

logger = logging.getLogger("mission_engine.tick")


# ─── CONFIGURATION ─────────────────────────────────────────────

DEFAULT_CONFIG = {
    "batch_size": config.TICK_BATCH_SIZE,           # Max tasks claimed per tick
    "max_workers": config.TICK_BATCH_SIZE,          # Max parallel executor threads
    "dwell_minutes": config.EVALUATION_DWELL_MINUTES,  # Wait before evaluating a contact
    "scan_limit": config.EVALUATION_SCAN_LIMIT,     # Contacted leads promoted per tick
    "stuck_minutes": config.STUCK_TASK_MINUTES,     # Processing age considered stuck
    "rescue_limit": 25,
}


# ─── DAILY SCHEDULING ──────────────────────────────────────────

def daily_key(mission_id: str, day: str) -> str:
    return f"daily:{mission_id}:{day}"


def report_key(organization_id: str, day: str) -> str:
    return f"report:{organization_id}:{day}"


def mission_goal(mission: dict) -> dict:
    params = mission.get("params") or {}
    goal = MissionGoal.model_validate(params).model_dump()
    goal.update({"user_id": mission.get("user_id"), "mission_title": mission.get("title")})
    return goal


def schedule_daily_tasks(now: datetime = None) -> List[dict]:
    """Create today's root task for every active mission. Safe to call repeatedly.

    Missions whose campaign does not exist yet start with GENERATE_CAMPAIGN,
    the others with SEARCH. Organizations with a notification email also get
    one daily report.
    """
    now = now or utcnow()
    day = now.date().isoformat()
    created = []
    report_orgs = OrderedDict()

    for mission in models.list_missions(status="active"):
        goal = mission_goal(mission)
        name = goal.get("campaign_name") or campaign_name_for(mission["title"])
        if models.get_campaign_by_name(mission["organization_id"], name):
            type_ = TaskType.SEARCH
            goal["campaign_name"] = name
        else:
            type_ = TaskType.GENERATE_CAMPAIGN

        task = create_root_task(mission["organization_id"], mission["id"], type_, goal,
                                idempotency_key=daily_key(mission["id"], day))
        if not task.get("duplicate"):
            created.append(task)
            logger.info("Scheduled %s for mission %s", type_.value, mission["id"])
        report_orgs.setdefault(mission["organization_id"], mission.get("user_id"))

    for org_id, user_id in report_orgs.items():
        if not models.get_org_config(org_id).get("notification_email"):
            continue
        task = create_root_task(org_id, None, TaskType.GENERATE_REPORT,
                                {"report_type": "daily", "user_id": user_id},
                                idempotency_key=report_key(org_id, day))
        if not task.get("duplicate"):
            created.append(task)

    return created


# ─── PROMOTION SCAN ────────────────────────────────────────────

def _evaluation_lead(row: dict) -> dict:
    lead = models.get_lead(row["lead_id"]) if row.get("lead_id") else None
    return {
        "id": row.get("lead_id"),
        "name": row.get("name"),
        "email": row.get("email"),
        "company": row.get("company"),
        "title": row.get("role"),
        "location": (lead or {}).get("location"),
    }


def promote_pending_evaluations(now: datetime = None, dwell_minutes: int = None,
                                limit: int = None) -> dict:
    """Move contacted leads that have waited past the dwell threshold into evaluation.

    One EVALUATE task per (organization, mission) group with an active mission.
    Rows are flipped to `evaluating` before the task is created, and only the
    rows this scan flipped go into its payload, so overlapping ticks never
    evaluate a lead twice.
    """
    now = now or utcnow()
    dwell = DEFAULT_CONFIG["dwell_minutes"] if dwell_minutes is None else dwell_minutes
    cutoff = to_iso(now - timedelta(minutes=dwell))
    rows = models.list_contacted_due_for_evaluation(cutoff, limit or DEFAULT_CONFIG["scan_limit"])

    groups = OrderedDict()
    for row in rows:
        if not row.get("mission_id"):
            continue
        groups.setdefault((row["organization_id"], row["mission_id"]), []).append(row)

    tasks, promoted = [], 0
    for (org_id, mission_id), group in groups.items():
        mission = models.get_mission(mission_id)
        if not mission or mission["status"] != "active":
            continue

        flipped = set(models.claim_contacted_for_evaluation([row["id"] for row in group]))
        group = [row for row in group if row["id"] in flipped]
        if not group:
            continue

        params = mission.get("params") or {}
        try:
            task = create_root_task(org_id, mission_id, TaskType.EVALUATE, {
                "user_id": mission.get("user_id"),
                "campaign_name": params.get("campaign_name") or campaign_name_for(mission["title"]),
                "leads": [_evaluation_lead(row) for row in group],
            })
        except Exception:
            models.release_contacted_evaluation(flipped)
            raise
        promoted += len(group)
        tasks.append(task["id"])
        logger.info("Created EVALUATE task %s for mission %s (%d leads)",
                    task["id"], mission_id, len(group))

    return {"evaluations_created": len(tasks), "leads_promoted": promoted, "task_ids": tasks}


# ─── DRIVER ────────────────────────────────────────────────────

class TickDriver:
    """Runs one orchestration tick against the shared task table."""

    def __init__(self, config: dict = None, collaborators: Collaborators = None,
                 worker_id: str = None):
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.collaborators = collaborators
        self.worker_id = worker_id or f"tick:{uuid.uuid4().hex[:8]}"

    def rescue_stuck_tasks(self, now: datetime) -> List[str]:
        cutoff = to_iso(now - timedelta(minutes=self.config["stuck_minutes"]))
        rescued = models.rescue_stuck_tasks(cutoff, self.config["rescue_limit"])
        if rescued:
            logger.warning("Rescued %d stuck tasks", len(rescued))
        return rescued

    def claim_due_tasks(self, now: datetime) -> List[dict]:
        claimed = []
        for task in models.list_due_tasks(to_iso(now), self.config["batch_size"]):
            row = models.claim_task(task["id"], self.worker_id, to_iso(now))
            if row:
                claimed.append(row)
        return claimed

    def _run_batch(self, tasks: List[dict], now: datetime) -> List[dict]:
        """Run claimed tasks with bounded parallelism."""
        if not tasks:
            return []
        outcomes = []
        max_workers = min(self.config["max_workers"], len(tasks))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_task = {
                executor.submit(process_task, task, self.collaborators, now): task
                for task in tasks
            }
            for future in as_completed(future_to_task):
                task = future_to_task[future]
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    # process_task already records executor errors; this is storage trouble
                    logger.error("Worker crashed on task %s: %s", task["id"], e)
                    models.fail_task(task["id"], f"Worker crashed: {e}", worker_id=self.worker_id)
                    log_mission_event("error", f"Task {task['type']} failed: {e}",
                                      organization_id=task["organization_id"],
                                      mission_id=task.get("mission_id"), task_id=task["id"])
                    outcomes.append({"task_id": task["id"], "status": "failed", "error": str(e)})
        return outcomes

    def run(self, now: datetime = None) -> dict:
        now = now or utcnow()
        rescued = self.rescue_stuck_tasks(now)
        scheduled = schedule_daily_tasks(now)
        claimed = self.claim_due_tasks(now)
        outcomes = self._run_batch(claimed, now)
        promotion = promote_pending_evaluations(now, self.config["dwell_minutes"],
                                                self.config["scan_limit"])

        summary = {
            "worker_id": self.worker_id,
            "rescued": len(rescued),
            "scheduled": len(scheduled),
            "claimed": len(claimed),
            "completed": sum(1 for o in outcomes if o["status"] == "completed"),
            "failed": sum(1 for o in outcomes if o["status"] == "failed"),
            "abandoned": sum(1 for o in outcomes if o["status"] == "abandoned"),
            "evaluations_created": promotion["evaluations_created"],
            "leads_promoted": promotion["leads_promoted"],
        }
        logger.info("Tick finished: %s", summary)
        return summary
