"""
Task Worker - runs one claimed task and persists its outcome.

The task must already be `processing` (see models.claim_task). Whatever the
executor does, the task ends `completed` (result stored, skips included) or
`failed` (error message stored), and one mission log entry records it.

A worker only finishes a task it still holds. When the tick rescued the task
in the meantime (no heartbeat for STUCK_TASK_MINUTES), or an operator
cancelled it, the outcome is dropped and reported as `abandoned`.
"""

import logging
import random
import time
from datetime import datetime
from typing import Optional

from mission_engine import config
from mission_engine.clients import Collaborators
from mission_engine.db import models
from mission_engine.db.connection import utcnow
from mission_engine.error_handler import ClaimLostError, log_mission_event
from mission_engine.logging_config import task_context
from mission_engine.pipeline import parse_payload, task_type
from mission_engine.stages import EXECUTORS, StageContext

logger = logging.getLogger("mission_engine.worker")


def _abandoned(task: dict, reason: str, duration_ms: int) -> dict:
    logger.warning("Task %s (%s) abandoned: %s", task["id"], task["type"], reason,
                   extra=task_context(task, duration_ms=duration_ms))
    return {"task_id": task["id"], "type": task["type"], "status": "abandoned",
            "error": reason, "duration_ms": duration_ms}


def process_task(task: dict, collaborators: Collaborators = None, now: datetime = None,
                 rng: random.Random = None) -> dict:
    """Execute a claimed task. Never raises for executor errors.

    Returns:
        {"task_id", "type", "status": "completed"|"failed"|"abandoned",
         "result"|"error", "duration_ms"}
    """
    started = time.monotonic()
    worker_id = task.get("worker_id")
    ctx = StageContext(
        collaborators=collaborators or Collaborators(),
        now=now or utcnow(),
        rng=rng or random.Random(),
        task_id=task["id"],
        worker_id=worker_id,
        deadline=started + config.TASK_TIMEOUT_MINUTES * 60,
    )
    scope = {
        "organization_id": task["organization_id"],
        "mission_id": task.get("mission_id"),
        "task_id": task["id"],
    }

    try:
        ctx.heartbeat()
        type_ = task_type(task["type"])
        payload = parse_payload(type_, task.get("payload"))
        result = EXECUTORS[type_](task, payload, ctx)
    except ClaimLostError as e:
        return _abandoned(task, str(e), int((time.monotonic() - started) * 1000))
    except Exception as e:
        duration_ms = int((time.monotonic() - started) * 1000)
        message = str(e) or type(e).__name__
        if models.fail_task(task["id"], message, worker_id=worker_id) is None:
            return _abandoned(task, f"lost claim while failing: {message}", duration_ms)
        logger.exception("Task %s (%s) failed", task["id"], task["type"],
                         extra=task_context(task, duration_ms=duration_ms))
        log_mission_event("error", f"Task {task['type']} failed: {message}",
                          details={"error_type": type(e).__name__}, **scope)
        return {"task_id": task["id"], "type": task["type"], "status": "failed",
                "error": message, "duration_ms": duration_ms}

    duration_ms = int((time.monotonic() - started) * 1000)
    if models.complete_task(task["id"], result, worker_id=worker_id) is None:
        return _abandoned(task, "lost claim before completion", duration_ms)
    logger.info("Task %s (%s) completed", task["id"], task["type"],
                extra=task_context(task, duration_ms=duration_ms))
    if result.get("skipped"):
        log_mission_event("warning", f"Task {task['type']} skipped: {result.get('reason')}",
                          details=result, **scope)
    else:
        log_mission_event("success", f"Task {task['type']} completed successfully.",
                          details=result, **scope)
    return {"task_id": task["id"], "type": task["type"], "status": "completed",
            "result": result, "duration_ms": duration_ms}


def claim_and_process(task_id: str, worker_id: str, collaborators: Collaborators = None,
                      now: datetime = None) -> Optional[dict]:
    """Claim one task and run it. Returns None when the claim was lost."""
    task = models.claim_task(task_id, worker_id)
    if task is None:
        return None
    return process_task(task, collaborators=collaborators, now=now)
