"""
Mission Error Handler - error taxonomy and the mission log writer.

Every task outcome (success, skip, failure) ends up as one mission_logs row;
that table is what operators watch. Writing to it must never take the worker
down, so storage errors here are logged and dropped.

Usage:
    from mission_engine.error_handler import log_mission_event, ServiceError

    log_mission_event("warning", "Search skipped", organization_id=org,
                      mission_id=mid, task_id=tid, details=result)
"""

import logging
from typing import List

from mission_engine.db import models

logger = logging.getLogger("mission_engine.error_handler")

LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


# ─── ERRORS ────────────────────────────────────────────────────

class MissionEngineError(Exception):
    """Base class for orchestration errors."""
    pass


class MissingEntityError(MissionEngineError):
    """A referenced mission, campaign or lead does not exist. Fatal for the task."""
    pass


class ServiceError(MissionEngineError):
    """An external collaborator failed (network error or non-2xx answer)."""

    def __init__(self, service: str, message: str, status_code: int = None):
        self.service = service
        self.status_code = status_code
        prefix = f"{service} returned {status_code}" if status_code else f"{service} request failed"
        super().__init__(f"{prefix}: {message}")


class InvalidTransitionError(MissionEngineError):
    """A stage tried to chain a task type the pipeline does not allow."""
    pass


class TaskDeadlineExceeded(MissionEngineError):
    """The task ran past TASK_TIMEOUT_MINUTES. Fails the task before it can be rescued."""
    pass


class ClaimLostError(MissionEngineError):
    """The task is no longer processing under this worker; it was rescued or cancelled."""
    pass


# ─── LOG WRITERS ───────────────────────────────────────────────

def log_mission_event(
    level: str,
    message: str,
    organization_id: str = None,
    mission_id: str = None,
    task_id: str = None,
    details: dict = None,
):
    """Append a mission log entry and mirror it to the Python logger.

    Args:
        level: "info", "success", "warning" or "error"
        message: Human-readable summary
        organization_id: Owning organization
        mission_id: Mission the entry belongs to (None for org-scoped tasks)
        task_id: Task that produced the entry
        details: Structured result or error context
    """
    log_extra = {
        "organization_id": organization_id or "",
        "mission_id": mission_id or "",
        "task_id": task_id or "",
    }
    logger.log(LOG_LEVELS.get(level, logging.INFO), message, extra=log_extra)

    try:
        models.insert_mission_log({
            "organization_id": organization_id,
            "mission_id": mission_id,
            "task_id": task_id,
            "level": level,
            "message": message,
            "details": details or {},
        })
    except Exception as db_err:
        # If we can't even write the log row, leave a trace on stderr
        logger.error("Failed to write mission log: %s", db_err)


def record_lead_events(events: List[dict]):
    """Store per-lead audit events. Best effort, like the mission log."""
    if not events:
        return
    try:
        models.insert_lead_events(events)
    except Exception as db_err:
        logger.error("Failed to write %d lead events: %s", len(events), db_err)
