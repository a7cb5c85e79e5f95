"""Shared helpers for stage executors."""

import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from mission_engine.clients import Collaborators
from mission_engine.db import models
from mission_engine.db.connection import utcnow
from mission_engine.error_handler import ClaimLostError, MissingEntityError, TaskDeadlineExceeded


@dataclass
class StageContext:
    """What an executor gets besides its task: collaborators, a clock and a RNG.

    A context bound to a claimed task (task_id, worker_id, deadline) also
    carries its liveness: executors call heartbeat() between units of work.
    """
    collaborators: Collaborators = field(default_factory=Collaborators)
    now: datetime = field(default_factory=utcnow)
    rng: random.Random = field(default_factory=random.Random)
    task_id: Optional[str] = None
    worker_id: Optional[str] = None
    deadline: Optional[float] = None  # time.monotonic() value

    def heartbeat(self):
        """Refresh the task's heartbeat so the tick does not rescue it.

        Raises TaskDeadlineExceeded past the deadline and ClaimLostError once
        the task was taken back from this worker. No-op for unbound contexts.
        """
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise TaskDeadlineExceeded(f"Task {self.task_id} exceeded its time limit")
        if self.task_id is None:
            return
        if not models.touch_task(self.task_id, self.worker_id):
            raise ClaimLostError(f"Task {self.task_id} is no longer held by {self.worker_id}")


def require_mission(task: dict) -> dict:
    mission_id = task.get("mission_id")
    mission = models.get_mission(mission_id) if mission_id else None
    if not mission:
        raise MissingEntityError(f"Mission not found: {mission_id}")
    return mission


def optional_mission(task: dict) -> Optional[dict]:
    mission_id = task.get("mission_id")
    return models.get_mission(mission_id) if mission_id else None


def resolve_user_id(task: dict, payload) -> Optional[str]:
    """Payload user, falling back to the mission owner."""
    user_id = getattr(payload, "user_id", None)
    if user_id:
        return user_id
    mission = optional_mission(task)
    return mission.get("user_id") if mission else None


def lead_event(task: dict, lead_id: Optional[str], event_type: str, stage: str, outcome: str,
               message: str, meta: dict = None) -> dict:
    return {
        "organization_id": task["organization_id"],
        "mission_id": task.get("mission_id"),
        "task_id": task["id"],
        "lead_id": lead_id,
        "event_type": event_type,
        "stage": stage,
        "outcome": outcome,
        "message": message,
        "meta": meta or {},
    }


def lead_ref_from_row(row: dict) -> dict:
    """Trim a leads row to the fields a LeadRef carries."""
    keys = ("id", "source_id", "name", "title", "company", "company_domain", "email",
            "phone", "linkedin_url", "location", "industry", "research")
    return {k: row.get(k) for k in keys if row.get(k) is not None}
