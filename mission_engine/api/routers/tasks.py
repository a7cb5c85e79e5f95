"""Task operator routes (list, cancel, retry, rescue stuck)."""

from datetime import timedelta

from fastapi import APIRouter, HTTPException

from mission_engine.db import models
from mission_engine.db.connection import to_iso, utcnow
from mission_engine.error_handler import log_mission_event

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@router.get("")
def list_tasks(organization_id: str = None, mission_id: str = None, status: str = None,
               type: str = None, parent_task_id: str = None, limit: int = 100):
    return models.list_tasks(organization_id, mission_id, status, type, parent_task_id,
                             _clamp(limit, 1, 500))


@router.get("/{task_id}")
def get_task(task_id: str):
    task = models.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.post("/{task_id}/cancel")
def cancel_task(task_id: str):
    task = models.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if task["status"] == "completed":
        raise HTTPException(status_code=409, detail="Completed tasks cannot be cancelled")
    cancelled = models.cancel_task(task_id)
    if not cancelled:
        raise HTTPException(status_code=409, detail="Task completed before it could be cancelled")
    log_mission_event("warning", f"Task {task['type']} cancelled by operator",
                      organization_id=task["organization_id"], mission_id=task.get("mission_id"),
                      task_id=task_id)
    return cancelled


@router.post("/{task_id}/retry")
def retry_task(task_id: str):
    task = models.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    requeued = models.requeue_task(task_id)
    if not requeued:
        raise HTTPException(status_code=409,
                            detail=f"Only failed or completed tasks can be retried (status: {task['status']})")
    log_mission_event("info", f"Task {task['type']} requeued by operator",
                      organization_id=task["organization_id"], mission_id=task.get("mission_id"),
                      task_id=task_id, details={"retry_count": requeued["retry_count"]})
    return requeued


@router.post("/rescue-stuck")
def rescue_stuck(olderThanMinutes: int = 15, limit: int = 100):
    minutes = _clamp(olderThanMinutes, 1, 240)
    cutoff = to_iso(utcnow() - timedelta(minutes=minutes))
    rescued = models.rescue_stuck_tasks(cutoff, _clamp(limit, 1, 500))
    return {"rescued": len(rescued), "task_ids": rescued, "older_than_minutes": minutes}
