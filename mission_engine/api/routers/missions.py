"""Mission routes (create, inspect, trigger, pause/resume, logs, leads)."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ValidationError
from typing import Optional

from mission_engine.db import models
from mission_engine.error_handler import InvalidTransitionError, log_mission_event
from mission_engine.pipeline import ROOT_TYPES, TaskType, create_root_task, task_type

router = APIRouter(prefix="/api/missions", tags=["missions"])


class MissionCreate(BaseModel):
    organization_id: str
    user_id: Optional[str] = None
    title: str
    params: Optional[dict] = {}
    daily_enrich_limit: Optional[int] = 10
    daily_investigate_limit: Optional[int] = 5
    daily_contact_limit: Optional[int] = 3


class MissionTrigger(BaseModel):
    type: str = "SEARCH"
    payload: Optional[dict] = None
    scheduled_for: Optional[str] = None


def _mission_or_404(mission_id: str) -> dict:
    mission = models.get_mission(mission_id)
    if not mission:
        raise HTTPException(status_code=404, detail="Mission not found")
    return mission


# ─── MISSIONS ─────────────────────────────────────────────────

@router.post("")
def create_mission(req: MissionCreate):
    return models.create_mission(req.model_dump())


@router.get("")
def list_missions(organization_id: str = None, status: str = None, limit: int = 100):
    return models.list_missions(organization_id, status, limit)


@router.get("/{mission_id}")
def get_mission(mission_id: str):
    mission = _mission_or_404(mission_id)
    return {**mission, "funnel": models.mission_funnel(mission_id)}


@router.post("/{mission_id}/trigger")
def trigger_mission(mission_id: str, req: MissionTrigger):
    """Queue a root task for the mission now (bypasses the daily scheduler)."""
    mission = _mission_or_404(mission_id)
    try:
        type_ = task_type(req.type)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if type_ not in ROOT_TYPES:
        raise HTTPException(status_code=422, detail=f"{type_.value} cannot start a pipeline")

    payload = req.payload
    if payload is None:
        payload = {**(mission.get("params") or {}),
                   "user_id": mission.get("user_id"), "mission_title": mission["title"]}
        if type_ == TaskType.GENERATE_REPORT:
            payload = {"report_type": "mission", "user_id": mission.get("user_id"),
                       "mission_id": mission_id}
    try:
        task = create_root_task(mission["organization_id"], mission_id, type_, payload,
                                scheduled_for=req.scheduled_for)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    log_mission_event("info", f"Task {type_.value} triggered manually",
                      organization_id=mission["organization_id"], mission_id=mission_id,
                      task_id=task["id"])
    return task


@router.post("/{mission_id}/pause")
def pause_mission(mission_id: str):
    _mission_or_404(mission_id)
    return models.update_mission_status(mission_id, "paused")


@router.post("/{mission_id}/resume")
def resume_mission(mission_id: str):
    mission = _mission_or_404(mission_id)
    if mission["status"] == "completed":
        raise HTTPException(status_code=409, detail="Completed missions cannot be resumed")
    return models.update_mission_status(mission_id, "active")


@router.get("/{mission_id}/logs")
def mission_logs(mission_id: str, level: str = None, limit: int = 100):
    _mission_or_404(mission_id)
    return models.list_mission_logs(mission_id=mission_id, level=level, limit=limit)


@router.get("/{mission_id}/leads")
def mission_leads(mission_id: str, status: str = None, limit: int = 100):
    _mission_or_404(mission_id)
    return models.list_leads(mission_id, status, limit)

