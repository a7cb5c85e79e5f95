"""Lead engagement routes (open/click/reply webhooks, lead timeline)."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Literal, Optional

from mission_engine.db import models

router = APIRouter(prefix="/api/leads", tags=["engagement"])


class InteractionLog(BaseModel):
    type: Literal["open", "click", "reply"]
    content: Optional[str] = None
    mission_id: Optional[str] = None


@router.post("/{lead_id}/interactions")
def log_interaction(lead_id: str, req: InteractionLog):
    lead = models.get_lead(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    contacted = models.record_interaction(
        lead_id, req.type, req.content,
        mission_id=req.mission_id or lead.get("mission_id"),
        organization_id=lead.get("organization_id"),
    )
    return {"lead_id": lead_id, "type": req.type,
            "engagement_score": contacted.get("engagement_score", 0)}


@router.get("/{lead_id}")
def get_lead(lead_id: str):
    lead = models.get_lead(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return {**lead, "responses": models.list_lead_responses(lead_id)}


@router.get("/{lead_id}/events")
def lead_events(lead_id: str, event_type: str = None, limit: int = 200):
    return models.list_lead_events(lead_id=lead_id, event_type=event_type, limit=limit)
