"""Organization routes (daily quotas, config, exclusions, task summary, reports)."""

from fastapi import APIRouter
from pydantic import BaseModel
from typing import Optional

from mission_engine import quota
from mission_engine.db import models

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


class OrgConfigUpdate(BaseModel):
    daily_search_limit: Optional[int] = None
    notification_email: Optional[str] = None
    sender_name: Optional[str] = None
    company_profile: Optional[dict] = None


@router.get("/{organization_id}/quotas")
def get_quotas(organization_id: str, mission_id: str = None, day: str = None):
    """Today's usage with the ceilings that apply (mission ceilings need mission_id)."""
    day = day or quota.today()
    usage = quota.get_daily_usage(organization_id, day)
    org_config = models.get_org_config(organization_id)
    mission = models.get_mission(mission_id) if mission_id else None

    limits = {}
    for kind in quota.LIMIT_POLICY:
        limit = quota.limit_for(kind, mission, org_config)
        limits[kind] = {"used": usage[kind], "limit": limit, "remaining": max(0, limit - usage[kind])}
    return {
        "organization_id": organization_id,
        "usage_date": day,
        "usage": {k: usage[k] for k in quota.USAGE_KINDS},
        "limits": limits,
    }


@router.get("/{organization_id}/config")
def get_org_config(organization_id: str):
    return models.get_org_config(organization_id)


@router.put("/{organization_id}/config")
def update_org_config(organization_id: str, req: OrgConfigUpdate):
    return models.upsert_org_config(organization_id, req.model_dump(exclude_none=True))


@router.get("/{organization_id}/tasks/summary")
def task_summary(organization_id: str):
    return models.count_tasks_by_status(organization_id)


@router.get("/{organization_id}/reports")
def list_reports(organization_id: str, report_type: str = None, limit: int = 50):
    return models.list_reports(organization_id, report_type, limit)


class ExcludedDomainAdd(BaseModel):
    domain: str


@router.get("/{organization_id}/excluded-domains")
def list_excluded_domains(organization_id: str):
    return sorted(models.list_excluded_domains(organization_id))


@router.post("/{organization_id}/excluded-domains")
def add_excluded_domain(organization_id: str, req: ExcludedDomainAdd):
    models.add_excluded_domain(organization_id, req.domain)
    return {"organization_id": organization_id, "domains": sorted(models.list_excluded_domains(organization_id))}
