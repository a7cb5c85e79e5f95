"""
Task payload models, one per task type.

A payload carries everything its stage needs plus what the stage hands to its
successor; nothing is read back from the mission except limits and the
organization config. Unknown keys are dropped on validation.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class LeadRef(BaseModel):
    """A lead as it travels between stages."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    source_id: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    company: Optional[str] = None
    company_domain: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    location: Optional[str] = None
    industry: Optional[str] = None
    research: Optional[dict] = None


class MissionGoal(BaseModel):
    """Audience and campaign parameters copied from the mission."""
    model_config = ConfigDict(extra="ignore")

    user_id: Optional[str] = None
    mission_title: Optional[str] = None
    job_title: Optional[str] = None
    location: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    seniorities: List[str] = Field(default_factory=list)
    keywords: Optional[str] = None
    enrichment_level: Optional[Literal["basic", "deep"]] = None
    campaign_name: Optional[str] = None
    campaign_context: Optional[str] = None
    dry_run: bool = False


class GenerateCampaignPayload(MissionGoal):
    pass


class SearchPayload(MissionGoal):
    pass


class EnrichPayload(MissionGoal):
    leads: List[LeadRef] = Field(default_factory=list)
    source: Literal["search", "saved_queue"] = "search"


class InvestigatePayload(MissionGoal):
    leads: List[LeadRef] = Field(default_factory=list)


class ContactPayload(MissionGoal):
    leads: List[LeadRef] = Field(default_factory=list)
    source: Literal["enrich", "investigate", "stranded_enriched"] = "enrich"


class EvaluatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: Optional[str] = None
    campaign_name: Optional[str] = None
    leads: List[LeadRef] = Field(default_factory=list)


class ContactCampaignPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: Optional[str] = None
    campaign_name: str
    leads: List[LeadRef] = Field(default_factory=list)
    dry_run: bool = False


class ReportPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    report_type: Literal["daily", "mission", "lead_exhaustion_alert"]
    user_id: Optional[str] = None
    mission_id: Optional[str] = None
    reason: Optional[str] = None
    details: dict = Field(default_factory=dict)


def goal_fields(payload: BaseModel) -> dict:
    """The MissionGoal part of a payload, for forwarding to the next stage."""
    return {name: getattr(payload, name) for name in MissionGoal.model_fields
            if hasattr(payload, name)}
