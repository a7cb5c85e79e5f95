"""
External collaborator clients - lead search, enrichment, research, email
delivery and campaign generation.

All of them are thin JSON-over-HTTP wrappers on a shared requests.Session.
Network errors and non-2xx answers raise ServiceError; interpreting the
payload is left to the stage that made the call.

Stages receive a Collaborators bundle so tests can swap any client for a fake.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from mission_engine import config
from mission_engine.error_handler import ServiceError

logger = logging.getLogger("mission_engine.clients")


class ServiceClient:
    """Base JSON client."""

    service_name = "service"

    def __init__(self, url: str = None, timeout: int = None, session: requests.Session = None,
                 internal_secret: str = None):
        self.url = (url or "").rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.session = session or requests.Session()
        self.internal_secret = config.INTERNAL_API_SECRET if internal_secret is None else internal_secret

    def _headers(self, user_id: str = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if user_id:
            headers["x-user-id"] = user_id
        if self.internal_secret:
            headers["x-internal-api-secret"] = self.internal_secret
        return headers

    def _post(self, body, user_id: str = None, url: str = None) -> dict:
        target = url or self.url
        try:
            resp = self.session.post(target, json=body, headers=self._headers(user_id),
                                     timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("%s unreachable at %s: %s", self.service_name, target, e)
            raise ServiceError(self.service_name, str(e)) from e

        if not resp.ok:
            raise ServiceError(self.service_name, resp.text[:400], status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise ServiceError(self.service_name, f"invalid JSON response: {e}",
                               status_code=resp.status_code) from e


# ─── LEAD SEARCH ───────────────────────────────────────────────

class LeadSearchClient(ServiceClient):
    service_name = "lead-search"

    def __init__(self, url: str = None, **kwargs):
        super().__init__(url or config.LEAD_SEARCH_URL, **kwargs)

    def search(self, filters: dict, user_id: str = None) -> List[dict]:
        """Return raw people records for the audience filters.

        filters: titles, locations, industry_keywords, employee_ranges,
        seniorities, max_results.
        """
        data = self._post(filters, user_id=user_id)
        if isinstance(data, list):
            return data
        for key in ("leads", "results", "people"):
            if isinstance(data.get(key), list):
                return data[key]
        nested = data.get("data") or {}
        return nested.get("leads", []) if isinstance(nested, dict) else []


# ─── ENRICHMENT ────────────────────────────────────────────────

class EnrichmentClient(ServiceClient):
    service_name = "enrichment"

    def __init__(self, url: str = None, **kwargs):
        super().__init__(url or f"{config.APP_URL}/api/leads/enrich", **kwargs)

    def enrich(self, leads: List[dict], reveal_email: bool = True, reveal_phone: bool = False,
               user_id: str = None) -> List[dict]:
        """Enrich leads; each returned record carries back `id` or `clientRef`."""
        data = self._post({
            "leads": leads,
            "revealEmail": reveal_email,
            "revealPhone": reveal_phone,
        }, user_id=user_id)
        enriched = data.get("enriched") if isinstance(data, dict) else None
        return enriched if isinstance(enriched, list) else []


# ─── RESEARCH ──────────────────────────────────────────────────

class ResearchClient(ServiceClient):
    service_name = "research"

    def __init__(self, url: str = None, **kwargs):
        super().__init__(url or config.RESEARCH_WEBHOOK_URL, **kwargs)

    def investigate(self, lead: dict, target_company: dict, caller_profile: dict,
                    user_context: dict, user_id: str = None) -> dict:
        """Cross-analysis report for one lead (pains, value props, talking points, email draft)."""
        data = self._post({
            "companies": [{
                "leadRef": lead.get("id"),
                "targetCompany": target_company,
                "lead": lead,
                "userCompanyProfile": caller_profile,
            }],
            "user_context": user_context,
        }, user_id=user_id)
        if isinstance(data, list):
            data = data[0] if data else {}
        report = data.get("report") if isinstance(data.get("report"), dict) else data
        if not report:
            raise ServiceError(self.service_name, "empty research report")
        return report


# ─── EMAIL ─────────────────────────────────────────────────────

class EmailProvider(ServiceClient):
    """Send-mail endpoint bound to the user's connected mailbox."""

    service_name = "email"

    def __init__(self, url: str = None, **kwargs):
        super().__init__(url or f"{config.APP_URL}/api/contact/send", **kwargs)

    def send(self, to: str, subject: str, body_html: str, user_id: str = None,
             lead_id: str = None, mission_id: str = None, campaign_id: str = None,
             metadata: dict = None) -> dict:
        data = self._post({
            "to": to,
            "subject": subject,
            "body": body_html,
            "isHtml": True,
            "leadId": lead_id,
            "missionId": mission_id,
            "campaignId": campaign_id,
            "userId": user_id,
            "metadata": metadata or {},
        }, user_id=user_id)
        return {
            "provider": data.get("provider") or "unknown",
            "message_id": data.get("messageId") or data.get("id"),
            "thread_id": data.get("threadId"),
        }


# ─── CAMPAIGN GENERATION ───────────────────────────────────────

class CampaignGenerator(ServiceClient):
    service_name = "campaign-generation"

    def __init__(self, url: str = None, **kwargs):
        super().__init__(url or f"{config.APP_URL}/api/ai/generate-campaign", **kwargs)

    def generate(self, context: dict, user_id: str = None) -> List[dict]:
        """Campaign steps as [{name, offset_days, subject, body_html}]."""
        data = self._post(context, user_id=user_id)
        steps = data.get("steps") if isinstance(data, dict) else None
        if not isinstance(steps, list):
            return []
        return [{
            "name": s.get("name"),
            "offset_days": s.get("offsetDays", s.get("offset_days", 0)),
            "subject": s.get("subject", ""),
            "body_html": s.get("bodyHtml", s.get("body_html", "")),
        } for s in steps if isinstance(s, dict)]


@dataclass
class Collaborators:
    """The external services a stage may call."""
    search: LeadSearchClient = field(default_factory=LeadSearchClient)
    enrichment: EnrichmentClient = field(default_factory=EnrichmentClient)
    research: ResearchClient = field(default_factory=ResearchClient)
    email: EmailProvider = field(default_factory=EmailProvider)
    campaign_generator: Optional[CampaignGenerator] = field(default_factory=CampaignGenerator)
