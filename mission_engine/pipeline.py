"""
Pipeline topology - task types, statuses and the allowed chaining edges.

Stages never insert follow-on tasks themselves; they call chain(), which checks
the edge against TRANSITIONS and validates the payload against the successor's
model before the row is written.
"""

import logging
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel

from mission_engine.db import models
from mission_engine.error_handler import InvalidTransitionError
from mission_engine.payloads import (
    ContactCampaignPayload, ContactPayload, EnrichPayload, EvaluatePayload,
    GenerateCampaignPayload, InvestigatePayload, ReportPayload, SearchPayload,
)

logger = logging.getLogger("mission_engine.pipeline")


class TaskType(str, Enum):
    GENERATE_CAMPAIGN = "GENERATE_CAMPAIGN"
    SEARCH = "SEARCH"
    ENRICH = "ENRICH"
    INVESTIGATE = "INVESTIGATE"
    CONTACT = "CONTACT"
    CONTACT_INITIAL = "CONTACT_INITIAL"
    EVALUATE = "EVALUATE"
    CONTACT_CAMPAIGN = "CONTACT_CAMPAIGN"
    GENERATE_REPORT = "GENERATE_REPORT"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


PAYLOAD_MODELS = {
    TaskType.GENERATE_CAMPAIGN: GenerateCampaignPayload,
    TaskType.SEARCH: SearchPayload,
    TaskType.ENRICH: EnrichPayload,
    TaskType.INVESTIGATE: InvestigatePayload,
    TaskType.CONTACT: ContactPayload,
    TaskType.CONTACT_INITIAL: ContactPayload,
    TaskType.EVALUATE: EvaluatePayload,
    TaskType.CONTACT_CAMPAIGN: ContactCampaignPayload,
    TaskType.GENERATE_REPORT: ReportPayload,
}

# current type -> {allowed next type: condition}
TRANSITIONS = {
    TaskType.GENERATE_CAMPAIGN: {
        TaskType.SEARCH: "campaign created or reused",
    },
    TaskType.SEARCH: {
        TaskType.ENRICH: "new leads found and enrichment requested, or saved leads queued",
        TaskType.CONTACT: "no new or saved leads, enriched leads never contacted",
        TaskType.GENERATE_REPORT: "pipeline empty, operator alert",
    },
    TaskType.ENRICH: {
        TaskType.INVESTIGATE: "deep enrichment",
        TaskType.CONTACT: "basic enrichment, leads with email",
    },
    TaskType.INVESTIGATE: {
        TaskType.CONTACT: "one task per researched lead, scheduled at local morning",
    },
    TaskType.CONTACT: {},
    TaskType.CONTACT_INITIAL: {},
    TaskType.EVALUATE: {
        TaskType.CONTACT_CAMPAIGN: "lead qualified",
    },
    TaskType.CONTACT_CAMPAIGN: {},
    TaskType.GENERATE_REPORT: {},
}

# Types created without a parent task (tick scheduling, promotion scan, API)
ROOT_TYPES = {
    TaskType.GENERATE_CAMPAIGN,
    TaskType.SEARCH,
    TaskType.EVALUATE,
    TaskType.GENERATE_REPORT,
}


def task_type(value: Union[str, TaskType]) -> TaskType:
    try:
        return TaskType(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown task type: {value}") from None


def can_chain(current: Union[str, TaskType], successor: Union[str, TaskType]) -> bool:
    return task_type(successor) in TRANSITIONS[task_type(current)]


def parse_payload(type_: Union[str, TaskType], payload) -> BaseModel:
    """Validate a stored payload against its task type's model."""
    model = PAYLOAD_MODELS[task_type(type_)]
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return model.model_validate(payload or {})


def _insert(organization_id: str, mission_id: Optional[str], type_: TaskType, payload: BaseModel,
            parent_task_id: str = None, scheduled_for: str = None,
            idempotency_key: str = None) -> dict:
    return models.create_task({
        "organization_id": organization_id,
        "mission_id": mission_id,
        "type": type_.value,
        "payload": payload.model_dump(mode="json"),
        "parent_task_id": parent_task_id,
        "scheduled_for": scheduled_for,
        "idempotency_key": idempotency_key,
    })


def chain(parent: dict, successor: Union[str, TaskType], payload, scheduled_for: str = None,
          idempotency_key: str = None) -> dict:
    """Insert a follow-on task for `parent` after checking the edge and payload.

    Raises:
        InvalidTransitionError: the edge is not in TRANSITIONS.
        pydantic.ValidationError: the payload does not fit the successor's model.
    """
    current = task_type(parent["type"])
    successor = task_type(successor)
    if successor not in TRANSITIONS[current]:
        raise InvalidTransitionError(f"{current.value} cannot chain to {successor.value}")

    validated = parse_payload(successor, payload)
    task = _insert(parent["organization_id"], parent.get("mission_id"), successor, validated,
                   parent_task_id=parent["id"], scheduled_for=scheduled_for,
                   idempotency_key=idempotency_key)
    logger.info("Chained %s -> %s (%s)", current.value, successor.value,
                task.get("id", "duplicate"), extra={"task_id": parent["id"]})
    return task


def create_root_task(organization_id: str, mission_id: Optional[str], type_: Union[str, TaskType],
                     payload, scheduled_for: str = None, idempotency_key: str = None) -> dict:
    """Insert a task that starts a lineage (no parent)."""
    type_ = task_type(type_)
    if type_ not in ROOT_TYPES:
        raise InvalidTransitionError(f"{type_.value} can only be created by chaining")
    return _insert(organization_id, mission_id, type_, parse_payload(type_, payload),
                   scheduled_for=scheduled_for, idempotency_key=idempotency_key)
