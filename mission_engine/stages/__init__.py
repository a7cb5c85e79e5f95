"""Stage executors, one per task type."""

from mission_engine.pipeline import TaskType
from mission_engine.stages import campaign, contact, enrich, evaluate, investigate, report, search
from mission_engine.stages.base import StageContext

EXECUTORS = {
    TaskType.GENERATE_CAMPAIGN: campaign.execute,
    TaskType.SEARCH: search.execute,
    TaskType.ENRICH: enrich.execute,
    TaskType.INVESTIGATE: investigate.execute,
    TaskType.CONTACT: contact.execute,
    TaskType.CONTACT_INITIAL: contact.execute,
    TaskType.EVALUATE: evaluate.execute,
    TaskType.CONTACT_CAMPAIGN: contact.execute_campaign,
    TaskType.GENERATE_REPORT: report.execute,
}

__all__ = ["EXECUTORS", "StageContext"]
