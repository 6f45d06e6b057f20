"""SQLAlchemy ORM models."""

from orchestrator.db.models.automation import (
    AutomationExecution,
    AutomationRule,
    RuleDependency,
)
from orchestrator.db.models.campaigns import Campaign, CampaignRecipient
from orchestrator.db.models.contacts import Contact, ContactDailySendCount, Suppression
from orchestrator.db.models.messages import ScheduledMessage
from orchestrator.db.models.organizations import Organization
from orchestrator.db.models.scheduling import BusinessHours, EngagementPattern

__all__ = [
    "AutomationExecution",
    "AutomationRule",
    "BusinessHours",
    "Campaign",
    "CampaignRecipient",
    "Contact",
    "ContactDailySendCount",
    "EngagementPattern",
    "Organization",
    "RuleDependency",
    "ScheduledMessage",
    "Suppression",
]
