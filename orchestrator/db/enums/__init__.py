"""Enum definitions for application constants."""

from orchestrator.db.enums.automation import (
    ConditionLogic,
    ConditionOperator,
    DependencyType,
    ExecutionStatus,
    TriggerType,
)
from orchestrator.db.enums.campaigns import (
    CAMPAIGN_TERMINAL_STATUSES,
    RECIPIENT_SENDABLE_STATUSES,
    RECIPIENT_TERMINAL_STATUSES,
    CampaignStatus,
    RecipientStatus,
)
from orchestrator.db.enums.jobs import JobType
from orchestrator.db.enums.messages import (
    Channel,
    EngagementKind,
    MessageStatus,
    ProviderEventType,
    SuppressionReason,
)

__all__ = [
    "CAMPAIGN_TERMINAL_STATUSES",
    "RECIPIENT_SENDABLE_STATUSES",
    "RECIPIENT_TERMINAL_STATUSES",
    "CampaignStatus",
    "Channel",
    "ConditionLogic",
    "ConditionOperator",
    "DependencyType",
    "EngagementKind",
    "ExecutionStatus",
    "JobType",
    "MessageStatus",
    "ProviderEventType",
    "RecipientStatus",
    "SuppressionReason",
    "TriggerType",
]
