"""Pydantic schemas for API request/response models."""

from orchestrator.schemas.campaign import (
    CampaignCreate,
    CampaignEnqueueRequest,
    CampaignEnqueueResponse,
    CampaignListItem,
    CampaignRecipientResponse,
    CampaignResponse,
    CampaignStatsResponse,
    RecipientInput,
)
from orchestrator.schemas.execution import (
    ConversionRequest,
    ExecutionResponse,
    RenderedPreviewResponse,
    TriggerEvaluateRequest,
    TriggerEvaluateResponse,
    TriggerEventRequest,
)
from orchestrator.schemas.rule import (
    ABVariant,
    DependencyCreate,
    DependencyResponse,
    RuleCondition,
    RuleCreate,
    RuleResponse,
    RuleUpdate,
)
from orchestrator.schemas.scheduling import (
    BusinessHoursDay,
    BusinessHoursResponse,
    BusinessHoursUpdate,
    EngagementEvent,
    MessageCreate,
    MessageResponse,
    SendWindowResponse,
)

__all__ = [
    "ABVariant",
    "BusinessHoursDay",
    "BusinessHoursResponse",
    "BusinessHoursUpdate",
    "CampaignCreate",
    "CampaignEnqueueRequest",
    "CampaignEnqueueResponse",
    "CampaignListItem",
    "CampaignRecipientResponse",
    "CampaignResponse",
    "CampaignStatsResponse",
    "ConversionRequest",
    "DependencyCreate",
    "DependencyResponse",
    "EngagementEvent",
    "ExecutionResponse",
    "MessageCreate",
    "MessageResponse",
    "RecipientInput",
    "RenderedPreviewResponse",
    "RuleCondition",
    "RuleCreate",
    "RuleResponse",
    "RuleUpdate",
    "SendWindowResponse",
    "TriggerEvaluateRequest",
    "TriggerEvaluateResponse",
    "TriggerEventRequest",
]
