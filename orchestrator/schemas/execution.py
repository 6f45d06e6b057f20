"""Pydantic schemas for trigger evaluation and executions."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from orchestrator.db.enums import TriggerType


class TriggerEvaluateRequest(BaseModel):
    rule_id: UUID
    contact_id: UUID
    trigger_type: TriggerType
    trigger_data: dict = Field(default_factory=dict)
    preview: bool = False


class TriggerEventRequest(BaseModel):
    contact_id: UUID
    trigger_type: TriggerType
    trigger_data: dict = Field(default_factory=dict)


class RenderedPreviewResponse(BaseModel):
    rule_id: UUID
    contact_id: UUID
    channel: str
    to: str | None
    subject: str | None
    body: str
    ab_variant: str | None
    would_schedule_for: datetime

    model_config = {"from_attributes": True}


class ExecutionResponse(BaseModel):
    id: UUID
    rule_id: UUID
    contact_id: UUID
    trigger_type: str
    status: str
    scheduled_for: datetime | None
    sent_at: datetime | None
    error_message: str | None
    retry_count: int
    max_retries: int
    ab_variant: str | None
    provider_message_id: str | None
    conversion_type: str | None
    conversion_value: float | None
    converted_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TriggerEvaluateResponse(BaseModel):
    """Exactly one of execution / preview is set; neither when the rule was skipped."""

    outcome: str  # 'scheduled' | 'pending' | 'skipped' | 'preview'
    execution: ExecutionResponse | None = None
    preview: RenderedPreviewResponse | None = None


class ConversionRequest(BaseModel):
    conversion_type: str = Field(..., min_length=1, max_length=50)
    conversion_value: float | None = None
