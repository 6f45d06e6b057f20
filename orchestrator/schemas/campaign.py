"""Pydantic schemas for campaigns and recipients."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from orchestrator.db.enums import Channel


class CampaignCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    channel: Channel = Channel.EMAIL
    subject_template: str | None = None
    body_template: str = Field(..., min_length=1)
    max_retries: int | None = Field(None, ge=0, le=10)

    @model_validator(mode="after")
    def email_needs_subject(self):
        if self.channel == Channel.EMAIL and not self.subject_template:
            raise ValueError("subject_template is required for email campaigns")
        return self


class RecipientInput(BaseModel):
    address: str = Field(..., min_length=1, max_length=255)
    contact_id: UUID | None = None
    variables: dict[str, str] = Field(default_factory=dict)


class CampaignEnqueueRequest(BaseModel):
    """Recipients come from contacts, explicit addresses, or both."""

    contact_ids: list[UUID] = Field(default_factory=list)
    recipients: list[RecipientInput] = Field(default_factory=list)
    scheduled_at: datetime | None = None

    @model_validator(mode="after")
    def needs_recipients(self):
        if not self.contact_ids and not self.recipients:
            raise ValueError("Provide contact_ids or recipients")
        return self


class CampaignEnqueueResponse(BaseModel):
    campaign_id: UUID
    total_recipients: int
    skipped: int
    scheduled_at: datetime


class CampaignResponse(BaseModel):
    id: UUID
    name: str
    channel: str
    subject_template: str | None
    body_template: str
    status: str
    scheduled_at: datetime | None
    max_retries: int
    total_recipients: int
    sent_count: int
    failed_count: int
    pending_count: int
    cancelled_count: int
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class CampaignListItem(BaseModel):
    id: UUID
    name: str
    channel: str
    status: str
    scheduled_at: datetime | None
    total_recipients: int
    sent_count: int
    failed_count: int
    pending_count: int

    model_config = {"from_attributes": True}


class CampaignRecipientResponse(BaseModel):
    id: UUID
    campaign_id: UUID
    contact_id: UUID | None
    address: str
    status: str
    retry_count: int
    max_retries: int
    next_attempt_at: datetime | None
    sent_at: datetime | None
    error_message: str | None
    open_count: int
    click_count: int

    model_config = {"from_attributes": True}


class CampaignStatsResponse(BaseModel):
    campaign_id: UUID
    status: str
    total_recipients: int
    sent_count: int
    failed_count: int
    pending_count: int
    cancelled_count: int
    retrying_count: int
    opened_count: int
    clicked_count: int
    open_rate: float
    click_rate: float
