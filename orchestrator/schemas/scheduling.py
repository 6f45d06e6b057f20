"""Pydantic schemas for business hours, send windows, and scheduled messages."""

from datetime import datetime, time
from uuid import UUID

from pydantic import BaseModel, Field

from orchestrator.db.enums import Channel


class BusinessHoursDay(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday")
    is_enabled: bool = True
    start_time: time
    end_time: time

    model_config = {"from_attributes": True}


class BusinessHoursResponse(BaseModel):
    timezone: str
    enforce_business_hours: bool
    holiday_country: str | None
    days: list[BusinessHoursDay]


class BusinessHoursUpdate(BaseModel):
    timezone: str | None = None
    enforce_business_hours: bool | None = None
    days: list[BusinessHoursDay] = Field(default_factory=list, max_length=7)


class SendWindowResponse(BaseModel):
    hour_of_day: int
    day_of_week: int
    engagement_score: float
    open_count: int
    click_count: int

    model_config = {"from_attributes": True}


class MessageCreate(BaseModel):
    channel: Channel = Channel.EMAIL
    address: str | None = Field(None, min_length=1, max_length=255)
    contact_id: UUID | None = None
    subject: str | None = None
    body: str = Field(..., min_length=1)
    scheduled_for: datetime
    max_retries: int | None = Field(None, ge=0, le=10)


class MessageResponse(BaseModel):
    id: UUID
    channel: str
    address: str
    contact_id: UUID | None
    subject: str | None
    status: str
    scheduled_for: datetime
    retry_count: int
    max_retries: int
    sent_at: datetime | None
    error_message: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class EngagementEvent(BaseModel):
    """Provider callback normalized to one shape."""

    event_type: str = Field(..., description="open | click | bounce | complaint")
    provider_message_id: str = Field(..., min_length=1)
    occurred_at: datetime | None = None
