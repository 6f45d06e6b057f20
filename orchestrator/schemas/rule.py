"""Pydantic schemas for automation rules and dependencies."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from orchestrator.db.enums import (
    Channel,
    ConditionLogic,
    ConditionOperator,
    DependencyType,
    TriggerType,
)


class RuleCondition(BaseModel):
    field: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: str | int | float | list[str] | None = None


class ABVariant(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    weight: float = Field(1, ge=0)
    subject: str | None = None
    body: str | None = None


class RuleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    channel: Channel = Channel.EMAIL
    trigger_type: TriggerType
    trigger_config: dict = Field(default_factory=dict)
    conditions: list[RuleCondition] = Field(default_factory=list)
    condition_logic: ConditionLogic = ConditionLogic.AND
    subject_template: str | None = None
    body_template: str = Field(..., min_length=1)
    ab_variants: list[ABVariant] = Field(default_factory=list)
    send_delay_minutes: int = Field(0, ge=0)
    use_optimal_send_time: bool = False
    priority: int = 0
    max_retries: int | None = Field(None, ge=0, le=10)
    max_sends_per_contact: int | None = Field(None, ge=1)
    cooldown_period_days: int | None = Field(None, ge=1)


class RuleCreate(RuleBase):
    is_active: bool = True


class RuleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    trigger_config: dict | None = None
    conditions: list[RuleCondition] | None = None
    condition_logic: ConditionLogic | None = None
    subject_template: str | None = None
    body_template: str | None = Field(None, min_length=1)
    ab_variants: list[ABVariant] | None = None
    send_delay_minutes: int | None = Field(None, ge=0)
    use_optimal_send_time: bool | None = None
    priority: int | None = None
    max_retries: int | None = Field(None, ge=0, le=10)
    max_sends_per_contact: int | None = Field(None, ge=1)
    cooldown_period_days: int | None = Field(None, ge=1)
    is_active: bool | None = None


class RuleResponse(BaseModel):
    id: UUID
    name: str
    description: str | None
    channel: str
    trigger_type: str
    trigger_config: dict
    conditions: list
    condition_logic: str
    subject_template: str | None
    body_template: str
    ab_variants: list
    send_delay_minutes: int
    use_optimal_send_time: bool
    priority: int
    max_retries: int
    max_sends_per_contact: int | None
    cooldown_period_days: int | None
    is_active: bool
    triggered_count: int
    sent_count: int
    failed_count: int
    created_at: datetime

    model_config = {"from_attributes": True}


class DependencyCreate(BaseModel):
    depends_on_rule_id: UUID
    dependency_type: DependencyType
    delay_minutes: int = Field(0, ge=0)

    @field_validator("delay_minutes")
    @classmethod
    def cap_delay(cls, value: int) -> int:
        # One year
        if value > 525600:
            raise ValueError("delay_minutes is too large")
        return value


class DependencyResponse(BaseModel):
    id: UUID
    rule_id: UUID
    depends_on_rule_id: UUID
    dependency_type: str
    delay_minutes: int
    created_at: datetime

    model_config = {"from_attributes": True}
