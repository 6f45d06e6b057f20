"""Automation rules, rule dependencies, and executions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orchestrator.db.base import Base, utcnow
from orchestrator.db.enums import ConditionLogic, ExecutionStatus


class AutomationRule(Base):
    """
    A configured automation that sends a message to a contact when triggered.

    Rules are soft-disabled (is_active=False) rather than deleted while any
    dependency edge references them.
    """

    __tablename__ = "automation_rules"
    __table_args__ = (
        Index("idx_rules_org_trigger", "organization_id", "trigger_type", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)  # 'email' | 'whatsapp'

    # Trigger
    trigger_type: Mapped[str] = mapped_column(String(30), nullable=False)
    trigger_config: Mapped[dict] = mapped_column(default=dict, nullable=False)
    conditions: Mapped[list] = mapped_column(default=list, nullable=False)
    condition_logic: Mapped[str] = mapped_column(
        String(5), default=ConditionLogic.AND.value, nullable=False
    )

    # Content
    subject_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_template: Mapped[str] = mapped_column(Text, nullable=False)
    # [{"name": "A", "weight": 50, "subject": "...", "body": "..."}]
    ab_variants: Mapped[list] = mapped_column(default=list, nullable=False)

    # Timing
    send_delay_minutes: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    use_optimal_send_time: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    priority: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )

    # Limits
    max_retries: Mapped[int] = mapped_column(
        Integer, default=3, server_default=text("3"), nullable=False
    )
    max_sends_per_contact: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cooldown_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )

    # Running counters
    triggered_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    sent_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    failed_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )


class RuleDependency(Base):
    """
    Directed edge rule -> depends_on_rule.

    The per-organization edge set stays acyclic; see dependency_service.
    """

    __tablename__ = "rule_dependencies"
    __table_args__ = (
        UniqueConstraint("rule_id", "depends_on_rule_id", name="uq_rule_dependency"),
        CheckConstraint("rule_id <> depends_on_rule_id", name="ck_rule_dependency_self"),
        CheckConstraint("delay_minutes >= 0", name="ck_rule_dependency_delay"),
        Index("idx_rule_dependencies_org", "organization_id"),
        Index("idx_rule_dependencies_depends_on", "depends_on_rule_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False
    )
    depends_on_rule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False
    )
    dependency_type: Mapped[str] = mapped_column(String(20), nullable=False)
    delay_minutes: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class AutomationExecution(Base):
    """
    One rule firing for one contact.

    pending -> scheduled -> processing -> sent | failed. A failed attempt with
    retries left goes back to scheduled with a later scheduled_for.
    """

    __tablename__ = "automation_executions"
    __table_args__ = (
        Index("idx_executions_status_due", "status", "scheduled_for"),
        Index("idx_executions_rule_contact", "rule_id", "contact_id"),
        Index("idx_executions_org_created", "organization_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    trigger_type: Mapped[str] = mapped_column(String(30), nullable=False)
    trigger_data: Mapped[dict] = mapped_column(default=dict, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=ExecutionStatus.SCHEDULED.value, nullable=False
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    claim_token: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, default=3, server_default=text("3"), nullable=False
    )

    # Rendered content (fixed at evaluation time)
    ab_variant: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Set later by an external conversion event
    conversion_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    conversion_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )

    rule: Mapped["AutomationRule"] = relationship()
