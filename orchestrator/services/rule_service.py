"""Automation rule CRUD."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.enums import Channel
from orchestrator.db.models import AutomationExecution, AutomationRule
from orchestrator.schemas.rule import RuleCreate, RuleUpdate
from orchestrator.services import dependency_service

logger = logging.getLogger(__name__)

NULLABLE_FIELDS = {
    "description",
    "subject_template",
    "max_sends_per_contact",
    "cooldown_period_days",
}


def _validate_content(channel: str, subject_template: str | None) -> None:
    if channel == Channel.EMAIL.value and not subject_template:
        raise ValueError("subject_template is required for email rules")


def create_rule(db: Session, org_id: UUID, data: RuleCreate) -> AutomationRule:
    """Create a rule. Caller commits."""
    _validate_content(data.channel.value, data.subject_template)
    rule = AutomationRule(
        organization_id=org_id,
        name=data.name,
        description=data.description,
        channel=data.channel.value,
        trigger_type=data.trigger_type.value,
        trigger_config=data.trigger_config,
        conditions=[c.model_dump(mode="json") for c in data.conditions],
        condition_logic=data.condition_logic.value,
        subject_template=data.subject_template,
        body_template=data.body_template,
        ab_variants=[v.model_dump(mode="json") for v in data.ab_variants],
        send_delay_minutes=data.send_delay_minutes,
        use_optimal_send_time=data.use_optimal_send_time,
        priority=data.priority,
        max_retries=(
            data.max_retries if data.max_retries is not None else settings.DEFAULT_MAX_RETRIES
        ),
        max_sends_per_contact=data.max_sends_per_contact,
        cooldown_period_days=data.cooldown_period_days,
        is_active=data.is_active,
    )
    db.add(rule)
    db.flush()
    return rule


def get_rule(db: Session, org_id: UUID, rule_id: UUID) -> AutomationRule | None:
    return (
        db.query(AutomationRule)
        .filter(AutomationRule.id == rule_id, AutomationRule.organization_id == org_id)
        .first()
    )


def list_rules(
    db: Session,
    org_id: UUID,
    trigger_type: str | None = None,
    include_inactive: bool = True,
) -> list[AutomationRule]:
    query = db.query(AutomationRule).filter(AutomationRule.organization_id == org_id)
    if trigger_type:
        query = query.filter(AutomationRule.trigger_type == trigger_type)
    if not include_inactive:
        query = query.filter(AutomationRule.is_active.is_(True))
    return query.order_by(AutomationRule.priority.desc(), AutomationRule.created_at).all()


def update_rule(
    db: Session, org_id: UUID, rule_id: UUID, data: RuleUpdate
) -> AutomationRule | None:
    """Apply a partial update. Returns None if the rule does not exist. Caller commits."""
    rule = get_rule(db, org_id, rule_id)
    if not rule:
        return None

    updates = data.model_dump(exclude_unset=True, mode="json")
    for field, value in updates.items():
        if value is None and field not in NULLABLE_FIELDS:
            continue
        setattr(rule, field, value)
    _validate_content(rule.channel, rule.subject_template)
    db.flush()
    return rule


def delete_rule(db: Session, org_id: UUID, rule_id: UUID) -> str | None:
    """
    Delete a rule, or soft-disable it while dependencies or executions
    reference it.

    Returns 'deleted', 'disabled', or None if the rule does not exist. Caller commits.
    """
    rule = get_rule(db, org_id, rule_id)
    if not rule:
        return None

    has_history = (
        db.query(AutomationExecution.id)
        .filter(AutomationExecution.rule_id == rule_id)
        .first()
        is not None
    )
    if has_history or dependency_service.is_referenced(db, org_id, rule_id):
        rule.is_active = False
        db.flush()
        logger.info("Rule soft-disabled", extra=build_log_context(org_id=org_id, rule_id=rule_id))
        return "disabled"

    db.delete(rule)
    db.flush()
    return "deleted"
