"""Trigger evaluator - decides whether, when, and how a rule fires for a contact.

Per (rule, contact) the evaluator moves an execution through
not-triggered -> pending -> scheduled. Sending is the executor's job.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.base import utcnow
from orchestrator.db.enums import DependencyType, ExecutionStatus, TriggerType
from orchestrator.db.models import AutomationExecution, AutomationRule, Contact, Organization
from orchestrator.services import (
    business_hours_service,
    contact_service,
    dependency_service,
    org_service,
    send_time_service,
    template_service,
)
from orchestrator.services.dependency_service import RuleNotFoundError
from orchestrator.utils.business_hours import NoBusinessHoursConfigured
from orchestrator.utils.conditions import evaluate_conditions, trigger_matches

logger = logging.getLogger(__name__)

# Executions that count as "this rule already fired for the contact"
LIVE_STATUSES = (
    ExecutionStatus.PENDING.value,
    ExecutionStatus.SCHEDULED.value,
    ExecutionStatus.PROCESSING.value,
    ExecutionStatus.SENT.value,
)


class TriggerServiceError(Exception):
    """Base exception for trigger evaluation errors."""

    pass


class ContactNotFoundError(TriggerServiceError):
    """Contact does not exist in the organization."""

    pass


class ContactUnsubscribedError(TriggerServiceError):
    """Contact has unsubscribed; nothing is scheduled."""

    pass


@dataclass
class RenderedPreview:
    """Result of a manual test evaluation. Nothing is persisted or sent."""

    rule_id: UUID
    contact_id: UUID
    channel: str
    to: str | None
    subject: str | None
    body: str
    ab_variant: str | None
    would_schedule_for: datetime


def get_rule(db: Session, org_id: UUID, rule_id: UUID) -> AutomationRule | None:
    return (
        db.query(AutomationRule)
        .filter(AutomationRule.id == rule_id, AutomationRule.organization_id == org_id)
        .first()
    )


def _require_contact(db: Session, org_id: UUID, contact_id: UUID) -> Contact:
    contact = contact_service.get_contact(db, org_id, contact_id)
    if not contact:
        raise ContactNotFoundError(f"Contact {contact_id} not found")
    return contact


def _render(
    rule: AutomationRule,
    contact: Contact,
    trigger_data: dict | None,
    rng: random.Random | None = None,
) -> template_service.RenderedContent:
    variables = template_service.build_variables(
        contact_service.contact_attributes(contact), trigger_data
    )
    return template_service.render_message(
        rule.subject_template, rule.body_template, variables, rule.ab_variants, rng
    )


def is_blocked(db: Session, org_id: UUID, rule_id: UUID, contact_id: UUID) -> bool:
    """True if a rule that blocks this one has a live execution for the contact."""
    blockers = dependency_service.dependents_of(db, org_id, rule_id, DependencyType.BLOCKS)
    if not blockers:
        return False
    return (
        db.query(AutomationExecution.id)
        .filter(
            AutomationExecution.organization_id == org_id,
            AutomationExecution.rule_id.in_([edge.rule_id for edge in blockers]),
            AutomationExecution.contact_id == contact_id,
            AutomationExecution.status.in_(LIVE_STATUSES),
        )
        .first()
        is not None
    )


def _cooldown_active(db: Session, rule: AutomationRule, contact_id: UUID, now: datetime) -> bool:
    if not rule.max_sends_per_contact and not rule.cooldown_period_days:
        return False
    query = db.query(func.count(AutomationExecution.id)).filter(
        AutomationExecution.rule_id == rule.id,
        AutomationExecution.contact_id == contact_id,
        AutomationExecution.status.in_(LIVE_STATUSES),
    )
    if rule.cooldown_period_days:
        query = query.filter(
            AutomationExecution.created_at >= now - timedelta(days=rule.cooldown_period_days)
        )
    limit = rule.max_sends_per_contact or 1
    return (query.scalar() or 0) >= limit


def required_release_time(
    db: Session, org_id: UUID, rule_id: UUID, contact_id: UUID
) -> tuple[bool, datetime | None]:
    """
    Check the rule's required dependencies for a contact.

    Returns (satisfied, release_at) where release_at is the latest
    dependency sent_at + delay across all required edges (None when the rule
    has no required dependencies).
    """
    edges = dependency_service.dependencies_of(db, org_id, rule_id, DependencyType.REQUIRED)
    if not edges:
        return True, None

    release_at: datetime | None = None
    for edge in edges:
        sent_at = (
            db.query(func.max(AutomationExecution.sent_at))
            .filter(
                AutomationExecution.organization_id == org_id,
                AutomationExecution.rule_id == edge.depends_on_rule_id,
                AutomationExecution.contact_id == contact_id,
                AutomationExecution.status == ExecutionStatus.SENT.value,
            )
            .scalar()
        )
        if sent_at is None:
            return False, None
        if sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=timezone.utc)
        edge_release = sent_at + timedelta(minutes=edge.delay_minutes)
        if release_at is None or edge_release > release_at:
            release_at = edge_release
    return True, release_at


def compute_send_time(
    db: Session,
    org: Organization,
    rule: AutomationRule,
    now: datetime,
    release_at: datetime | None = None,
    extra_delay_minutes: int = 0,
) -> datetime:
    """Candidate = max(now + delays, dependency release), then optimizer, then gate."""
    candidate = now + timedelta(minutes=(rule.send_delay_minutes or 0) + extra_delay_minutes)
    if release_at is not None and release_at > candidate:
        candidate = release_at
    if rule.use_optimal_send_time:
        candidate = send_time_service.choose_send_time(db, org.id, candidate, org=org)
    return business_hours_service.next_allowed_instant(db, org.id, candidate, org=org)


def _find_waiting(db: Session, rule_id: UUID, contact_id: UUID) -> AutomationExecution | None:
    return (
        db.query(AutomationExecution)
        .filter(
            AutomationExecution.rule_id == rule_id,
            AutomationExecution.contact_id == contact_id,
            AutomationExecution.status == ExecutionStatus.PENDING.value,
        )
        .first()
    )


def _bump_triggered(db: Session, rule_id: UUID) -> None:
    db.query(AutomationRule).filter(AutomationRule.id == rule_id).update(
        {AutomationRule.triggered_count: AutomationRule.triggered_count + 1},
        synchronize_session=False,
    )


def evaluate_trigger(
    db: Session,
    org_id: UUID,
    trigger_type: TriggerType | str,
    contact_id: UUID,
    rule_id: UUID,
    *,
    trigger_data: dict[str, Any] | None = None,
    preview: bool = False,
    now: datetime | None = None,
    extra_delay_minutes: int = 0,
    rng: random.Random | None = None,
) -> AutomationExecution | RenderedPreview | None:
    """
    Evaluate one rule for one contact.

    Returns:
        RenderedPreview when preview=True (nothing persisted),
        None when the rule is inactive, blocked, or in cooldown,
        a pending execution while required dependencies are unmet,
        otherwise a scheduled execution whose scheduled_for is inside business hours.

    Raises:
        RuleNotFoundError / ContactNotFoundError: unknown ids for this org
        ContactUnsubscribedError: contact unsubscribed (nothing created)
        NoBusinessHoursConfigured: enforcement on without any enabled day

    Caller commits.
    """
    trigger_type = TriggerType(trigger_type)
    now = now or utcnow()
    trigger_data = dict(trigger_data or {})
    log_ctx = build_log_context(org_id=org_id, rule_id=rule_id, contact_id=contact_id)

    org = org_service.require_org(db, org_id)
    rule = get_rule(db, org_id, rule_id)
    if not rule:
        raise RuleNotFoundError(f"Rule {rule_id} not found")
    contact = _require_contact(db, org_id, contact_id)

    if preview:
        content = _render(rule, contact, trigger_data, rng)
        return RenderedPreview(
            rule_id=rule.id,
            contact_id=contact.id,
            channel=rule.channel,
            to=contact_service.address_for_channel(contact, rule.channel),
            subject=content.subject,
            body=content.body,
            ab_variant=content.variant,
            would_schedule_for=compute_send_time(
                db, org, rule, now, extra_delay_minutes=extra_delay_minutes
            ),
        )

    if contact.is_unsubscribed:
        raise ContactUnsubscribedError(f"Contact {contact_id} is unsubscribed")

    if not rule.is_active:
        logger.info("Rule inactive, skipping evaluation", extra=log_ctx)
        return None

    if is_blocked(db, org_id, rule.id, contact.id):
        logger.info("Rule blocked by a dependency for contact, skipping", extra=log_ctx)
        return None

    waiting = _find_waiting(db, rule.id, contact.id)
    if waiting:
        return waiting

    if _cooldown_active(db, rule, contact.id, now):
        logger.info("Rule in cooldown for contact, skipping", extra=log_ctx)
        return None

    content = _render(rule, contact, trigger_data, rng)
    execution = AutomationExecution(
        organization_id=org_id,
        rule_id=rule.id,
        contact_id=contact.id,
        trigger_type=trigger_type.value,
        trigger_data=trigger_data,
        max_retries=rule.max_retries,
        ab_variant=content.variant,
        subject=content.subject,
        body=content.body,
        created_at=now,
    )

    satisfied, release_at = required_release_time(db, org_id, rule.id, contact.id)
    if not satisfied:
        # scheduled_for stays empty until the dependencies complete
        execution.status = ExecutionStatus.PENDING.value
        if extra_delay_minutes:
            execution.trigger_data = {**trigger_data, "extra_delay_minutes": extra_delay_minutes}
        db.add(execution)
        _bump_triggered(db, rule.id)
        db.flush()
        logger.info("Execution waiting on required dependencies", extra=log_ctx)
        return execution

    execution.status = ExecutionStatus.SCHEDULED.value
    execution.scheduled_for = compute_send_time(
        db, org, rule, now, release_at=release_at, extra_delay_minutes=extra_delay_minutes
    )
    db.add(execution)
    _bump_triggered(db, rule.id)
    db.flush()
    logger.info(
        "Execution scheduled for %s",
        execution.scheduled_for.isoformat(),
        extra={**log_ctx, "execution_id": str(execution.id)},
    )
    return execution


def find_matching_rules(
    db: Session,
    org_id: UUID,
    trigger_type: TriggerType,
    contact: Contact,
    trigger_data: dict[str, Any],
) -> list[AutomationRule]:
    """Active rules of the trigger type whose trigger config and conditions match."""
    rules = (
        db.query(AutomationRule)
        .filter(
            AutomationRule.organization_id == org_id,
            AutomationRule.trigger_type == trigger_type.value,
            AutomationRule.is_active.is_(True),
        )
        .order_by(AutomationRule.priority.desc(), AutomationRule.created_at)
        .all()
    )
    attributes = contact_service.contact_attributes(contact)
    return [
        rule
        for rule in rules
        if trigger_matches(trigger_type.value, rule.trigger_config, trigger_data)
        and evaluate_conditions(rule.conditions, attributes, trigger_data, rule.condition_logic)
    ]


def dispatch_event(
    db: Session,
    org_id: UUID,
    trigger_type: TriggerType | str,
    contact_id: UUID,
    trigger_data: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> list[AutomationExecution]:
    """
    Evaluate every matching rule for an inbound event in dependency order.

    An unsubscribed contact is logged and skipped. Caller commits.
    """
    trigger_type = TriggerType(trigger_type)
    trigger_data = dict(trigger_data or {})
    now = now or utcnow()
    contact = _require_contact(db, org_id, contact_id)

    matched = find_matching_rules(db, org_id, trigger_type, contact, trigger_data)
    ordered = dependency_service.rule_fire_order(db, org_id, matched)

    executions: list[AutomationExecution] = []
    for rule in ordered:
        try:
            result = evaluate_trigger(
                db,
                org_id,
                trigger_type,
                contact_id,
                rule.id,
                trigger_data=trigger_data,
                now=now,
            )
        except ContactUnsubscribedError:
            logger.info(
                "Contact unsubscribed, skipping event",
                extra=build_log_context(org_id=org_id, contact_id=contact_id),
            )
            return executions
        if isinstance(result, AutomationExecution):
            executions.append(result)
    return executions


def release_waiting_execution(
    db: Session, execution: AutomationExecution, now: datetime
) -> bool:
    """
    Move a pending execution to scheduled if its required dependencies are met.

    Returns True if the execution left the pending state.
    """
    org_id = execution.organization_id
    log_ctx = build_log_context(
        org_id=org_id, rule_id=execution.rule_id, execution_id=execution.id
    )
    satisfied, release_at = required_release_time(
        db, org_id, execution.rule_id, execution.contact_id
    )
    if not satisfied:
        return False

    if is_blocked(db, org_id, execution.rule_id, execution.contact_id):
        updated = (
            db.query(AutomationExecution)
            .filter(
                AutomationExecution.id == execution.id,
                AutomationExecution.status == ExecutionStatus.PENDING.value,
            )
            .update(
                {
                    AutomationExecution.status: ExecutionStatus.FAILED.value,
                    AutomationExecution.error_message: "Blocked by a rule dependency",
                },
                synchronize_session=False,
            )
        )
        if not updated:
            return False
        db.query(AutomationRule).filter(AutomationRule.id == execution.rule_id).update(
            {AutomationRule.failed_count: AutomationRule.failed_count + 1},
            synchronize_session=False,
        )
        db.flush()
        db.expire(execution)
        logger.info("Waiting execution blocked, marked failed", extra=log_ctx)
        return True

    org = org_service.require_org(db, org_id)
    extra_delay = int((execution.trigger_data or {}).get("extra_delay_minutes") or 0)
    # Delays count from when the trigger fired, not from when the wait ended
    base = execution.created_at or now
    scheduled_for = compute_send_time(
        db, org, execution.rule, base, release_at=release_at, extra_delay_minutes=extra_delay
    )
    if scheduled_for < now:
        scheduled_for = business_hours_service.next_allowed_instant(db, org_id, now, org=org)

    updated = (
        db.query(AutomationExecution)
        .filter(
            AutomationExecution.id == execution.id,
            AutomationExecution.status == ExecutionStatus.PENDING.value,
        )
        .update(
            {
                AutomationExecution.status: ExecutionStatus.SCHEDULED.value,
                AutomationExecution.scheduled_for: scheduled_for,
            },
            synchronize_session=False,
        )
    )
    db.flush()
    if updated:
        db.refresh(execution)
        logger.info("Waiting execution released", extra=log_ctx)
    return bool(updated)


def resolve_waiting_executions(
    db: Session,
    now: datetime | None = None,
    org_id: UUID | None = None,
    rule_ids: list[UUID] | None = None,
    contact_id: UUID | None = None,
    limit: int = 500,
) -> int:
    """Release pending executions whose required dependencies are now met. Caller commits."""
    now = now or utcnow()
    query = db.query(AutomationExecution).filter(
        AutomationExecution.status == ExecutionStatus.PENDING.value
    )
    if org_id:
        query = query.filter(AutomationExecution.organization_id == org_id)
    if rule_ids:
        query = query.filter(AutomationExecution.rule_id.in_(rule_ids))
    if contact_id:
        query = query.filter(AutomationExecution.contact_id == contact_id)

    released = 0
    for execution in query.order_by(AutomationExecution.created_at).limit(limit).all():
        try:
            if release_waiting_execution(db, execution, now):
                released += 1
        except NoBusinessHoursConfigured:
            logger.warning(
                "Cannot release waiting execution: no business hours configured",
                extra=build_log_context(
                    org_id=execution.organization_id, execution_id=execution.id
                ),
            )
    return released


def on_execution_sent(db: Session, execution: AutomationExecution, now: datetime | None = None) -> None:
    """
    Follow-up work after an execution is sent: release dependents waiting on
    this rule and evaluate rules this one triggers. Caller commits.
    """
    now = now or utcnow()
    org_id = execution.organization_id

    waiting_edges = dependency_service.dependents_of(
        db, org_id, execution.rule_id, DependencyType.REQUIRED
    )
    if waiting_edges:
        resolve_waiting_executions(
            db,
            now,
            org_id=org_id,
            rule_ids=[edge.rule_id for edge in waiting_edges],
            contact_id=execution.contact_id,
        )

    for edge in dependency_service.dependencies_of(
        db, org_id, execution.rule_id, DependencyType.TRIGGERS
    ):
        target = get_rule(db, org_id, edge.depends_on_rule_id)
        if not target:
            continue
        log_ctx = build_log_context(
            org_id=org_id, rule_id=target.id, contact_id=execution.contact_id
        )
        try:
            evaluate_trigger(
                db,
                org_id,
                target.trigger_type,
                execution.contact_id,
                target.id,
                trigger_data={
                    **{
                        key: value
                        for key, value in (execution.trigger_data or {}).items()
                        if key != "extra_delay_minutes"
                    },
                    "triggered_by_rule_id": str(execution.rule_id),
                },
                now=now,
                extra_delay_minutes=edge.delay_minutes,
            )
        except ContactUnsubscribedError:
            logger.info("Contact unsubscribed, triggered rule skipped", extra=log_ctx)
        except NoBusinessHoursConfigured:
            logger.warning(
                "Triggered rule skipped: no business hours configured", extra=log_ctx
            )
