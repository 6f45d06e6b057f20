"""Execution read surfaces, conversion attribution, and dependency timeouts."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.constants import DEFAULT_LIST_LIMIT, DEPENDENCY_TIMEOUT_PREFIX
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.base import utcnow
from orchestrator.db.enums import ExecutionStatus
from orchestrator.db.models import AutomationExecution, AutomationRule, Organization

logger = logging.getLogger(__name__)


def get_execution(db: Session, org_id: UUID, execution_id: UUID) -> AutomationExecution | None:
    return (
        db.query(AutomationExecution)
        .filter(
            AutomationExecution.id == execution_id,
            AutomationExecution.organization_id == org_id,
        )
        .first()
    )


def list_executions(
    db: Session,
    org_id: UUID,
    rule_id: UUID | None = None,
    contact_id: UUID | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> list[AutomationExecution]:
    query = db.query(AutomationExecution).filter(AutomationExecution.organization_id == org_id)
    if rule_id:
        query = query.filter(AutomationExecution.rule_id == rule_id)
    if contact_id:
        query = query.filter(AutomationExecution.contact_id == contact_id)
    if status:
        query = query.filter(AutomationExecution.status == status)
    return (
        query.order_by(AutomationExecution.created_at.desc()).offset(offset).limit(limit).all()
    )


def record_conversion(
    db: Session,
    org_id: UUID,
    execution_id: UUID,
    conversion_type: str,
    conversion_value: float | None = None,
    now: datetime | None = None,
) -> AutomationExecution | None:
    """
    Attribute a conversion to a sent execution. The latest conversion wins.

    Raises ValueError if the execution was never sent. Caller commits.
    """
    execution = get_execution(db, org_id, execution_id)
    if not execution:
        return None
    if execution.status != ExecutionStatus.SENT.value:
        raise ValueError("Conversions can only be recorded for sent executions")
    execution.conversion_type = conversion_type
    execution.conversion_value = conversion_value
    execution.converted_at = now or utcnow()
    db.flush()
    return execution


def expire_waiting_executions(
    db: Session, now: datetime | None = None, limit: int = 500
) -> int:
    """
    Fail pending executions that have waited longer than their org's TTL.

    The TTL is Organization.dependency_timeout_hours when set, otherwise
    DEPENDENCY_TIMEOUT_HOURS. Caller commits.
    """
    now = now or utcnow()
    rows = (
        db.query(AutomationExecution, Organization.dependency_timeout_hours)
        .join(Organization, Organization.id == AutomationExecution.organization_id)
        .filter(AutomationExecution.status == ExecutionStatus.PENDING.value)
        .order_by(AutomationExecution.created_at)
        .limit(limit)
        .all()
    )

    expired = 0
    for execution, ttl_hours in rows:
        ttl = timedelta(hours=ttl_hours or settings.DEPENDENCY_TIMEOUT_HOURS)
        if execution.created_at + ttl > now:
            continue
        updated = (
            db.query(AutomationExecution)
            .filter(
                AutomationExecution.id == execution.id,
                AutomationExecution.status == ExecutionStatus.PENDING.value,
            )
            .update(
                {
                    AutomationExecution.status: ExecutionStatus.FAILED.value,
                    AutomationExecution.error_message: (
                        f"{DEPENDENCY_TIMEOUT_PREFIX}: required dependencies not met "
                        f"within {int(ttl.total_seconds() // 3600)}h"
                    ),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            continue
        db.query(AutomationRule).filter(AutomationRule.id == execution.rule_id).update(
            {AutomationRule.failed_count: AutomationRule.failed_count + 1},
            synchronize_session=False,
        )
        db.expire(execution)
        expired += 1
        logger.info(
            "Waiting execution timed out",
            extra=build_log_context(
                org_id=execution.organization_id,
                rule_id=execution.rule_id,
                execution_id=execution.id,
            ),
        )
    return expired
