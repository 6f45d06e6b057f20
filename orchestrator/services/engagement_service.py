"""Engagement ingestion - provider open/click/bounce/complaint callbacks.

Events are matched to the sent item by provider message id: campaign
recipients first, then rule executions, then scheduled messages.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.base import utcnow
from orchestrator.db.enums import EngagementKind, ProviderEventType, SuppressionReason
from orchestrator.db.models import (
    AutomationExecution,
    CampaignRecipient,
    Contact,
    ScheduledMessage,
)
from orchestrator.schemas.scheduling import EngagementEvent
from orchestrator.services import contact_service, send_time_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngagementTarget:
    kind: str  # 'recipient' | 'execution' | 'message'
    id: UUID
    organization_id: UUID
    channel: str
    address: str | None


def verify_webhook_secret(provided: str | None) -> bool:
    """Constant-time check of the shared webhook secret. An unset secret rejects everything."""
    expected = settings.WEBHOOK_SECRET
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def find_target(db: Session, provider_message_id: str) -> EngagementTarget | None:
    recipient = (
        db.query(CampaignRecipient)
        .filter(CampaignRecipient.provider_message_id == provider_message_id)
        .first()
    )
    if recipient:
        return EngagementTarget(
            kind="recipient",
            id=recipient.id,
            organization_id=recipient.organization_id,
            channel=recipient.campaign.channel,
            address=recipient.address,
        )

    execution = (
        db.query(AutomationExecution)
        .filter(AutomationExecution.provider_message_id == provider_message_id)
        .first()
    )
    if execution:
        contact = db.get(Contact, execution.contact_id)
        channel = execution.rule.channel
        return EngagementTarget(
            kind="execution",
            id=execution.id,
            organization_id=execution.organization_id,
            channel=channel,
            address=contact_service.address_for_channel(contact, channel) if contact else None,
        )

    message = (
        db.query(ScheduledMessage)
        .filter(ScheduledMessage.provider_message_id == provider_message_id)
        .first()
    )
    if message:
        return EngagementTarget(
            kind="message",
            id=message.id,
            organization_id=message.organization_id,
            channel=message.channel,
            address=message.address,
        )
    return None


def _record_recipient_engagement(
    db: Session, recipient_id: UUID, kind: ProviderEventType, occurred_at: datetime
) -> None:
    if kind == ProviderEventType.OPEN:
        values = {CampaignRecipient.open_count: CampaignRecipient.open_count + 1}
        first_column = CampaignRecipient.opened_at
    else:
        values = {CampaignRecipient.click_count: CampaignRecipient.click_count + 1}
        first_column = CampaignRecipient.clicked_at
    db.query(CampaignRecipient).filter(CampaignRecipient.id == recipient_id).update(
        values, synchronize_session=False
    )
    db.query(CampaignRecipient).filter(
        CampaignRecipient.id == recipient_id, first_column.is_(None)
    ).update({first_column: occurred_at}, synchronize_session=False)


def _model_for(kind: str):
    return {
        "recipient": CampaignRecipient,
        "execution": AutomationExecution,
        "message": ScheduledMessage,
    }[kind]


def handle_provider_event(db: Session, event: EngagementEvent) -> EngagementTarget | None:
    """
    Apply one provider callback.

    Opens and clicks feed the engagement statistics; bounces and complaints
    suppress the address. Returns the matched item, or None when the provider
    message id is unknown. Raises ValueError for an unknown event type. Caller commits.
    """
    event_type = ProviderEventType(event.event_type)
    occurred_at = event.occurred_at or utcnow()
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)

    target = find_target(db, event.provider_message_id)
    if target is None:
        logger.info("Engagement event for unknown provider message id ignored")
        return None

    log_ctx = build_log_context(org_id=target.organization_id)
    log_ctx[f"{target.kind}_id"] = str(target.id)

    if event_type in (ProviderEventType.OPEN, ProviderEventType.CLICK):
        if target.kind == "recipient":
            _record_recipient_engagement(db, target.id, event_type, occurred_at)
        send_time_service.record_engagement(
            db, target.organization_id, occurred_at, EngagementKind(event_type.value)
        )
        logger.info("Recorded %s engagement", event_type.value, extra=log_ctx)
    else:
        reason = (
            SuppressionReason.BOUNCE
            if event_type == ProviderEventType.BOUNCE
            else SuppressionReason.COMPLAINT
        )
        if target.address:
            contact_service.add_suppression(
                db, target.organization_id, target.channel, target.address, reason.value
            )
        model = _model_for(target.kind)
        db.query(model).filter(model.id == target.id).update(
            {model.error_message: f"Provider reported {event_type.value}"},
            synchronize_session=False,
        )
        logger.warning("Provider reported %s; address suppressed", event_type.value, extra=log_ctx)

    db.flush()
    return target
