"""Send executor - one delivery attempt per claimed item plus the retry state machine.

Recipients:  pending/retrying -> sent | retrying (retry_count+1) | permanently_failed
Executions:  processing -> sent | scheduled (retry_count+1, backed off) | failed
Messages:    processing -> sent | scheduled (retry_count+1, backed off) | failed

Every outcome write is conditional on the claim token the attempt was started
with and on the row still being open. A result that arrives after a cancel or
after the claim went stale and was re-claimed is logged and dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.base import utcnow
from orchestrator.db.enums import (
    CAMPAIGN_TERMINAL_STATUSES,
    RECIPIENT_SENDABLE_STATUSES,
    CampaignStatus,
    ExecutionStatus,
    MessageStatus,
    RecipientStatus,
)
from orchestrator.db.models import (
    AutomationExecution,
    AutomationRule,
    Campaign,
    CampaignRecipient,
    Contact,
    ScheduledMessage,
)
from orchestrator.services import (
    business_hours_service,
    campaign_tracker,
    contact_service,
    send_limit_service,
    template_service,
    trigger_service,
)
from orchestrator.services.campaign_service import CampaignNotFoundError, CampaignStateError
from orchestrator.services.channel_senders import (
    ChannelDeliveryError,
    ChannelSender,
    OutboundMessage,
    PermanentDeliveryFailure,
    SendResult,
    get_sender,
)
from orchestrator.services.send_limit_service import DailyLimitReached
from orchestrator.utils.business_hours import NoBusinessHoursConfigured

logger = logging.getLogger(__name__)

CANCELLED_BY_OPERATOR = "Cancelled by operator"

# Read once before delivery (gating) and again when the outcome is written
Clock = Callable[[], datetime]


class SendExecutorError(Exception):
    """Base exception for send executor errors."""

    pass


class InvalidTransitionError(SendExecutorError):
    """The requested transition is not allowed from the current status."""

    pass


class RecipientNotFoundError(SendExecutorError):
    """Recipient not found."""

    pass


class ExecutionNotFoundError(SendExecutorError):
    """Execution not found."""

    pass


@dataclass(frozen=True)
class Failure:
    message: str
    permanent: bool = False


def backoff_minutes(retry_count: int) -> int:
    """Delay before the next attempt after `retry_count` earlier retries (non-decreasing)."""
    schedule = settings.retry_backoff_schedule
    return schedule[min(max(retry_count, 0), len(schedule) - 1)]


async def _deliver(sender: ChannelSender, message: OutboundMessage) -> SendResult | Failure:
    try:
        return await sender.send(message)
    except PermanentDeliveryFailure as exc:
        return Failure(str(exc) or "Permanent delivery failure", permanent=True)
    except ChannelDeliveryError as exc:
        return Failure(str(exc) or "Delivery failed")
    except Exception as exc:
        logger.exception("Unexpected error from %s sender", message.channel)
        return Failure(f"{type(exc).__name__}: {exc}")


def _precheck(
    db: Session, org_id: UUID, channel: str, address: str | None, contact: Contact | None
) -> Failure | None:
    if contact is not None and contact.is_unsubscribed:
        return Failure("Contact unsubscribed", permanent=True)
    if not address:
        return Failure(f"No {channel} address", permanent=True)
    if contact_service.is_suppressed(db, org_id, channel, address):
        return Failure("Address is suppressed", permanent=True)
    return None


# =============================================================================
# Campaign recipients
# =============================================================================


def record_recipient_outcome(
    db: Session,
    recipient_id: UUID,
    claim_token: UUID,
    outcome: SendResult | Failure,
    now: datetime | None = None,
) -> str | None:
    """
    Write the result of one attempt and the matching campaign counter delta.

    Returns the recipient's new status, or None when the write was dropped
    because the claim no longer holds (cancelled, re-claimed). Commits.
    """
    now = now or utcnow()
    recipient = db.query(CampaignRecipient).filter(CampaignRecipient.id == recipient_id).first()
    log_ctx = build_log_context(
        org_id=recipient.organization_id if recipient else None,
        campaign_id=recipient.campaign_id if recipient else None,
        recipient_id=recipient_id,
    )
    if (
        recipient is None
        or recipient.claim_token != claim_token
        or recipient.status not in RECIPIENT_SENDABLE_STATUSES
    ):
        logger.info("Ignoring late send result for recipient", extra=log_ctx)
        db.rollback()
        return None

    old_status = recipient.status
    values = {
        CampaignRecipient.claimed_at: None,
        CampaignRecipient.claim_token: None,
        CampaignRecipient.updated_at: now,
    }
    if isinstance(outcome, SendResult):
        new_status = RecipientStatus.SENT.value
        values[CampaignRecipient.sent_at] = now
        values[CampaignRecipient.provider_message_id] = outcome.provider_message_id
        values[CampaignRecipient.error_message] = None
    elif outcome.permanent or recipient.retry_count >= recipient.max_retries:
        new_status = RecipientStatus.PERMANENTLY_FAILED.value
        values[CampaignRecipient.error_message] = outcome.message
    else:
        new_status = RecipientStatus.RETRYING.value
        values[CampaignRecipient.error_message] = outcome.message
        values[CampaignRecipient.retry_count] = recipient.retry_count + 1
        values[CampaignRecipient.next_attempt_at] = now + timedelta(
            minutes=backoff_minutes(recipient.retry_count)
        )
    values[CampaignRecipient.status] = new_status

    updated = (
        db.query(CampaignRecipient)
        .filter(
            CampaignRecipient.id == recipient_id,
            CampaignRecipient.claim_token == claim_token,
            CampaignRecipient.status == old_status,
        )
        .update(values, synchronize_session=False)
    )
    if not updated:
        logger.info("Recipient changed during send; result ignored", extra=log_ctx)
        db.rollback()
        return None

    campaign_tracker.apply_recipient_transition(
        db, recipient.campaign_id, old_status, new_status, now
    )
    db.commit()
    db.expire(recipient)

    if new_status == RecipientStatus.PERMANENTLY_FAILED.value:
        logger.warning("Recipient permanently failed: %s", values[CampaignRecipient.error_message], extra=log_ctx)
    elif new_status == RecipientStatus.RETRYING.value:
        logger.info("Recipient send failed, retry scheduled", extra=log_ctx)
    return new_status


async def attempt_recipient(
    db: Session,
    recipient_id: UUID,
    claim_token: UUID,
    sender: ChannelSender | None = None,
    clock: Clock = utcnow,
) -> str | None:
    """Run one send attempt for a claimed recipient. Returns the new status or None."""
    now = clock()
    recipient = db.query(CampaignRecipient).filter(CampaignRecipient.id == recipient_id).first()
    if (
        recipient is None
        or recipient.claim_token != claim_token
        or recipient.status not in RECIPIENT_SENDABLE_STATUSES
    ):
        db.rollback()
        return None

    campaign = db.query(Campaign).filter(Campaign.id == recipient.campaign_id).first()
    contact = db.get(Contact, recipient.contact_id) if recipient.contact_id else None

    failure = _precheck(db, recipient.organization_id, campaign.channel, recipient.address, contact)
    if failure:
        return record_recipient_outcome(db, recipient_id, claim_token, failure, now)

    attributes = contact_service.contact_attributes(contact) if contact else {}
    variables = template_service.build_variables(attributes, extra=recipient.variables)
    message = OutboundMessage(
        channel=campaign.channel,
        to=recipient.address,
        subject=template_service.render_template(campaign.subject_template, variables),
        body=template_service.render_template(campaign.body_template, variables) or "",
        idempotency_key=f"campaign-recipient/{recipient.id}",
    )
    # No transaction is held across the provider call
    db.commit()

    outcome = await _deliver(sender or get_sender(campaign.channel), message)
    return record_recipient_outcome(db, recipient_id, claim_token, outcome, clock())


# =============================================================================
# Rule executions
# =============================================================================


def _bump_rule_counter(db: Session, rule_id: UUID, column) -> None:
    db.query(AutomationRule).filter(AutomationRule.id == rule_id).update(
        {column: column + 1}, synchronize_session=False
    )


def _write_execution(
    db: Session, execution_id: UUID, claim_token: UUID, values: dict
) -> bool:
    updated = (
        db.query(AutomationExecution)
        .filter(
            AutomationExecution.id == execution_id,
            AutomationExecution.claim_token == claim_token,
            AutomationExecution.status == ExecutionStatus.PROCESSING.value,
        )
        .update(
            {
                **values,
                AutomationExecution.claimed_at: None,
                AutomationExecution.claim_token: None,
            },
            synchronize_session=False,
        )
    )
    return bool(updated)


def record_execution_outcome(
    db: Session,
    execution_id: UUID,
    claim_token: UUID,
    outcome: SendResult | Failure,
    now: datetime | None = None,
) -> str | None:
    """Write the attempt result for a claimed execution. Commits."""
    now = now or utcnow()
    execution = db.query(AutomationExecution).filter(AutomationExecution.id == execution_id).first()
    if execution is None or execution.claim_token != claim_token:
        db.rollback()
        return None
    log_ctx = build_log_context(
        org_id=execution.organization_id, rule_id=execution.rule_id, execution_id=execution_id
    )

    if isinstance(outcome, SendResult):
        new_status = ExecutionStatus.SENT.value
        values = {
            AutomationExecution.status: new_status,
            AutomationExecution.sent_at: now,
            AutomationExecution.provider_message_id: outcome.provider_message_id,
            AutomationExecution.error_message: None,
        }
    elif outcome.permanent or execution.retry_count >= execution.max_retries:
        new_status = ExecutionStatus.FAILED.value
        values = {
            AutomationExecution.status: new_status,
            AutomationExecution.error_message: outcome.message,
        }
    else:
        retry_at = now + timedelta(minutes=backoff_minutes(execution.retry_count))
        try:
            retry_at = business_hours_service.next_allowed_instant(
                db, execution.organization_id, retry_at
            )
        except NoBusinessHoursConfigured:
            new_status = ExecutionStatus.FAILED.value
            values = {
                AutomationExecution.status: new_status,
                AutomationExecution.error_message: f"{outcome.message}; no business hours configured for retry",
            }
        else:
            new_status = ExecutionStatus.SCHEDULED.value
            values = {
                AutomationExecution.status: new_status,
                AutomationExecution.error_message: outcome.message,
                AutomationExecution.retry_count: execution.retry_count + 1,
                AutomationExecution.scheduled_for: retry_at,
            }

    if not _write_execution(db, execution_id, claim_token, values):
        logger.info("Execution changed during send; result ignored", extra=log_ctx)
        db.rollback()
        return None

    if new_status == ExecutionStatus.SENT.value:
        _bump_rule_counter(db, execution.rule_id, AutomationRule.sent_count)
        db.expire(execution)
        trigger_service.on_execution_sent(db, execution, now)
    elif new_status == ExecutionStatus.FAILED.value:
        _bump_rule_counter(db, execution.rule_id, AutomationRule.failed_count)
        logger.warning("Execution failed: %s", values[AutomationExecution.error_message], extra=log_ctx)
    else:
        logger.info("Execution send failed, retry scheduled", extra=log_ctx)
    db.commit()
    db.expire(execution)
    return new_status


async def attempt_execution(
    db: Session,
    execution_id: UUID,
    claim_token: UUID,
    sender: ChannelSender | None = None,
    clock: Clock = utcnow,
) -> str | None:
    """
    Run one send attempt for a claimed execution. Returns the new status or None.

    Business hours and the daily per-contact cap are checked against the clock
    when the attempt starts; the outcome is stamped with the clock after delivery.
    """
    now = clock()
    execution = db.query(AutomationExecution).filter(AutomationExecution.id == execution_id).first()
    if (
        execution is None
        or execution.claim_token != claim_token
        or execution.status != ExecutionStatus.PROCESSING.value
    ):
        db.rollback()
        return None

    org_id = execution.organization_id
    contact_id = execution.contact_id
    rule = execution.rule
    contact = db.get(Contact, contact_id)
    address = contact_service.address_for_channel(contact, rule.channel) if contact else None

    if contact is None:
        failure = Failure("Contact no longer exists", permanent=True)
    else:
        failure = _precheck(db, org_id, rule.channel, address, contact)
    if failure:
        return record_execution_outcome(db, execution_id, claim_token, failure, now)

    # Re-gate at send time: hours may have changed since scheduling
    try:
        allowed_at = business_hours_service.next_allowed_instant(db, org_id, now)
    except NoBusinessHoursConfigured:
        return record_execution_outcome(
            db, execution_id, claim_token, Failure("No business hours configured", permanent=True), now
        )
    if allowed_at > now:
        if _write_execution(
            db,
            execution_id,
            claim_token,
            {
                AutomationExecution.status: ExecutionStatus.SCHEDULED.value,
                AutomationExecution.scheduled_for: allowed_at,
            },
        ):
            db.commit()
            logger.info(
                "Outside business hours, execution rescheduled",
                extra=build_log_context(org_id=org_id, execution_id=execution_id),
            )
            return ExecutionStatus.SCHEDULED.value
        db.rollback()
        return None

    try:
        reserved_on = send_limit_service.reserve_daily_send(db, org_id, contact_id, now)
    except DailyLimitReached as exc:
        return record_execution_outcome(
            db, execution_id, claim_token, Failure(str(exc), permanent=True), now
        )

    message = OutboundMessage(
        channel=rule.channel,
        to=address,
        subject=execution.subject,
        body=execution.body or "",
        idempotency_key=f"execution/{execution.id}",
    )
    db.commit()

    outcome = await _deliver(sender or get_sender(rule.channel), message)
    if isinstance(outcome, Failure) and reserved_on is not None:
        send_limit_service.release_daily_send(db, org_id, contact_id, reserved_on)
        db.commit()
    return record_execution_outcome(db, execution_id, claim_token, outcome, clock())


# =============================================================================
# Individual scheduled messages
# =============================================================================


def record_message_outcome(
    db: Session,
    message_id: UUID,
    claim_token: UUID,
    outcome: SendResult | Failure,
    now: datetime | None = None,
) -> str | None:
    """Write the attempt result for a claimed scheduled message. Commits."""
    now = now or utcnow()
    message = db.query(ScheduledMessage).filter(ScheduledMessage.id == message_id).first()
    if message is None or message.claim_token != claim_token:
        db.rollback()
        return None

    if isinstance(outcome, SendResult):
        values = {
            ScheduledMessage.status: MessageStatus.SENT.value,
            ScheduledMessage.sent_at: now,
            ScheduledMessage.provider_message_id: outcome.provider_message_id,
            ScheduledMessage.error_message: None,
        }
    elif outcome.permanent or message.retry_count >= message.max_retries:
        values = {
            ScheduledMessage.status: MessageStatus.FAILED.value,
            ScheduledMessage.error_message: outcome.message,
        }
    else:
        values = {
            ScheduledMessage.status: MessageStatus.SCHEDULED.value,
            ScheduledMessage.error_message: outcome.message,
            ScheduledMessage.retry_count: message.retry_count + 1,
            ScheduledMessage.scheduled_for: now
            + timedelta(minutes=backoff_minutes(message.retry_count)),
        }
    values[ScheduledMessage.claimed_at] = None
    values[ScheduledMessage.claim_token] = None

    updated = (
        db.query(ScheduledMessage)
        .filter(
            ScheduledMessage.id == message_id,
            ScheduledMessage.claim_token == claim_token,
            ScheduledMessage.status == MessageStatus.PROCESSING.value,
        )
        .update(values, synchronize_session=False)
    )
    if not updated:
        logger.info(
            "Message changed during send; result ignored",
            extra=build_log_context(org_id=message.organization_id, message_id=message_id),
        )
        db.rollback()
        return None
    db.commit()
    db.expire(message)
    return values[ScheduledMessage.status]


async def attempt_message(
    db: Session,
    message_id: UUID,
    claim_token: UUID,
    sender: ChannelSender | None = None,
    clock: Clock = utcnow,
) -> str | None:
    """Run one send attempt for a claimed scheduled message."""
    now = clock()
    message = db.query(ScheduledMessage).filter(ScheduledMessage.id == message_id).first()
    if (
        message is None
        or message.claim_token != claim_token
        or message.status != MessageStatus.PROCESSING.value
    ):
        db.rollback()
        return None

    contact = db.get(Contact, message.contact_id) if message.contact_id else None
    failure = _precheck(db, message.organization_id, message.channel, message.address, contact)
    if failure:
        return record_message_outcome(db, message_id, claim_token, failure, now)

    outbound = OutboundMessage(
        channel=message.channel,
        to=message.address,
        subject=message.subject,
        body=message.body,
        idempotency_key=f"scheduled-message/{message.id}",
    )
    db.commit()

    outcome = await _deliver(sender or get_sender(message.channel), outbound)
    return record_message_outcome(db, message_id, claim_token, outcome, clock())


# =============================================================================
# Operator cancellation
# =============================================================================


def cancel_recipient(
    db: Session, org_id: UUID, recipient_id: UUID, now: datetime | None = None
) -> CampaignRecipient:
    """
    Cancel one recipient. Valid from pending or retrying; cancelling an already
    cancelled recipient is a no-op. An in-flight send is not aborted, its result
    is ignored. Caller commits.
    """
    now = now or utcnow()
    recipient = (
        db.query(CampaignRecipient)
        .filter(
            CampaignRecipient.id == recipient_id,
            CampaignRecipient.organization_id == org_id,
        )
        .first()
    )
    if not recipient:
        raise RecipientNotFoundError(f"Recipient {recipient_id} not found")
    if recipient.status == RecipientStatus.CANCELLED.value:
        return recipient
    if recipient.status not in RECIPIENT_SENDABLE_STATUSES:
        raise InvalidTransitionError(f"Cannot cancel a recipient that is {recipient.status}")

    old_status = recipient.status
    updated = (
        db.query(CampaignRecipient)
        .filter(CampaignRecipient.id == recipient_id, CampaignRecipient.status == old_status)
        .update(
            {
                CampaignRecipient.status: RecipientStatus.CANCELLED.value,
                CampaignRecipient.claimed_at: None,
                CampaignRecipient.claim_token: None,
                CampaignRecipient.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.expire(recipient)
    if not updated:
        # Lost a race with a send result or another cancel
        if recipient.status == RecipientStatus.CANCELLED.value:
            return recipient
        raise InvalidTransitionError(f"Cannot cancel a recipient that is {recipient.status}")

    campaign_tracker.apply_recipient_transition(
        db, recipient.campaign_id, old_status, RecipientStatus.CANCELLED.value, now
    )
    db.flush()
    logger.info(
        "Recipient cancelled",
        extra=build_log_context(
            org_id=org_id, campaign_id=recipient.campaign_id, recipient_id=recipient_id
        ),
    )
    return recipient


def cancel_campaign(
    db: Session, org_id: UUID, campaign_id: UUID, now: datetime | None = None
) -> Campaign:
    """
    Cancel every non-terminal recipient and force the campaign to cancelled.

    Cancelling a cancelled campaign is a no-op; completed or failed campaigns
    cannot be cancelled. Caller commits.
    """
    now = now or utcnow()
    campaign = (
        db.query(Campaign)
        .filter(Campaign.id == campaign_id, Campaign.organization_id == org_id)
        .with_for_update()
        .first()
    )
    if not campaign:
        raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
    if campaign.status == CampaignStatus.CANCELLED.value:
        return campaign
    if campaign.status in CAMPAIGN_TERMINAL_STATUSES:
        raise CampaignStateError(f"Campaign already {campaign.status}")

    cancelled = (
        db.query(CampaignRecipient)
        .filter(
            CampaignRecipient.campaign_id == campaign_id,
            CampaignRecipient.status.in_(RECIPIENT_SENDABLE_STATUSES),
        )
        .update(
            {
                CampaignRecipient.status: RecipientStatus.CANCELLED.value,
                CampaignRecipient.claimed_at: None,
                CampaignRecipient.claim_token: None,
                CampaignRecipient.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.query(Campaign).filter(Campaign.id == campaign_id).update(
        {
            Campaign.pending_count: Campaign.pending_count - cancelled,
            Campaign.total_recipients: Campaign.total_recipients - cancelled,
            Campaign.cancelled_count: Campaign.cancelled_count + cancelled,
            Campaign.status: CampaignStatus.CANCELLED.value,
            Campaign.completed_at: now,
            Campaign.updated_at: now,
        },
        synchronize_session=False,
    )
    db.flush()
    db.expire(campaign)
    logger.info(
        "Campaign cancelled (%s recipients)",
        cancelled,
        extra=build_log_context(org_id=org_id, campaign_id=campaign_id),
    )
    return campaign


def cancel_execution(
    db: Session, org_id: UUID, execution_id: UUID
) -> AutomationExecution:
    """Cancel a pending or scheduled execution (marked failed). Caller commits."""
    execution = (
        db.query(AutomationExecution)
        .filter(
            AutomationExecution.id == execution_id,
            AutomationExecution.organization_id == org_id,
        )
        .first()
    )
    if not execution:
        raise ExecutionNotFoundError(f"Execution {execution_id} not found")
    if (
        execution.status == ExecutionStatus.FAILED.value
        and execution.error_message == CANCELLED_BY_OPERATOR
    ):
        return execution

    updated = (
        db.query(AutomationExecution)
        .filter(
            AutomationExecution.id == execution_id,
            AutomationExecution.status.in_(
                (ExecutionStatus.PENDING.value, ExecutionStatus.SCHEDULED.value)
            ),
        )
        .update(
            {
                AutomationExecution.status: ExecutionStatus.FAILED.value,
                AutomationExecution.error_message: CANCELLED_BY_OPERATOR,
            },
            synchronize_session=False,
        )
    )
    db.expire(execution)
    if not updated:
        raise InvalidTransitionError(f"Cannot cancel an execution that is {execution.status}")
    db.flush()
    return execution
