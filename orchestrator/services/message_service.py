"""Scheduled message service - one-off messages queued for a future send."""

from __future__ import annotations

import logging
from datetime import timezone
from uuid import UUID

from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.constants import DEFAULT_LIST_LIMIT
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.enums import Channel, MessageStatus
from orchestrator.db.models import ScheduledMessage
from orchestrator.schemas.scheduling import MessageCreate
from orchestrator.services import contact_service

logger = logging.getLogger(__name__)


class MessageServiceError(Exception):
    """Base exception for scheduled message errors."""

    pass


class MessageStateError(MessageServiceError):
    """Operation not allowed in the message's current status."""

    pass


def schedule_message(db: Session, org_id: UUID, data: MessageCreate) -> ScheduledMessage:
    """
    Queue a message. The address comes from the request or from the contact.

    Raises ValueError when no usable address can be resolved. Caller commits.
    """
    channel = Channel(data.channel).value
    address = data.address
    if not address and data.contact_id:
        contact = contact_service.get_contact(db, org_id, data.contact_id)
        if not contact:
            raise ValueError(f"Contact {data.contact_id} not found")
        address = contact_service.address_for_channel(contact, channel)
    address = contact_service.normalize_address(channel, address) if address else None
    if not address:
        raise ValueError(f"No {channel} address for message")
    if channel == Channel.EMAIL.value and not data.subject:
        raise ValueError("subject is required for email messages")

    scheduled_for = data.scheduled_for
    if scheduled_for.tzinfo is None:
        scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)

    message = ScheduledMessage(
        organization_id=org_id,
        contact_id=data.contact_id,
        channel=channel,
        address=address,
        subject=data.subject,
        body=data.body,
        scheduled_for=scheduled_for,
        status=MessageStatus.SCHEDULED.value,
        max_retries=(
            data.max_retries if data.max_retries is not None else settings.DEFAULT_MAX_RETRIES
        ),
    )
    db.add(message)
    db.flush()
    logger.info(
        "Message scheduled for %s",
        scheduled_for.isoformat(),
        extra=build_log_context(org_id=org_id, message_id=message.id),
    )
    return message


def get_message(db: Session, org_id: UUID, message_id: UUID) -> ScheduledMessage | None:
    return (
        db.query(ScheduledMessage)
        .filter(ScheduledMessage.id == message_id, ScheduledMessage.organization_id == org_id)
        .first()
    )


def list_messages(
    db: Session,
    org_id: UUID,
    status: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> list[ScheduledMessage]:
    query = db.query(ScheduledMessage).filter(ScheduledMessage.organization_id == org_id)
    if status:
        query = query.filter(ScheduledMessage.status == status)
    return (
        query.order_by(ScheduledMessage.scheduled_for.desc()).offset(offset).limit(limit).all()
    )


def cancel_message(db: Session, org_id: UUID, message_id: UUID) -> ScheduledMessage | None:
    """
    Cancel a scheduled message. Cancelling twice is a no-op; a message that is
    already being sent or is finished raises MessageStateError. Caller commits.
    """
    message = get_message(db, org_id, message_id)
    if not message:
        return None
    if message.status == MessageStatus.CANCELLED.value:
        return message

    updated = (
        db.query(ScheduledMessage)
        .filter(
            ScheduledMessage.id == message_id,
            ScheduledMessage.status == MessageStatus.SCHEDULED.value,
        )
        .update(
            {ScheduledMessage.status: MessageStatus.CANCELLED.value},
            synchronize_session=False,
        )
    )
    db.expire(message)
    if not updated:
        raise MessageStateError(f"Cannot cancel a message that is {message.status}")
    db.flush()
    logger.info(
        "Message cancelled", extra=build_log_context(org_id=org_id, message_id=message_id)
    )
    return message
