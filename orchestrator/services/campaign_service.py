"""Campaign service - creation, enqueueing, and read surfaces for bulk sends."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.constants import DEFAULT_LIST_LIMIT
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.base import utcnow
from orchestrator.db.enums import CampaignStatus, RecipientStatus
from orchestrator.db.models import Campaign, CampaignRecipient, Contact
from orchestrator.schemas.campaign import CampaignCreate, CampaignEnqueueRequest
from orchestrator.services import contact_service

logger = logging.getLogger(__name__)


class CampaignServiceError(Exception):
    """Base exception for campaign service errors."""

    pass


class CampaignNotFoundError(CampaignServiceError):
    """Campaign not found."""

    pass


class CampaignStateError(CampaignServiceError):
    """Operation not allowed in the campaign's current status."""

    pass


class NoEligibleRecipientsError(CampaignServiceError):
    """Every requested recipient was filtered out."""

    pass


@dataclass(frozen=True)
class EnqueueResult:
    campaign_id: UUID
    total_recipients: int
    skipped: int
    scheduled_at: datetime


def create_campaign(db: Session, org_id: UUID, data: CampaignCreate) -> Campaign:
    """Create a draft campaign. Caller commits."""
    campaign = Campaign(
        organization_id=org_id,
        name=data.name,
        channel=data.channel.value,
        subject_template=data.subject_template,
        body_template=data.body_template,
        max_retries=(
            data.max_retries if data.max_retries is not None else settings.DEFAULT_MAX_RETRIES
        ),
        status=CampaignStatus.DRAFT.value,
    )
    db.add(campaign)
    db.flush()
    return campaign


def get_campaign(db: Session, org_id: UUID, campaign_id: UUID) -> Campaign | None:
    return (
        db.query(Campaign)
        .filter(Campaign.id == campaign_id, Campaign.organization_id == org_id)
        .first()
    )


def list_campaigns(
    db: Session,
    org_id: UUID,
    status: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> tuple[list[Campaign], int]:
    query = db.query(Campaign).filter(Campaign.organization_id == org_id)
    if status:
        query = query.filter(Campaign.status == status)
    total = query.count()
    campaigns = query.order_by(Campaign.created_at.desc()).offset(offset).limit(limit).all()
    return campaigns, total


def list_recipients(
    db: Session,
    org_id: UUID,
    campaign_id: UUID,
    status: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> list[CampaignRecipient]:
    query = db.query(CampaignRecipient).filter(
        CampaignRecipient.campaign_id == campaign_id,
        CampaignRecipient.organization_id == org_id,
    )
    if status:
        query = query.filter(CampaignRecipient.status == status)
    return query.order_by(CampaignRecipient.created_at).offset(offset).limit(limit).all()


def _contact_recipients(
    db: Session, org_id: UUID, channel: str, contact_ids: list[UUID]
) -> tuple[list[tuple[str, UUID | None, dict]], int]:
    if not contact_ids:
        return [], 0
    contacts = (
        db.query(Contact)
        .filter(Contact.organization_id == org_id, Contact.id.in_(contact_ids))
        .all()
    )
    skipped = len(set(contact_ids)) - len(contacts)
    entries = []
    for contact in contacts:
        address = contact_service.address_for_channel(contact, channel)
        if contact.is_unsubscribed or not address:
            skipped += 1
            continue
        entries.append((address, contact.id, {}))
    return entries, skipped


def enqueue_campaign(
    db: Session,
    org_id: UUID,
    campaign_id: UUID,
    data: CampaignEnqueueRequest,
    now: datetime | None = None,
) -> EnqueueResult:
    """
    Create pending recipients and schedule a draft campaign.

    Addresses are normalized and deduplicated; unsubscribed contacts, missing
    addresses, and suppressed addresses are skipped. The sweep picks the
    campaign up once scheduled_at is due. Caller commits.

    Raises:
        CampaignNotFoundError, CampaignStateError, NoEligibleRecipientsError
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
    if campaign.status != CampaignStatus.DRAFT.value:
        raise CampaignStateError(f"Campaign is {campaign.status}; only drafts can be enqueued")

    entries, skipped = _contact_recipients(db, org_id, campaign.channel, data.contact_ids)
    entries.extend((r.address, r.contact_id, dict(r.variables)) for r in data.recipients)

    seen: set[str] = set()
    recipients: list[CampaignRecipient] = []
    for address, contact_id, variables in entries:
        normalized = contact_service.normalize_address(campaign.channel, address)
        if not normalized or normalized in seen:
            skipped += 1
            continue
        seen.add(normalized)
        if contact_service.is_suppressed(db, org_id, campaign.channel, normalized):
            skipped += 1
            continue
        recipients.append(
            CampaignRecipient(
                organization_id=org_id,
                campaign_id=campaign.id,
                contact_id=contact_id,
                address=normalized,
                variables=variables,
                status=RecipientStatus.PENDING.value,
                max_retries=campaign.max_retries,
            )
        )

    if not recipients:
        raise NoEligibleRecipientsError("No eligible recipients after filtering")

    scheduled_at = data.scheduled_at or now
    if scheduled_at.tzinfo is None:
        scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)

    db.add_all(recipients)
    campaign.total_recipients = len(recipients)
    campaign.pending_count = len(recipients)
    campaign.sent_count = 0
    campaign.failed_count = 0
    campaign.cancelled_count = 0
    campaign.scheduled_at = scheduled_at
    campaign.status = CampaignStatus.SCHEDULED.value
    db.flush()

    logger.info(
        "Campaign enqueued with %s recipients (%s skipped)",
        len(recipients),
        skipped,
        extra=build_log_context(org_id=org_id, campaign_id=campaign.id),
    )
    return EnqueueResult(
        campaign_id=campaign.id,
        total_recipients=len(recipients),
        skipped=skipped,
        scheduled_at=scheduled_at,
    )


def campaign_stats(db: Session, org_id: UUID, campaign_id: UUID) -> dict | None:
    """Counters plus engagement totals for one campaign."""
    campaign = get_campaign(db, org_id, campaign_id)
    if not campaign:
        return None
    opened, clicked, retrying = (
        db.query(
            func.count(CampaignRecipient.id).filter(CampaignRecipient.open_count > 0),
            func.count(CampaignRecipient.id).filter(CampaignRecipient.click_count > 0),
            func.count(CampaignRecipient.id).filter(
                CampaignRecipient.status == RecipientStatus.RETRYING.value
            ),
        )
        .filter(CampaignRecipient.campaign_id == campaign_id)
        .one()
    )
    sent = campaign.sent_count
    return {
        "campaign_id": campaign.id,
        "status": campaign.status,
        "total_recipients": campaign.total_recipients,
        "sent_count": sent,
        "failed_count": campaign.failed_count,
        "pending_count": campaign.pending_count,
        "cancelled_count": campaign.cancelled_count,
        "retrying_count": retrying,
        "opened_count": opened,
        "clicked_count": clicked,
        "open_rate": round(opened / sent, 4) if sent else 0.0,
        "click_rate": round(clicked / sent, 4) if sent else 0.0,
    }
