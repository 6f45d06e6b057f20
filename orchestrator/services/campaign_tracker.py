"""Campaign aggregate tracker - rolls recipient transitions up into campaign counters.

Every recipient transition applies its counter delta with a single atomic
UPDATE in the caller's transaction, so concurrent sends cannot lose counts and

    sent_count + failed_count + pending_count == total_recipients

holds after each transition. Cancelled recipients leave the total and are
tallied in cancelled_count instead.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, case
from sqlalchemy.orm import Session

from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.base import utcnow
from orchestrator.db.enums import CampaignStatus, RecipientStatus
from orchestrator.db.models import Campaign

logger = logging.getLogger(__name__)

_OPEN = (RecipientStatus.PENDING.value, RecipientStatus.RETRYING.value)


class InvalidRecipientTransition(ValueError):
    """Transition is not part of the recipient state machine."""

    pass


def counter_delta(old_status: str, new_status: str) -> dict[str, int]:
    """Counter changes for a recipient moving old_status -> new_status."""
    if old_status not in _OPEN:
        raise InvalidRecipientTransition(f"Cannot transition from {old_status}")
    if new_status in _OPEN:
        return {}
    if new_status == RecipientStatus.SENT.value:
        return {"sent_count": 1, "pending_count": -1}
    if new_status == RecipientStatus.PERMANENTLY_FAILED.value:
        return {"failed_count": 1, "pending_count": -1}
    if new_status == RecipientStatus.CANCELLED.value:
        return {"pending_count": -1, "total_recipients": -1, "cancelled_count": 1}
    raise InvalidRecipientTransition(f"Cannot transition {old_status} -> {new_status}")


def _expire_campaign(db: Session, campaign_id: UUID) -> None:
    for obj in list(db.identity_map.values()):
        if isinstance(obj, Campaign) and obj.id == campaign_id:
            db.expire(obj)


def apply_recipient_transition(
    db: Session,
    campaign_id: UUID,
    old_status: str,
    new_status: str,
    now: datetime | None = None,
) -> str | None:
    """
    Apply the counter delta for one recipient transition, then finalize the
    campaign if nothing is pending. Returns the campaign's new terminal status
    if this transition finalized it. Caller commits.
    """
    now = now or utcnow()
    delta = counter_delta(old_status, new_status)
    if delta:
        values = {
            getattr(Campaign, column): getattr(Campaign, column) + amount
            for column, amount in delta.items()
        }
        values[Campaign.updated_at] = now
        db.query(Campaign).filter(Campaign.id == campaign_id).update(
            values, synchronize_session=False
        )
        _expire_campaign(db, campaign_id)
    return maybe_finalize(db, campaign_id, now)


def maybe_finalize(db: Session, campaign_id: UUID, now: datetime | None = None) -> str | None:
    """
    Close a sending campaign once pending_count reaches zero.

    Policy: failed when at least one recipient failed and none were sent,
    otherwise completed (including a campaign whose recipients were all cancelled).
    """
    now = now or utcnow()
    final_status = case(
        (
            and_(Campaign.failed_count > 0, Campaign.sent_count == 0),
            CampaignStatus.FAILED.value,
        ),
        else_=CampaignStatus.COMPLETED.value,
    )
    updated = (
        db.query(Campaign)
        .filter(
            Campaign.id == campaign_id,
            Campaign.status == CampaignStatus.SENDING.value,
            Campaign.pending_count <= 0,
        )
        .update(
            {
                Campaign.status: final_status,
                Campaign.completed_at: now,
                Campaign.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        return None

    _expire_campaign(db, campaign_id)
    status = db.query(Campaign.status).filter(Campaign.id == campaign_id).scalar()
    logger.info(
        "Campaign finished with status %s",
        status,
        extra=build_log_context(campaign_id=campaign_id),
    )
    return status


def finalize_idle_campaigns(db: Session, now: datetime | None = None, limit: int = 100) -> int:
    """Finalize sending campaigns that already have nothing pending. Caller commits."""
    now = now or utcnow()
    ids = [
        row.id
        for row in db.query(Campaign.id)
        .filter(Campaign.status == CampaignStatus.SENDING.value, Campaign.pending_count <= 0)
        .limit(limit)
        .all()
    ]
    return sum(1 for campaign_id in ids if maybe_finalize(db, campaign_id, now))


def check_invariant(campaign: Campaign) -> bool:
    return (
        campaign.sent_count + campaign.failed_count + campaign.pending_count
        == campaign.total_recipients
    )
