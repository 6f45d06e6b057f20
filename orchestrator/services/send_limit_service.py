"""Daily automation send cap - at most N rule sends per contact per local day.

The cap is Organization.max_automation_sends_per_day (0 disables it). Days are
counted in the organization's timezone. A slot is reserved before delivery
with a conditional increment and handed back if the attempt fails.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.models import ContactDailySendCount, Organization
from orchestrator.services import org_service

logger = logging.getLogger(__name__)


class DailyLimitReached(Exception):
    """The contact already received the organization's daily maximum."""

    def __init__(self, limit: int):
        super().__init__(f"Daily send limit reached ({limit} per day)")
        self.limit = limit


def local_send_date(org: Organization, instant: datetime) -> date:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(ZoneInfo(org.timezone or "UTC")).date()


def _counter(db: Session, org_id: UUID, contact_id: UUID, send_date: date):
    return db.query(ContactDailySendCount).filter(
        ContactDailySendCount.organization_id == org_id,
        ContactDailySendCount.contact_id == contact_id,
        ContactDailySendCount.send_date == send_date,
    )


def reserve_daily_send(
    db: Session,
    org_id: UUID,
    contact_id: UUID,
    now: datetime,
    org: Organization | None = None,
) -> date | None:
    """
    Take one of today's send slots for a contact. Caller commits.

    Returns the local date the slot was counted against, or None when the
    organization has no cap.

    Raises:
        DailyLimitReached: every slot for today is taken
    """
    org = org or org_service.require_org(db, org_id)
    limit = org.max_automation_sends_per_day
    if not limit or limit <= 0:
        return None
    send_date = local_send_date(org, now)

    def _increment() -> int:
        return (
            _counter(db, org_id, contact_id, send_date)
            .filter(ContactDailySendCount.send_count < limit)
            .update(
                {ContactDailySendCount.send_count: ContactDailySendCount.send_count + 1},
                synchronize_session=False,
            )
        )

    if _increment():
        return send_date

    if _counter(db, org_id, contact_id, send_date).first() is None:
        try:
            with db.begin_nested():
                db.add(
                    ContactDailySendCount(
                        organization_id=org_id,
                        contact_id=contact_id,
                        send_date=send_date,
                        send_count=1,
                    )
                )
            return send_date
        except IntegrityError:
            # A concurrent attempt created today's row first
            if _increment():
                return send_date

    logger.info(
        "Daily send limit of %s reached for contact",
        limit,
        extra=build_log_context(org_id=org_id, contact_id=contact_id),
    )
    raise DailyLimitReached(limit)


def release_daily_send(db: Session, org_id: UUID, contact_id: UUID, send_date: date) -> None:
    """Hand back a slot taken by an attempt that did not deliver. Caller commits."""
    _counter(db, org_id, contact_id, send_date).filter(
        ContactDailySendCount.send_count > 0
    ).update(
        {ContactDailySendCount.send_count: ContactDailySendCount.send_count - 1},
        synchronize_session=False,
    )


def sends_today(db: Session, org_id: UUID, contact_id: UUID, now: datetime) -> int:
    org = org_service.require_org(db, org_id)
    row = _counter(db, org_id, contact_id, local_send_date(org, now)).first()
    return row.send_count if row else 0
