"""Contact reads and suppression list management."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orchestrator.core.structured_logging import mask_address
from orchestrator.db.models import Contact, Suppression

logger = logging.getLogger(__name__)


def get_contact(db: Session, org_id: UUID, contact_id: UUID) -> Contact | None:
    return (
        db.query(Contact)
        .filter(Contact.id == contact_id, Contact.organization_id == org_id)
        .first()
    )


def normalize_address(channel: str, address: str) -> str:
    address = (address or "").strip()
    if channel == "email":
        return address.lower()
    return "".join(ch for ch in address if ch.isdigit() or ch == "+")


def contact_attributes(contact: Contact) -> dict:
    """Flatten a contact into the attribute map used by conditions and templates."""
    return {
        "id": str(contact.id),
        "email": contact.email,
        "phone": contact.phone,
        "first_name": contact.first_name,
        "last_name": contact.last_name,
        "full_name": contact.full_name,
        "company": contact.company,
        "job_title": contact.job_title,
        "is_unsubscribed": contact.is_unsubscribed,
        "custom_fields": dict(contact.custom_fields or {}),
    }


def address_for_channel(contact: Contact, channel: str) -> str | None:
    return contact.email if channel == "email" else contact.phone


def is_suppressed(db: Session, org_id: UUID, channel: str, address: str) -> bool:
    normalized = normalize_address(channel, address)
    return (
        db.query(Suppression.id)
        .filter(
            Suppression.organization_id == org_id,
            Suppression.channel == channel,
            Suppression.address == normalized,
        )
        .first()
        is not None
    )


def add_suppression(
    db: Session, org_id: UUID, channel: str, address: str, reason: str
) -> Suppression:
    """Add an address to the suppression list (idempotent). Caller commits."""
    normalized = normalize_address(channel, address)
    existing = (
        db.query(Suppression)
        .filter(
            Suppression.organization_id == org_id,
            Suppression.channel == channel,
            Suppression.address == normalized,
        )
        .first()
    )
    if existing:
        return existing

    suppression = Suppression(
        organization_id=org_id, channel=channel, address=normalized, reason=reason
    )
    try:
        with db.begin_nested():
            db.add(suppression)
    except IntegrityError:
        # Concurrent insert of the same address
        return (
            db.query(Suppression)
            .filter(
                Suppression.organization_id == org_id,
                Suppression.channel == channel,
                Suppression.address == normalized,
            )
            .one()
        )
    logger.info("Suppressed %s address %s (%s)", channel, mask_address(normalized), reason)
    return suppression
