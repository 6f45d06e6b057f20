"""Contact read model, suppression list, and per-contact daily send counters."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from orchestrator.db.base import Base, utcnow


class Contact(Base):
    """
    Contact attributes the orchestrator reads when evaluating and rendering.

    The CRM owns contact data; this table is the slice the orchestrator
    consumes (addresses, name fields, subscription status, custom fields).
    """

    __tablename__ = "contacts"
    __table_args__ = (Index("idx_contacts_org_email", "organization_id", "email"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_fields: Mapped[dict] = mapped_column(default=dict, nullable=False)

    is_unsubscribed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()


class Suppression(Base):
    """An address that must not receive messages on a channel."""

    __tablename__ = "suppressions"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "channel", "address", name="uq_suppression_address"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class ContactDailySendCount(Base):
    """Automation sends to one contact on one organization-local day."""

    __tablename__ = "contact_daily_send_counts"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "contact_id", "send_date", name="uq_contact_daily_send"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    send_date: Mapped[date] = mapped_column(Date, nullable=False)
    send_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
