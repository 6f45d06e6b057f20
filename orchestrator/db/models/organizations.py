"""Tenant models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from orchestrator.db.base import Base, utcnow


class Organization(Base):
    """
    A tenant in the multi-tenant system.

    Carries the scheduling settings the orchestrator needs: the timezone shared
    by all business-hours rows, whether the gate is enforced, an optional
    holiday calendar, the TTL for executions waiting on dependencies, and the
    daily automation send cap per contact.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    timezone: Mapped[str] = mapped_column(
        String(50), default="UTC", server_default=text("'UTC'"), nullable=False
    )
    enforce_business_hours: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    # ISO 3166 country code understood by the holidays package ("US", "GB", ...)
    holiday_country: Mapped[str | None] = mapped_column(String(10), nullable=True)

    dependency_timeout_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_concurrent_sends: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Org-wide cap on automation sends per contact per local day; 0 disables it
    max_automation_sends_per_day: Mapped[int] = mapped_column(
        Integer, default=3, server_default=text("3"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )
