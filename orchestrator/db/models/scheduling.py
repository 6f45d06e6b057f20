"""Business hours and engagement statistics."""

from __future__ import annotations

import uuid
from datetime import datetime, time

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from orchestrator.db.base import Base, utcnow


class BusinessHours(Base):
    """
    One weekday of an organization's sending window.

    day_of_week: 0 = Sunday ... 6 = Saturday. start/end are wall-clock times in
    the organization's timezone and are ignored when the day is disabled.
    """

    __tablename__ = "business_hours"
    __table_args__ = (
        UniqueConstraint("organization_id", "day_of_week", name="uq_business_hours_day"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_business_hours_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    start_time: Mapped[time] = mapped_column(nullable=False)
    end_time: Mapped[time] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )


class EngagementPattern(Base):
    """Cumulative opens/clicks per (hour, weekday) bucket. Never deleted."""

    __tablename__ = "engagement_patterns"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "hour_of_day", "day_of_week", name="uq_engagement_bucket"
        ),
        CheckConstraint("hour_of_day BETWEEN 0 AND 23", name="ck_engagement_hour"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_engagement_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    hour_of_day: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    open_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    click_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    engagement_score: Mapped[float] = mapped_column(
        Float, default=0.0, server_default=text("0"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )
