"""Business hours gate - confines sends to an organization's weekly windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timezone
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from orchestrator.core.constants import (
    DAYS_IN_WEEK,
    DEFAULT_BUSINESS_DAYS,
    DEFAULT_BUSINESS_HOURS_END,
    DEFAULT_BUSINESS_HOURS_START,
)
from orchestrator.db.models import BusinessHours, Organization
from orchestrator.services import org_service
from orchestrator.utils.business_hours import (
    NoBusinessHoursConfigured,
    WeeklySchedule,
    is_open,
    next_open_instant,
)

__all__ = [
    "DayHours",
    "InvalidBusinessHoursError",
    "NoBusinessHoursConfigured",
    "get_business_hours",
    "is_within_business_hours",
    "load_schedule",
    "next_allowed_instant",
    "seed_default_business_hours",
    "set_business_hours",
]


class InvalidBusinessHoursError(ValueError):
    """Submitted business hours are malformed."""

    pass


@dataclass(frozen=True)
class DayHours:
    day_of_week: int
    is_enabled: bool
    start_time: time
    end_time: time


def get_business_hours(db: Session, org_id: UUID) -> list[BusinessHours]:
    return (
        db.query(BusinessHours)
        .filter(BusinessHours.organization_id == org_id)
        .order_by(BusinessHours.day_of_week)
        .all()
    )


def load_schedule(db: Session, org_id: UUID) -> WeeklySchedule:
    return WeeklySchedule.from_rows(get_business_hours(db, org_id))


def next_allowed_instant(
    db: Session,
    org_id: UUID,
    candidate: datetime,
    org: Organization | None = None,
    schedule: WeeklySchedule | None = None,
) -> datetime:
    """
    Return the earliest instant >= candidate inside the organization's hours.

    Pure read: returns the candidate unchanged when enforcement is disabled.

    Raises:
        NoBusinessHoursConfigured: enforcement is on but no day is enabled
    """
    org = org or org_service.require_org(db, org_id)
    if candidate.tzinfo is None:
        candidate = candidate.replace(tzinfo=timezone.utc)
    if not org.enforce_business_hours:
        return candidate
    schedule = schedule or load_schedule(db, org_id)
    return next_open_instant(schedule, candidate, org.timezone or "UTC", org.holiday_country)


def is_within_business_hours(
    db: Session,
    org_id: UUID,
    instant: datetime,
    org: Organization | None = None,
    schedule: WeeklySchedule | None = None,
) -> bool:
    org = org or org_service.require_org(db, org_id)
    if not org.enforce_business_hours:
        return True
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    schedule = schedule or load_schedule(db, org_id)
    local = instant.astimezone(ZoneInfo(org.timezone or "UTC"))
    return is_open(schedule, local, org.holiday_country)


def _validate_timezone(tz_name: str) -> None:
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidBusinessHoursError(f"Unknown timezone: {tz_name}") from exc


def set_business_hours(
    db: Session,
    org_id: UUID,
    days: list[DayHours],
    tz_name: str | None = None,
    enforce: bool | None = None,
) -> list[BusinessHours]:
    """
    Upsert the weekly schedule. Days not listed keep their current row.

    Caller commits.
    """
    org = org_service.require_org(db, org_id)

    seen: set[int] = set()
    for day in days:
        if not 0 <= day.day_of_week < DAYS_IN_WEEK:
            raise InvalidBusinessHoursError(f"day_of_week must be 0-6, got {day.day_of_week}")
        if day.day_of_week in seen:
            raise InvalidBusinessHoursError(f"Duplicate day_of_week {day.day_of_week}")
        seen.add(day.day_of_week)
        if day.is_enabled and day.start_time >= day.end_time:
            raise InvalidBusinessHoursError(
                f"start_time must be before end_time for day {day.day_of_week}"
            )

    if tz_name is not None:
        _validate_timezone(tz_name)
        org.timezone = tz_name
    if enforce is not None:
        org.enforce_business_hours = enforce

    existing = {row.day_of_week: row for row in get_business_hours(db, org_id)}
    for day in days:
        row = existing.get(day.day_of_week)
        if row is None:
            row = BusinessHours(organization_id=org_id, day_of_week=day.day_of_week)
            db.add(row)
            existing[day.day_of_week] = row
        row.is_enabled = day.is_enabled
        row.start_time = day.start_time
        row.end_time = day.end_time

    db.flush()
    return get_business_hours(db, org_id)


def seed_default_business_hours(db: Session, org_id: UUID) -> list[BusinessHours]:
    """Seed Mon-Fri 09:00-17:00 (weekends disabled). Caller commits."""
    days = [
        DayHours(
            day_of_week=day,
            is_enabled=day in DEFAULT_BUSINESS_DAYS,
            start_time=DEFAULT_BUSINESS_HOURS_START,
            end_time=DEFAULT_BUSINESS_HOURS_END,
        )
        for day in range(DAYS_IN_WEEK)
    ]
    return set_business_hours(db, org_id, days)
