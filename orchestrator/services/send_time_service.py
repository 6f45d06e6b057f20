"""Send-time optimizer - engagement statistics and best send windows.

Engagement is bucketed by (hour of day, day of week) in the organization's
timezone. The score for a bucket is

    raw   = opens + click_weight * clicks
    n     = opens + clicks
    score = raw * n / (n + prior)

so buckets with few observations are damped towards zero while the score stays
strictly increasing in both opens and clicks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.enums import EngagementKind
from orchestrator.db.models import EngagementPattern, Organization
from orchestrator.services import business_hours_service, org_service
from orchestrator.utils.business_hours import sunday_based_weekday

logger = logging.getLogger(__name__)

ALL_BUCKETS = 24 * 7


@dataclass(frozen=True)
class SendWindow:
    hour_of_day: int
    day_of_week: int
    engagement_score: float
    open_count: int
    click_count: int


def compute_engagement_score(
    open_count: int,
    click_count: int,
    click_weight: float | None = None,
    prior: int | None = None,
) -> float:
    weight = max(settings.ENGAGEMENT_CLICK_WEIGHT if click_weight is None else click_weight, 1.0)
    prior = settings.ENGAGEMENT_PRIOR_EVENTS if prior is None else prior
    volume = open_count + click_count
    if volume <= 0:
        return 0.0
    raw = open_count + weight * click_count
    return round(raw * volume / (volume + max(prior, 0)), 6)


def record_engagement(
    db: Session,
    org_id: UUID,
    occurred_at: datetime,
    kind: EngagementKind | str,
    org: Organization | None = None,
) -> EngagementPattern:
    """Increment the (hour, weekday) bucket for an open or click. Caller commits."""
    kind = EngagementKind(kind)
    org = org or org_service.require_org(db, org_id)
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    local = occurred_at.astimezone(ZoneInfo(org.timezone or "UTC"))
    hour, day = local.hour, sunday_based_weekday(local)

    def _bucket_query():
        return db.query(EngagementPattern).filter(
            EngagementPattern.organization_id == org_id,
            EngagementPattern.hour_of_day == hour,
            EngagementPattern.day_of_week == day,
        )

    pattern = _bucket_query().with_for_update().first()
    if pattern is None:
        try:
            with db.begin_nested():
                pattern = EngagementPattern(
                    organization_id=org_id,
                    hour_of_day=hour,
                    day_of_week=day,
                    open_count=0,
                    click_count=0,
                    engagement_score=0.0,
                )
                db.add(pattern)
        except IntegrityError:
            pattern = _bucket_query().with_for_update().one()

    if kind == EngagementKind.OPEN:
        pattern.open_count += 1
    else:
        pattern.click_count += 1
    pattern.engagement_score = compute_engagement_score(pattern.open_count, pattern.click_count)
    db.flush()

    logger.debug(
        "Recorded %s engagement in bucket day=%s hour=%s",
        kind.value,
        day,
        hour,
        extra=build_log_context(org_id=org_id),
    )
    return pattern


def ranked_windows(db: Session, org_id: UUID, top_n: int = 5) -> list[SendWindow]:
    """Top-N buckets by score, ties broken by higher open count."""
    rows = (
        db.query(EngagementPattern)
        .filter(EngagementPattern.organization_id == org_id)
        .order_by(
            EngagementPattern.engagement_score.desc(),
            EngagementPattern.open_count.desc(),
            EngagementPattern.day_of_week,
            EngagementPattern.hour_of_day,
        )
        .limit(max(top_n, 0))
        .all()
    )
    return [
        SendWindow(
            hour_of_day=row.hour_of_day,
            day_of_week=row.day_of_week,
            engagement_score=row.engagement_score,
            open_count=row.open_count,
            click_count=row.click_count,
        )
        for row in rows
    ]


def next_window_occurrence(hour_of_day: int, day_of_week: int, earliest_local: datetime) -> datetime:
    """First instant >= earliest_local that falls in the given weekly hour bucket."""
    days_ahead = (day_of_week - sunday_based_weekday(earliest_local)) % 7
    day = earliest_local.date() + timedelta(days=days_ahead)
    start = datetime.combine(day, time(hour_of_day), tzinfo=earliest_local.tzinfo)
    if start + timedelta(hours=1) <= earliest_local:
        start = datetime.combine(day + timedelta(days=7), time(hour_of_day), tzinfo=earliest_local.tzinfo)
    return max(start, earliest_local)


def choose_send_time(
    db: Session,
    org_id: UUID,
    earliest: datetime,
    horizon_hours: int | None = None,
    org: Organization | None = None,
) -> datetime:
    """
    Pick the best-scoring window at or after `earliest` within the horizon.

    Only instants that the business hours gate accepts unchanged are eligible,
    so the optimizer never pushes a send outside business hours. Falls back to
    `earliest` when there is no usable history.
    """
    org = org or org_service.require_org(db, org_id)
    if earliest.tzinfo is None:
        earliest = earliest.replace(tzinfo=timezone.utc)
    horizon = settings.OPTIMAL_SEND_HORIZON_HOURS if horizon_hours is None else horizon_hours
    horizon_end = earliest + timedelta(hours=horizon)

    windows = ranked_windows(db, org_id, top_n=ALL_BUCKETS)
    if not windows:
        return earliest

    tz = ZoneInfo(org.timezone or "UTC")
    earliest_local = earliest.astimezone(tz)
    schedule = business_hours_service.load_schedule(db, org_id)

    for window in windows:
        if window.engagement_score <= 0:
            break
        candidate = next_window_occurrence(
            window.hour_of_day, window.day_of_week, earliest_local
        ).astimezone(timezone.utc)
        if candidate > horizon_end:
            continue
        if not business_hours_service.is_within_business_hours(
            db, org_id, candidate, org=org, schedule=schedule
        ):
            continue
        return candidate

    return earliest
