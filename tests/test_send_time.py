"""
Tests for the send-time optimizer: engagement scoring, bucketing, and window choice.
"""

from datetime import datetime, timezone

import pytest

from orchestrator.db.enums import EngagementKind
from orchestrator.db.models import EngagementPattern
from orchestrator.services import send_time_service
from orchestrator.services.send_time_service import compute_engagement_score

UTC = timezone.utc


# =============================================================================
# Scoring
# =============================================================================

def test_score_is_zero_without_events():
    assert compute_engagement_score(0, 0) == 0.0


def test_score_increases_with_opens_and_clicks():
    base = compute_engagement_score(3, 1)
    assert compute_engagement_score(4, 1) > base
    assert compute_engagement_score(3, 2) > base


def test_click_outweighs_open():
    assert compute_engagement_score(0, 1) > compute_engagement_score(1, 0)


def test_small_samples_are_damped():
    # Same rate, more evidence
    assert compute_engagement_score(20, 0) > 4 * compute_engagement_score(5, 0)


def test_click_weight_never_below_one():
    assert compute_engagement_score(0, 1, click_weight=0.1) == compute_engagement_score(
        1, 0, click_weight=0.1
    )


# =============================================================================
# Recording
# =============================================================================

def test_record_engagement_buckets_in_org_timezone(db, test_org):
    test_org.timezone = "America/New_York"
    db.commit()

    # Monday 15:30 UTC is Monday 10:30 EST
    send_time_service.record_engagement(
        db, test_org.id, datetime(2024, 1, 8, 15, 30, tzinfo=UTC), EngagementKind.OPEN
    )
    send_time_service.record_engagement(
        db, test_org.id, datetime(2024, 1, 8, 15, 45, tzinfo=UTC), "click"
    )
    db.commit()

    pattern = db.query(EngagementPattern).filter(
        EngagementPattern.organization_id == test_org.id
    ).one()
    assert (pattern.day_of_week, pattern.hour_of_day) == (1, 10)
    assert pattern.open_count == 1
    assert pattern.click_count == 1
    assert pattern.engagement_score == compute_engagement_score(1, 1)


def test_ranked_windows_orders_by_score(db, test_org):
    for _ in range(3):
        send_time_service.record_engagement(
            db, test_org.id, datetime(2024, 1, 9, 14, 0, tzinfo=UTC), EngagementKind.CLICK
        )
    send_time_service.record_engagement(
        db, test_org.id, datetime(2024, 1, 8, 9, 0, tzinfo=UTC), EngagementKind.OPEN
    )
    db.commit()

    windows = send_time_service.ranked_windows(db, test_org.id, top_n=5)

    assert [(w.day_of_week, w.hour_of_day) for w in windows] == [(2, 14), (1, 9)]
    assert send_time_service.ranked_windows(db, test_org.id, top_n=1)[0].hour_of_day == 14


# =============================================================================
# Choosing a send time
# =============================================================================

def test_choose_send_time_without_history_returns_earliest(db, test_org):
    earliest = datetime(2024, 1, 8, 10, 0, tzinfo=UTC)
    assert send_time_service.choose_send_time(db, test_org.id, earliest) == earliest


def test_choose_send_time_picks_best_window(db, test_org):
    # Tuesday 14:00 is the strongest bucket
    for _ in range(5):
        send_time_service.record_engagement(
            db, test_org.id, datetime(2024, 1, 2, 14, 10, tzinfo=UTC), EngagementKind.CLICK
        )
    db.commit()

    chosen = send_time_service.choose_send_time(
        db, test_org.id, datetime(2024, 1, 8, 10, 0, tzinfo=UTC)
    )
    assert chosen == datetime(2024, 1, 9, 14, 0, tzinfo=UTC)


def test_choose_send_time_within_current_window_keeps_earliest(db, test_org):
    for _ in range(3):
        send_time_service.record_engagement(
            db, test_org.id, datetime(2024, 1, 1, 10, 5, tzinfo=UTC), EngagementKind.OPEN
        )
    db.commit()

    earliest = datetime(2024, 1, 8, 10, 20, tzinfo=UTC)
    assert send_time_service.choose_send_time(db, test_org.id, earliest) == earliest


def test_choose_send_time_skips_windows_outside_business_hours(db, test_org):
    # Saturday 11:00 is popular but closed; Wednesday 16:00 is open
    for _ in range(10):
        send_time_service.record_engagement(
            db, test_org.id, datetime(2024, 1, 6, 11, 0, tzinfo=UTC), EngagementKind.CLICK
        )
    send_time_service.record_engagement(
        db, test_org.id, datetime(2024, 1, 3, 16, 0, tzinfo=UTC), EngagementKind.OPEN
    )
    db.commit()

    chosen = send_time_service.choose_send_time(
        db, test_org.id, datetime(2024, 1, 8, 10, 0, tzinfo=UTC)
    )
    assert chosen == datetime(2024, 1, 10, 16, 0, tzinfo=UTC)


def test_choose_send_time_respects_horizon(db, test_org):
    for _ in range(5):
        send_time_service.record_engagement(
            db, test_org.id, datetime(2024, 1, 5, 15, 0, tzinfo=UTC), EngagementKind.CLICK
        )
    db.commit()

    earliest = datetime(2024, 1, 8, 10, 0, tzinfo=UTC)
    # Friday 15:00 is four days out
    assert send_time_service.choose_send_time(db, test_org.id, earliest, horizon_hours=24) == earliest


@pytest.mark.asyncio
async def test_send_windows_endpoint(client, db, test_org):
    send_time_service.record_engagement(
        db, test_org.id, datetime(2024, 1, 8, 9, 0, tzinfo=UTC), EngagementKind.OPEN
    )
    db.commit()

    response = await client.get("/send-windows", params={"top_n": 3})
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["day_of_week"] == 1
    assert data[0]["hour_of_day"] == 9
    assert data[0]["open_count"] == 1
