"""
Tests for the daily per-contact automation send cap.
"""

from datetime import datetime, timedelta, timezone

import pytest

from orchestrator.db.enums import ExecutionStatus, TriggerType
from orchestrator.db.models import AutomationExecution, AutomationRule
from orchestrator.services import send_limit_service, trigger_service
from orchestrator.services.channel_senders import ChannelDeliveryError
from orchestrator.services.scheduler_service import run_sweep
from orchestrator.services.send_limit_service import DailyLimitReached

UTC = timezone.utc
MONDAY_10AM = datetime(2024, 1, 8, 10, 0, tzinfo=UTC)


def _set_cap(db, org, cap):
    org.max_automation_sends_per_day = cap
    db.commit()


# =============================================================================
# Reservations
# =============================================================================

def test_default_cap_is_three(test_org):
    assert test_org.max_automation_sends_per_day == 3


def test_reserve_until_cap(db, test_org, test_contact):
    _set_cap(db, test_org, 2)

    for _ in range(2):
        assert send_limit_service.reserve_daily_send(
            db, test_org.id, test_contact.id, MONDAY_10AM
        ) == MONDAY_10AM.date()
    with pytest.raises(DailyLimitReached) as exc_info:
        send_limit_service.reserve_daily_send(db, test_org.id, test_contact.id, MONDAY_10AM)
    db.commit()

    assert str(exc_info.value) == "Daily send limit reached (2 per day)"
    assert send_limit_service.sends_today(db, test_org.id, test_contact.id, MONDAY_10AM) == 2
    # A new day starts a new count
    tuesday = MONDAY_10AM + timedelta(days=1)
    assert send_limit_service.reserve_daily_send(db, test_org.id, test_contact.id, tuesday)


def test_cap_is_per_contact(db, test_org, make_contact):
    _set_cap(db, test_org, 1)
    first, second = make_contact(), make_contact()

    send_limit_service.reserve_daily_send(db, test_org.id, first.id, MONDAY_10AM)
    send_limit_service.reserve_daily_send(db, test_org.id, second.id, MONDAY_10AM)
    db.commit()

    with pytest.raises(DailyLimitReached):
        send_limit_service.reserve_daily_send(db, test_org.id, first.id, MONDAY_10AM)


def test_zero_cap_disables_counting(db, test_org, test_contact):
    _set_cap(db, test_org, 0)

    for _ in range(5):
        assert (
            send_limit_service.reserve_daily_send(db, test_org.id, test_contact.id, MONDAY_10AM)
            is None
        )
    assert send_limit_service.sends_today(db, test_org.id, test_contact.id, MONDAY_10AM) == 0


def test_days_follow_org_timezone(db, test_org, test_contact):
    test_org.timezone = "America/New_York"
    _set_cap(db, test_org, 1)
    # 02:00 UTC Tuesday is still Monday evening in New York
    late_monday = datetime(2024, 1, 9, 2, 0, tzinfo=UTC)

    send_limit_service.reserve_daily_send(db, test_org.id, test_contact.id, late_monday)
    db.commit()

    assert send_limit_service.local_send_date(test_org, late_monday).isoformat() == "2024-01-08"
    with pytest.raises(DailyLimitReached):
        send_limit_service.reserve_daily_send(
            db, test_org.id, test_contact.id, datetime(2024, 1, 8, 15, 0, tzinfo=UTC)
        )


def test_release_returns_slot(db, test_org, test_contact):
    _set_cap(db, test_org, 1)
    send_date = send_limit_service.reserve_daily_send(db, test_org.id, test_contact.id, MONDAY_10AM)

    send_limit_service.release_daily_send(db, test_org.id, test_contact.id, send_date)
    db.commit()

    assert send_limit_service.sends_today(db, test_org.id, test_contact.id, MONDAY_10AM) == 0
    assert send_limit_service.reserve_daily_send(db, test_org.id, test_contact.id, MONDAY_10AM)


# =============================================================================
# Enforcement at send time
# =============================================================================

@pytest.mark.asyncio
async def test_sweep_fails_executions_over_cap(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    _set_cap(db, test_org, 2)
    rules = [make_rule(name=f"rule-{n}") for n in range(3)]
    for rule in rules:
        trigger_service.evaluate_trigger(
            db, test_org.id, TriggerType.CONTACT_EVENT, test_contact.id, rule.id, now=MONDAY_10AM
        )
    db.commit()

    result = await run_sweep(session_factory, now=MONDAY_10AM)

    assert result.outcomes == {ExecutionStatus.SENT.value: 2, ExecutionStatus.FAILED.value: 1}
    assert len(fake_sender.sent) == 2
    db.expire_all()
    failed = (
        db.query(AutomationExecution)
        .filter(AutomationExecution.status == ExecutionStatus.FAILED.value)
        .one()
    )
    assert failed.error_message == "Daily send limit reached (2 per day)"
    assert db.get(AutomationRule, failed.rule_id).failed_count == 1
    assert send_limit_service.sends_today(db, test_org.id, test_contact.id, MONDAY_10AM) == 2


@pytest.mark.asyncio
async def test_failed_delivery_does_not_use_up_cap(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    _set_cap(db, test_org, 1)
    rule = make_rule()
    trigger_service.evaluate_trigger(
        db, test_org.id, TriggerType.CONTACT_EVENT, test_contact.id, rule.id, now=MONDAY_10AM
    )
    db.commit()
    fake_sender.fail_next(ChannelDeliveryError("provider timeout"))

    result = await run_sweep(session_factory, now=MONDAY_10AM)

    assert result.outcomes == {ExecutionStatus.SCHEDULED.value: 1}
    db.expire_all()
    assert send_limit_service.sends_today(db, test_org.id, test_contact.id, MONDAY_10AM) == 0

    retry_at = db.query(AutomationExecution).one().scheduled_for
    await run_sweep(session_factory, now=retry_at)

    assert len(fake_sender.sent) == 1
    db.expire_all()
    assert send_limit_service.sends_today(db, test_org.id, test_contact.id, MONDAY_10AM) == 1
