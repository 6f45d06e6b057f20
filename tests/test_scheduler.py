"""
Tests for the scheduler sweep: claims, dispatch, and end-to-end flows.

Each test drives run_sweep with an explicit `now` against a file-backed
SQLite database, with a recording sender in place of the channel providers.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from orchestrator.db.enums import (
    CampaignStatus,
    DependencyType,
    ExecutionStatus,
    MessageStatus,
    TriggerType,
)
from orchestrator.db.models import (
    AutomationExecution,
    AutomationRule,
    CampaignRecipient,
    ScheduledMessage,
)
from orchestrator.schemas.campaign import CampaignCreate, CampaignEnqueueRequest, RecipientInput
from orchestrator.schemas.scheduling import MessageCreate
from orchestrator.services import (
    campaign_service,
    dependency_service,
    message_service,
    scheduler_service,
    send_executor,
    trigger_service,
)
from orchestrator.services.channel_senders import ChannelDeliveryError, SendResult, register_sender
from orchestrator.services.scheduler_service import SendDispatcher, run_sweep

UTC = timezone.utc
MONDAY_10AM = datetime(2024, 1, 8, 10, 0, tzinfo=UTC)


def _evaluate(db, org, rule, contact, now):
    execution = trigger_service.evaluate_trigger(
        db, org.id, TriggerType.CONTACT_EVENT, contact.id, rule.id, now=now
    )
    db.commit()
    return execution


def _reload(db, model, obj_id):
    db.expire_all()
    return db.query(model).filter(model.id == obj_id).one()


class SteppingClock:
    """Manually advanced time source."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **delta):
        self.current += timedelta(**delta)


class SlowSender:
    """Each delivery takes `minutes` on the given clock."""

    def __init__(self, clock, minutes):
        self.clock = clock
        self.minutes = minutes
        self.delivered_at = []

    async def send(self, message):
        await asyncio.sleep(0)
        self.clock.advance(minutes=self.minutes)
        self.delivered_at.append(self.clock())
        return SendResult(provider_message_id=f"slow-{len(self.delivered_at)}")


def _sending_campaign(db, org, addresses):
    campaign = campaign_service.create_campaign(
        db, org.id, CampaignCreate(name="Bulk", subject_template="s", body_template="b")
    )
    campaign_service.enqueue_campaign(
        db,
        org.id,
        campaign.id,
        CampaignEnqueueRequest(
            recipients=[RecipientInput(address=a) for a in addresses], scheduled_at=MONDAY_10AM
        ),
        now=MONDAY_10AM,
    )
    db.commit()
    return campaign


# =============================================================================
# At-most-once delivery
# =============================================================================

@pytest.mark.asyncio
async def test_overlapping_sweeps_send_once(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule = make_rule()
    execution = _evaluate(db, test_org, rule, test_contact, MONDAY_10AM)

    first, second = await asyncio.gather(
        run_sweep(session_factory, now=MONDAY_10AM),
        run_sweep(session_factory, now=MONDAY_10AM),
    )

    assert len(fake_sender.sent) == 1
    assert first.dispatched + second.dispatched == 1
    execution = _reload(db, AutomationExecution, execution.id)
    assert execution.status == ExecutionStatus.SENT.value
    assert execution.provider_message_id == "fake-1"
    assert _reload(db, AutomationRule, rule.id).sent_count == 1


def test_claim_is_exclusive(db, test_org, test_contact, make_rule):
    rule = make_rule()
    execution = _evaluate(db, test_org, rule, test_contact, MONDAY_10AM)

    token = scheduler_service.claim_execution(db, execution.id, MONDAY_10AM)
    assert token is not None
    assert scheduler_service.claim_execution(db, execution.id, MONDAY_10AM) is None
    db.commit()


def test_recipient_lease_is_exclusive(db, test_org):
    campaign = _sending_campaign(db, test_org, ["lease@example.com"])
    scheduler_service.start_due_campaigns(db, MONDAY_10AM)
    recipient = db.query(CampaignRecipient).filter(
        CampaignRecipient.campaign_id == campaign.id
    ).one()

    token = scheduler_service.claim_recipient(db, recipient.id, MONDAY_10AM)
    db.commit()

    assert token is not None
    assert scheduler_service.claim_recipient(db, recipient.id, MONDAY_10AM) is None
    assert (
        scheduler_service.claim_recipient(db, recipient.id, MONDAY_10AM + timedelta(minutes=5))
        is None
    )
    db.commit()
    assert _reload(db, CampaignRecipient, recipient.id).claim_token == token


@pytest.mark.asyncio
async def test_overlapping_sweeps_send_each_recipient_once(
    db, session_factory, test_org, fake_sender
):
    addresses = [f"bulk-{n}@example.com" for n in range(6)]
    campaign = _sending_campaign(db, test_org, addresses)

    first, second = await asyncio.gather(
        run_sweep(session_factory, now=MONDAY_10AM),
        run_sweep(session_factory, now=MONDAY_10AM),
    )

    assert sorted(m.to for m in fake_sender.sent) == addresses
    assert first.dispatched + second.dispatched == len(addresses)
    db.expire_all()
    campaign = campaign_service.get_campaign(db, test_org.id, campaign.id)
    assert campaign.status == CampaignStatus.COMPLETED.value
    assert (campaign.sent_count, campaign.pending_count) == (6, 0)


@pytest.mark.asyncio
async def test_future_execution_is_not_claimed(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule = make_rule(send_delay_minutes=60)
    _evaluate(db, test_org, rule, test_contact, MONDAY_10AM)

    result = await run_sweep(session_factory, now=MONDAY_10AM + timedelta(minutes=59))

    assert result.dispatched == 0
    assert fake_sender.sent == []


# =============================================================================
# Dependencies end to end
# =============================================================================

@pytest.mark.asyncio
async def test_required_dependency_end_to_end(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule_a = make_rule(name="A", subject_template="A for {{first_name}}")
    rule_b = make_rule(name="B", subject_template="B for {{first_name}}")
    dependency_service.add_dependency(
        db, test_org.id, rule_b.id, rule_a.id, DependencyType.REQUIRED, delay_minutes=1
    )
    execution_a = _evaluate(db, test_org, rule_a, test_contact, MONDAY_10AM)
    execution_b = _evaluate(db, test_org, rule_b, test_contact, MONDAY_10AM)
    assert execution_b.status == ExecutionStatus.PENDING.value

    await run_sweep(session_factory, now=MONDAY_10AM)

    assert [m.subject for m in fake_sender.sent] == ["A for Ada"]
    execution_b = _reload(db, AutomationExecution, execution_b.id)
    assert execution_b.status == ExecutionStatus.SCHEDULED.value
    assert execution_b.scheduled_for == MONDAY_10AM + timedelta(minutes=1)

    await run_sweep(session_factory, now=MONDAY_10AM + timedelta(seconds=30))
    assert len(fake_sender.sent) == 1

    await run_sweep(session_factory, now=MONDAY_10AM + timedelta(minutes=1))
    assert [m.subject for m in fake_sender.sent] == ["A for Ada", "B for Ada"]
    execution_b = _reload(db, AutomationExecution, execution_b.id)
    assert execution_b.status == ExecutionStatus.SENT.value
    assert execution_b.sent_at == MONDAY_10AM + timedelta(minutes=1)
    assert _reload(db, AutomationExecution, execution_a.id).sent_at == MONDAY_10AM


@pytest.mark.asyncio
async def test_triggers_dependency_schedules_follow_up(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    welcome = make_rule(name="welcome")
    follow_up = make_rule(name="follow-up", trigger_type=TriggerType.MANUAL_TEST.value)
    dependency_service.add_dependency(
        db, test_org.id, welcome.id, follow_up.id, DependencyType.TRIGGERS, delay_minutes=120
    )
    _evaluate(db, test_org, welcome, test_contact, MONDAY_10AM)

    await run_sweep(session_factory, now=MONDAY_10AM)

    db.expire_all()
    triggered = (
        db.query(AutomationExecution)
        .filter(AutomationExecution.rule_id == follow_up.id)
        .one()
    )
    assert triggered.status == ExecutionStatus.SCHEDULED.value
    assert triggered.scheduled_for == MONDAY_10AM + timedelta(minutes=120)
    assert triggered.trigger_data["triggered_by_rule_id"] == str(welcome.id)


@pytest.mark.asyncio
async def test_sweep_expires_waiting_executions(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule_a, rule_b = make_rule(name="A"), make_rule(name="B")
    dependency_service.add_dependency(
        db, test_org.id, rule_b.id, rule_a.id, DependencyType.REQUIRED
    )
    waiting = _evaluate(db, test_org, rule_b, test_contact, MONDAY_10AM)

    result = await run_sweep(session_factory, now=MONDAY_10AM + timedelta(hours=73))

    assert result.expired == 1
    assert _reload(db, AutomationExecution, waiting.id).status == ExecutionStatus.FAILED.value


# =============================================================================
# Retries and re-gating
# =============================================================================

@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule = make_rule()
    execution = _evaluate(db, test_org, rule, test_contact, MONDAY_10AM)
    fake_sender.fail_next(ChannelDeliveryError("provider timeout"))

    result = await run_sweep(session_factory, now=MONDAY_10AM)

    assert result.outcomes == {ExecutionStatus.SCHEDULED.value: 1}
    execution = _reload(db, AutomationExecution, execution.id)
    assert execution.retry_count == 1
    assert execution.error_message == "provider timeout"
    assert execution.scheduled_for == MONDAY_10AM + timedelta(
        minutes=send_executor.backoff_minutes(0)
    )

    await run_sweep(session_factory, now=execution.scheduled_for)
    assert _reload(db, AutomationExecution, execution.id).status == ExecutionStatus.SENT.value
    assert len(fake_sender.sent) == 1


@pytest.mark.asyncio
async def test_execution_retries_exhaust(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule = make_rule(max_retries=1)
    execution = _evaluate(db, test_org, rule, test_contact, MONDAY_10AM)
    fake_sender.fail_next(ChannelDeliveryError("down"), ChannelDeliveryError("still down"))

    await run_sweep(session_factory, now=MONDAY_10AM)
    retry_at = _reload(db, AutomationExecution, execution.id).scheduled_for
    await run_sweep(session_factory, now=retry_at)

    execution = _reload(db, AutomationExecution, execution.id)
    assert execution.status == ExecutionStatus.FAILED.value
    assert execution.retry_count == 1
    assert _reload(db, AutomationRule, rule.id).failed_count == 1


@pytest.mark.asyncio
async def test_due_execution_outside_hours_is_rescheduled(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule = make_rule()
    friday = datetime(2024, 1, 12, 16, 59, tzinfo=UTC)
    execution = _evaluate(db, test_org, rule, test_contact, friday)
    assert execution.scheduled_for == friday

    result = await run_sweep(session_factory, now=datetime(2024, 1, 12, 17, 30, tzinfo=UTC))

    assert result.outcomes == {ExecutionStatus.SCHEDULED.value: 1}
    assert fake_sender.sent == []
    execution = _reload(db, AutomationExecution, execution.id)
    assert execution.status == ExecutionStatus.SCHEDULED.value
    assert execution.scheduled_for == datetime(2024, 1, 15, 9, 0, tzinfo=UTC)
    assert execution.retry_count == 0


@pytest.mark.asyncio
async def test_queued_jobs_are_stamped_when_they_send(
    db, session_factory, test_org, make_contact, make_rule, fake_sender
):
    rule = make_rule()
    executions = [
        _evaluate(db, test_org, rule, make_contact(), MONDAY_10AM) for _ in range(2)
    ]
    clock = SteppingClock(MONDAY_10AM)
    sender = SlowSender(clock, minutes=5)
    register_sender("email", sender)
    dispatcher = SendDispatcher(session_factory, max_per_org=1, clock=clock)

    await run_sweep(session_factory, now=MONDAY_10AM, dispatcher=dispatcher)

    sent_at = sorted(_reload(db, AutomationExecution, e.id).sent_at for e in executions)
    assert sender.delivered_at == [
        MONDAY_10AM + timedelta(minutes=5),
        MONDAY_10AM + timedelta(minutes=10),
    ]
    assert sent_at == sender.delivered_at


@pytest.mark.asyncio
async def test_queued_job_is_gated_when_it_runs(
    db, session_factory, test_org, make_contact, make_rule, fake_sender
):
    rule = make_rule()
    friday = datetime(2024, 1, 12, 16, 50, tzinfo=UTC)
    executions = [_evaluate(db, test_org, rule, make_contact(), friday) for _ in range(2)]
    clock = SteppingClock(friday)
    sender = SlowSender(clock, minutes=15)
    register_sender("email", sender)
    dispatcher = SendDispatcher(session_factory, max_per_org=1, clock=clock)

    result = await run_sweep(session_factory, now=friday, dispatcher=dispatcher)

    # The second job only gets its turn at 17:05, after closing
    assert result.outcomes == {
        ExecutionStatus.SENT.value: 1,
        ExecutionStatus.SCHEDULED.value: 1,
    }
    assert len(sender.delivered_at) == 1
    reloaded = [_reload(db, AutomationExecution, e.id) for e in executions]
    rescheduled = [e for e in reloaded if e.status == ExecutionStatus.SCHEDULED.value]
    assert rescheduled[0].scheduled_for == datetime(2024, 1, 15, 9, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_retry_backoff_starts_after_failed_delivery(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule = make_rule()
    execution = _evaluate(db, test_org, rule, test_contact, MONDAY_10AM)
    clock = SteppingClock(MONDAY_10AM)

    class TimeoutSender:
        async def send(self, message):
            clock.advance(minutes=2)
            raise ChannelDeliveryError("provider timeout")

    register_sender("email", TimeoutSender())
    dispatcher = SendDispatcher(session_factory, clock=clock)

    await run_sweep(session_factory, now=MONDAY_10AM, dispatcher=dispatcher)

    execution = _reload(db, AutomationExecution, execution.id)
    assert execution.scheduled_for == MONDAY_10AM + timedelta(
        minutes=2 + send_executor.backoff_minutes(0)
    )


@pytest.mark.asyncio
async def test_stale_claim_is_requeued(
    db, session_factory, test_org, test_contact, make_rule, fake_sender
):
    rule = make_rule()
    execution = _evaluate(db, test_org, rule, test_contact, MONDAY_10AM)
    scheduler_service.claim_execution(db, execution.id, MONDAY_10AM)
    db.commit()

    # Worker crashed after claiming
    result = await run_sweep(session_factory, now=MONDAY_10AM + timedelta(minutes=20))

    assert result.requeued == 1
    assert len(fake_sender.sent) == 1
    execution = _reload(db, AutomationExecution, execution.id)
    assert execution.status == ExecutionStatus.SENT.value
    assert execution.retry_count == 0


# =============================================================================
# Scheduled messages
# =============================================================================

@pytest.mark.asyncio
async def test_scheduled_message_is_sent_when_due(
    db, session_factory, test_org, fake_sender
):
    message = message_service.schedule_message(
        db,
        test_org.id,
        MessageCreate(
            channel="email",
            address=" Grace@Example.com ",
            subject="Reminder",
            body="See you tomorrow",
            scheduled_for=MONDAY_10AM + timedelta(hours=1),
        ),
    )
    db.commit()
    assert message.address == "grace@example.com"

    early = await run_sweep(session_factory, now=MONDAY_10AM)
    assert early.dispatched == 0

    result = await run_sweep(session_factory, now=MONDAY_10AM + timedelta(hours=1))
    assert result.claimed == {"message": 1}
    assert fake_sender.sent[0].to == "grace@example.com"
    assert fake_sender.sent[0].idempotency_key == f"scheduled-message/{message.id}"
    assert _reload(db, ScheduledMessage, message.id).status == MessageStatus.SENT.value


@pytest.mark.asyncio
async def test_cancelled_message_is_never_sent(db, session_factory, test_org, fake_sender):
    message = message_service.schedule_message(
        db,
        test_org.id,
        MessageCreate(
            channel="whatsapp",
            address="+1 (555) 000-1111",
            body="Hi",
            scheduled_for=MONDAY_10AM,
        ),
    )
    db.commit()
    message_service.cancel_message(db, test_org.id, message.id)
    db.commit()

    result = await run_sweep(session_factory, now=MONDAY_10AM)

    assert result.dispatched == 0
    assert fake_sender.sent == []
    assert _reload(db, ScheduledMessage, message.id).status == MessageStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_crashed_job_is_reported_and_recovered(
    db, session_factory, test_org, fake_sender, monkeypatch
):
    message = message_service.schedule_message(
        db,
        test_org.id,
        MessageCreate(address="ops@example.com", subject="s", body="b", scheduled_for=MONDAY_10AM),
    )
    db.commit()

    async def explode(*args, **kwargs):
        raise RuntimeError("worker bug")

    monkeypatch.setattr(send_executor, "attempt_message", explode)
    result = await run_sweep(session_factory, now=MONDAY_10AM)
    assert result.outcomes == {"error": 1}
    assert _reload(db, ScheduledMessage, message.id).status == MessageStatus.PROCESSING.value

    monkeypatch.undo()
    later = await run_sweep(session_factory, now=MONDAY_10AM + timedelta(minutes=20))
    assert later.requeued == 1
    assert _reload(db, ScheduledMessage, message.id).status == MessageStatus.SENT.value


# =============================================================================
# Campaigns
# =============================================================================

@pytest.mark.asyncio
async def test_campaign_sweep_sends_and_completes(
    db, session_factory, test_org, test_contact, fake_sender
):
    campaign = campaign_service.create_campaign(
        db,
        test_org.id,
        CampaignCreate(
            name="Launch",
            subject_template="News for {{first_name}}",
            body_template="Hello {{full_name}}, code {{code}}",
        ),
    )
    campaign_service.enqueue_campaign(
        db,
        test_org.id,
        campaign.id,
        CampaignEnqueueRequest(
            contact_ids=[test_contact.id],
            recipients=[
                RecipientInput(address="first@example.com", variables={"code": "A1"}),
                RecipientInput(address="FIRST@example.com"),
            ],
            scheduled_at=MONDAY_10AM,
        ),
        now=MONDAY_10AM,
    )
    db.commit()

    result = await run_sweep(session_factory, now=MONDAY_10AM)

    assert result.campaigns_started == 1
    assert result.claimed == {"recipient": 2}
    assert sorted(m.to for m in fake_sender.sent) == sorted(
        [test_contact.email, "first@example.com"]
    )
    db.expire_all()
    campaign = campaign_service.get_campaign(db, test_org.id, campaign.id)
    assert campaign.status == CampaignStatus.COMPLETED.value
    assert (campaign.total_recipients, campaign.sent_count, campaign.pending_count) == (2, 2, 0)
    bodies = {m.to: m.body for m in fake_sender.sent}
    assert bodies["first@example.com"] == "Hello there, code A1"


@pytest.mark.asyncio
async def test_dispatcher_respects_per_org_limit(session_factory, test_org, monkeypatch):
    from orchestrator.jobs.utils import SendJob

    active = 0
    peak = 0

    async def slow_handler(db, job, clock):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return "sent"

    monkeypatch.setattr(scheduler_service, "get_handler", lambda job_type: slow_handler)
    dispatcher = SendDispatcher(session_factory, max_concurrent=10, max_per_org=2)
    jobs = [SendJob("message", i, test_org.id, i, MONDAY_10AM) for i in range(6)]

    outcomes = await dispatcher.dispatch(jobs)

    assert outcomes == {"sent": 6}
    assert peak == 2
