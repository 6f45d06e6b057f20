"""Scheduler sweep - finds due work, claims it, and hands it to the send dispatcher.

A claim is a conditional UPDATE that only succeeds while the row is still
claimable, so overlapping sweeps (or several workers) never dispatch the same
item twice. Claims that outlive STALE_CLAIM_MINUTES are treated as crashed
workers and released.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from orchestrator.core.config import settings
from orchestrator.core.structured_logging import build_log_context
from orchestrator.db.base import utcnow
from orchestrator.db.enums import (
    RECIPIENT_SENDABLE_STATUSES,
    CampaignStatus,
    ExecutionStatus,
    JobType,
    MessageStatus,
)
from orchestrator.db.models import (
    AutomationExecution,
    Campaign,
    CampaignRecipient,
    Organization,
    ScheduledMessage,
)
from orchestrator.jobs.registry import get_handler
from orchestrator.jobs.utils import SendJob, job_log_context
from orchestrator.services import campaign_tracker, execution_service, trigger_service
from orchestrator.services.send_executor import Clock

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class SweepResult:
    sweep_id: str
    requeued: int = 0
    expired: int = 0
    released: int = 0
    campaigns_started: int = 0
    claimed: dict[str, int] = field(default_factory=dict)
    outcomes: dict[str, int] = field(default_factory=dict)
    campaigns_finalized: int = 0

    @property
    def dispatched(self) -> int:
        return sum(self.claimed.values())


def _stale_before(now: datetime) -> datetime:
    return now - timedelta(minutes=settings.STALE_CLAIM_MINUTES)


# =============================================================================
# Maintenance steps
# =============================================================================


def requeue_stale_claims(db: Session, now: datetime | None = None) -> int:
    """
    Return executions and messages stuck in processing to scheduled.

    Recipient leases expire on their own (see claim_recipient). Caller commits.
    """
    now = now or utcnow()
    stale_before = _stale_before(now)
    requeued = 0
    for model, processing, scheduled in (
        (AutomationExecution, ExecutionStatus.PROCESSING.value, ExecutionStatus.SCHEDULED.value),
        (ScheduledMessage, MessageStatus.PROCESSING.value, MessageStatus.SCHEDULED.value),
    ):
        requeued += (
            db.query(model)
            .filter(model.status == processing, model.claimed_at < stale_before)
            .update(
                {model.status: scheduled, model.claimed_at: None, model.claim_token: None},
                synchronize_session=False,
            )
        )
    if requeued:
        logger.warning("Requeued %s stale claims", requeued)
    return requeued


def start_due_campaigns(db: Session, now: datetime | None = None) -> int:
    """Move scheduled campaigns whose start time has passed to sending. Caller commits."""
    now = now or utcnow()
    started = (
        db.query(Campaign)
        .filter(
            Campaign.status == CampaignStatus.SCHEDULED.value,
            Campaign.scheduled_at <= now,
        )
        .update(
            {
                Campaign.status: CampaignStatus.SENDING.value,
                Campaign.started_at: now,
                Campaign.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if started:
        logger.info("Started %s campaigns", started)
    return started


# =============================================================================
# Claims
# =============================================================================


def claim_execution(db: Session, execution_id: UUID, now: datetime | None = None) -> UUID | None:
    """Claim one due execution. Returns the claim token, or None if someone else has it."""
    now = now or utcnow()
    token = uuid.uuid4()
    updated = (
        db.query(AutomationExecution)
        .filter(
            AutomationExecution.id == execution_id,
            AutomationExecution.status == ExecutionStatus.SCHEDULED.value,
            AutomationExecution.scheduled_for <= now,
        )
        .update(
            {
                AutomationExecution.status: ExecutionStatus.PROCESSING.value,
                AutomationExecution.claimed_at: now,
                AutomationExecution.claim_token: token,
            },
            synchronize_session=False,
        )
    )
    return token if updated == 1 else None


def claim_message(db: Session, message_id: UUID, now: datetime | None = None) -> UUID | None:
    now = now or utcnow()
    token = uuid.uuid4()
    updated = (
        db.query(ScheduledMessage)
        .filter(
            ScheduledMessage.id == message_id,
            ScheduledMessage.status == MessageStatus.SCHEDULED.value,
            ScheduledMessage.scheduled_for <= now,
        )
        .update(
            {
                ScheduledMessage.status: MessageStatus.PROCESSING.value,
                ScheduledMessage.claimed_at: now,
                ScheduledMessage.claim_token: token,
            },
            synchronize_session=False,
        )
    )
    return token if updated == 1 else None


def _recipient_claimable(now: datetime):
    return (
        CampaignRecipient.status.in_(RECIPIENT_SENDABLE_STATUSES),
        or_(CampaignRecipient.next_attempt_at.is_(None), CampaignRecipient.next_attempt_at <= now),
        or_(
            CampaignRecipient.claimed_at.is_(None),
            CampaignRecipient.claimed_at < _stale_before(now),
        ),
    )


def claim_recipient(db: Session, recipient_id: UUID, now: datetime | None = None) -> UUID | None:
    """Lease one due recipient. Recipients keep their status while leased."""
    now = now or utcnow()
    token = uuid.uuid4()
    updated = (
        db.query(CampaignRecipient)
        .filter(CampaignRecipient.id == recipient_id, *_recipient_claimable(now))
        .update(
            {CampaignRecipient.claimed_at: now, CampaignRecipient.claim_token: token},
            synchronize_session=False,
        )
    )
    return token if updated == 1 else None


def claim_due_executions(db: Session, now: datetime, limit: int) -> list[SendJob]:
    candidates = (
        db.query(AutomationExecution.id, AutomationExecution.organization_id)
        .filter(
            AutomationExecution.status == ExecutionStatus.SCHEDULED.value,
            AutomationExecution.scheduled_for <= now,
        )
        .order_by(AutomationExecution.scheduled_for)
        .limit(limit)
        .all()
    )
    jobs = []
    for row in candidates:
        token = claim_execution(db, row.id, now)
        if token:
            jobs.append(
                SendJob(JobType.EXECUTION_SEND.value, row.id, row.organization_id, token, now)
            )
    db.commit()
    return jobs


def claim_due_messages(db: Session, now: datetime, limit: int) -> list[SendJob]:
    candidates = (
        db.query(ScheduledMessage.id, ScheduledMessage.organization_id)
        .filter(
            ScheduledMessage.status == MessageStatus.SCHEDULED.value,
            ScheduledMessage.scheduled_for <= now,
        )
        .order_by(ScheduledMessage.scheduled_for)
        .limit(limit)
        .all()
    )
    jobs = []
    for row in candidates:
        token = claim_message(db, row.id, now)
        if token:
            jobs.append(
                SendJob(JobType.MESSAGE_SEND.value, row.id, row.organization_id, token, now)
            )
    db.commit()
    return jobs


def claim_due_recipients(db: Session, now: datetime, limit: int) -> list[SendJob]:
    candidates = (
        db.query(CampaignRecipient.id, CampaignRecipient.organization_id)
        .join(Campaign, Campaign.id == CampaignRecipient.campaign_id)
        .filter(Campaign.status == CampaignStatus.SENDING.value, *_recipient_claimable(now))
        .order_by(CampaignRecipient.created_at)
        .limit(limit)
        .all()
    )
    jobs = []
    for row in candidates:
        token = claim_recipient(db, row.id, now)
        if token:
            jobs.append(
                SendJob(JobType.RECIPIENT_SEND.value, row.id, row.organization_id, token, now)
            )
    db.commit()
    return jobs


# =============================================================================
# Dispatch
# =============================================================================


class SendDispatcher:
    """
    Runs claimed send jobs with bounded concurrency: one global limit plus a
    limit per organization, so a large campaign cannot starve other tenants.
    Each job gets its own session and reads the time from `clock` once it holds
    its slots, so jobs that queued behind others are gated and stamped late.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        max_concurrent: int | None = None,
        max_per_org: int | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._global = asyncio.Semaphore(max_concurrent or settings.MAX_CONCURRENT_SENDS)
        self._default_per_org = max_per_org or settings.MAX_CONCURRENT_SENDS_PER_ORG
        self._per_org: dict[UUID, asyncio.Semaphore] = {}

    def _org_semaphore(self, org_id: UUID, limit: int | None) -> asyncio.Semaphore:
        semaphore = self._per_org.get(org_id)
        if semaphore is None:
            semaphore = asyncio.Semaphore(limit or self._default_per_org)
            self._per_org[org_id] = semaphore
        return semaphore

    def _org_limits(self, org_ids: set[UUID]) -> dict[UUID, int | None]:
        if not org_ids:
            return {}
        with self._session_factory() as db:
            rows = (
                db.query(Organization.id, Organization.max_concurrent_sends)
                .filter(Organization.id.in_(org_ids))
                .all()
            )
        return {row.id: row.max_concurrent_sends for row in rows}

    async def _run(self, job: SendJob, org_limit: int | None, sweep_id: str | None) -> str:
        handler = get_handler(job.job_type)
        async with self._global, self._org_semaphore(job.organization_id, org_limit):
            with self._session_factory() as db:
                try:
                    status = await handler(db, job, self._clock)
                except Exception:
                    db.rollback()
                    logger.exception(
                        "Send job crashed; claim will be released as stale",
                        extra=job_log_context(job, sweep_id),
                    )
                    return "error"
        return status or "ignored"

    async def dispatch(self, jobs: list[SendJob], sweep_id: str | None = None) -> dict[str, int]:
        """Run jobs concurrently and count their resulting statuses."""
        if not jobs:
            return {}
        limits = self._org_limits({job.organization_id for job in jobs})
        statuses = await asyncio.gather(
            *(self._run(job, limits.get(job.organization_id), sweep_id) for job in jobs)
        )
        return dict(Counter(statuses))


# =============================================================================
# Sweep
# =============================================================================


async def run_sweep(
    session_factory: SessionFactory,
    now: datetime | None = None,
    dispatcher: SendDispatcher | None = None,
    batch_size: int | None = None,
) -> SweepResult:
    """
    One scheduler pass: maintenance, claims, dispatch, then campaign finalization.

    Safe to run concurrently with other sweeps.
    """
    # A pinned sweep time also pins the time its own send attempts see
    clock = utcnow if now is None else (lambda: now)
    now = now or utcnow()
    batch_size = batch_size or settings.SWEEP_BATCH_SIZE
    result = SweepResult(sweep_id=uuid.uuid4().hex[:12])
    log_ctx = build_log_context(sweep_id=result.sweep_id)

    with session_factory() as db:
        result.requeued = requeue_stale_claims(db, now)
        db.commit()
        result.expired = execution_service.expire_waiting_executions(db, now)
        db.commit()
        result.released = trigger_service.resolve_waiting_executions(db, now)
        db.commit()
        result.campaigns_started = start_due_campaigns(db, now)
        db.commit()

        jobs = (
            claim_due_executions(db, now, batch_size)
            + claim_due_messages(db, now, batch_size)
            + claim_due_recipients(db, now, batch_size)
        )
    result.claimed = dict(Counter(job.job_type for job in jobs))

    dispatcher = dispatcher or SendDispatcher(session_factory, clock=clock)
    result.outcomes = await dispatcher.dispatch(jobs, result.sweep_id)

    with session_factory() as db:
        result.campaigns_finalized = campaign_tracker.finalize_idle_campaigns(db, now)
        db.commit()

    if result.dispatched or result.expired or result.released or result.requeued:
        logger.info(
            "Sweep done: dispatched=%s outcomes=%s expired=%s released=%s requeued=%s",
            result.dispatched,
            result.outcomes,
            result.expired,
            result.released,
            result.requeued,
            extra=log_ctx,
        )
    return result
