"""Send job handlers."""

from __future__ import annotations

import logging

from orchestrator.db.base import utcnow
from orchestrator.jobs.utils import SendJob, job_log_context
from orchestrator.services import send_executor
from orchestrator.services.send_executor import Clock

logger = logging.getLogger(__name__)


async def process_execution_send(db, job: SendJob, clock: Clock = utcnow) -> str | None:
    """Deliver a claimed rule execution."""
    try:
        return await send_executor.attempt_execution(db, job.id, job.claim_token, clock=clock)
    except Exception:
        logger.error("Execution send job failed", extra=job_log_context(job))
        raise


async def process_message_send(db, job: SendJob, clock: Clock = utcnow) -> str | None:
    """Deliver a claimed scheduled message."""
    try:
        return await send_executor.attempt_message(db, job.id, job.claim_token, clock=clock)
    except Exception:
        logger.error("Message send job failed", extra=job_log_context(job))
        raise


async def process_recipient_send(db, job: SendJob, clock: Clock = utcnow) -> str | None:
    """Deliver to one claimed campaign recipient."""
    try:
        return await send_executor.attempt_recipient(db, job.id, job.claim_token, clock=clock)
    except Exception:
        logger.error("Recipient send job failed", extra=job_log_context(job))
        raise
