"""Shared helpers for worker job handlers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from orchestrator.core.structured_logging import build_log_context


@dataclass(frozen=True)
class SendJob:
    """
    One claimed unit of send work. claim_token must match the row to write an
    outcome; claimed_at is lease bookkeeping only, attempts read their own clock.
    """

    job_type: str
    id: UUID
    organization_id: UUID
    claim_token: UUID
    claimed_at: datetime


def job_log_context(job: SendJob, sweep_id: str | None = None) -> dict:
    context = build_log_context(org_id=job.organization_id, sweep_id=sweep_id)
    context[f"{job.job_type}_id"] = str(job.id)
    return context
