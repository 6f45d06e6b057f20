"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from orchestrator.db.enums import JobType
from orchestrator.jobs.handlers import sends

# (session, job, clock) -> resulting status
JobHandler = Callable[[object, object, Callable], Awaitable[str | None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.EXECUTION_SEND.value: sends.process_execution_send,
    JobType.MESSAGE_SEND.value: sends.process_message_send,
    JobType.RECIPIENT_SEND.value: sends.process_recipient_send,
}


def get_handler(job_type: str) -> JobHandler:
    try:
        return JOB_HANDLERS[job_type]
    except KeyError:
        raise ValueError(f"Unknown job type: {job_type}") from None
