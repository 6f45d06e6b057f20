"""HTTP wrapper around the sweep loop for platforms that expect a listening port."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from datetime import datetime

from fastapi import FastAPI

from orchestrator.db.base import utcnow
from orchestrator.services.scheduler_service import SweepResult
from orchestrator.worker import worker_loop

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

app = FastAPI(title="Automation Orchestrator Worker")
_worker_task: asyncio.Task | None = None
_last_sweep: dict = {}


def _record_sweep(result: SweepResult, finished_at: datetime | None = None) -> None:
    _last_sweep.update(
        sweep_id=result.sweep_id,
        finished_at=(finished_at or utcnow()).isoformat(),
        dispatched=result.dispatched,
        outcomes=result.outcomes,
        expired=result.expired,
        requeued=result.requeued,
    )


@app.get("/health")
def health() -> dict:
    """Loop liveness plus a summary of the most recent completed sweep."""
    running = _worker_task is not None and not _worker_task.done()
    return {"status": "ok" if running else "stopped", "last_sweep": _last_sweep or None}


@app.on_event("startup")
async def _startup() -> None:
    global _worker_task
    _worker_task = asyncio.create_task(worker_loop(on_result=_record_sweep))


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _worker_task:
        _worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _worker_task


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    # nosec B104 - container deployments bind to all interfaces.
    uvicorn.run("orchestrator.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
