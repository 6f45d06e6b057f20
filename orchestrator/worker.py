"""
Background worker that runs the scheduler sweep.

Usage:
    python -m orchestrator.worker

Every SWEEP_INTERVAL_SECONDS a new sweep is started without waiting for the
previous one; sweeps are safe to overlap because every claim is conditional.
"""

import asyncio
import logging
from typing import Callable

from orchestrator.core.config import settings
from orchestrator.db.session import SessionLocal
from orchestrator.services.scheduler_service import SendDispatcher, SweepResult, run_sweep

logger = logging.getLogger(__name__)

SweepCallback = Callable[[SweepResult], None]


async def _sweep_once(dispatcher: SendDispatcher, on_result: SweepCallback | None) -> None:
    try:
        result = await run_sweep(SessionLocal, dispatcher=dispatcher)
    except Exception:
        logger.exception("Sweep failed")
        return
    if on_result:
        on_result(result)


async def worker_loop(
    interval_seconds: int | None = None, on_result: SweepCallback | None = None
) -> None:
    """Main worker loop - starts a sweep every interval."""
    interval = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
    logger.info(
        "Worker starting (sweep interval: %ss, batch size: %s)",
        interval,
        settings.SWEEP_BATCH_SIZE,
    )

    # One dispatcher so concurrency limits span overlapping sweeps
    dispatcher = SendDispatcher(SessionLocal)
    running: set[asyncio.Task] = set()
    try:
        while True:
            task = asyncio.create_task(_sweep_once(dispatcher, on_result))
            running.add(task)
            task.add_done_callback(running.discard)
            await asyncio.sleep(interval)
    finally:
        for task in running:
            task.cancel()
        await asyncio.gather(*running, return_exceptions=True)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
