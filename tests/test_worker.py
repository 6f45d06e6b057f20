"""
Tests for the sweep loop and its HTTP wrapper.
"""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from orchestrator.services.scheduler_service import SweepResult


@pytest.mark.asyncio
async def test_worker_loop_reports_each_sweep(monkeypatch):
    from orchestrator import worker

    calls = []

    async def fake_sweep(session_factory, dispatcher=None):
        calls.append(dispatcher)
        return SweepResult(sweep_id=f"s{len(calls)}", claimed={"recipient": 2})

    monkeypatch.setattr(worker, "run_sweep", fake_sweep)
    results: list[SweepResult] = []

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(worker.worker_loop(0.01, on_result=results.append), timeout=0.1)

    assert len(results) >= 2
    assert results[0].dispatched == 2
    # Every sweep shares one dispatcher
    assert len({id(d) for d in calls}) == 1


@pytest.mark.asyncio
async def test_worker_loop_survives_failed_sweep(monkeypatch):
    from orchestrator import worker

    attempts = []

    async def flaky_sweep(session_factory, dispatcher=None):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("database unavailable")
        return SweepResult(sweep_id="ok")

    monkeypatch.setattr(worker, "run_sweep", flaky_sweep)
    results: list[SweepResult] = []

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(worker.worker_loop(0.01, on_result=results.append), timeout=0.1)

    assert len(attempts) >= 2
    assert results and results[0].sweep_id == "ok"


@pytest.mark.asyncio
async def test_worker_health_shows_last_sweep(monkeypatch):
    from orchestrator import worker_service

    monkeypatch.setattr(worker_service, "_last_sweep", {})
    async with AsyncClient(
        transport=ASGITransport(app=worker_service.app), base_url="http://test"
    ) as c:
        response = await c.get("/health")
        assert response.json() == {"status": "stopped", "last_sweep": None}

        worker_service._record_sweep(
            SweepResult(sweep_id="abc", claimed={"execution": 1}, outcomes={"sent": 1})
        )
        response = await c.get("/health")

    last = response.json()["last_sweep"]
    assert last["sweep_id"] == "abc"
    assert last["dispatched"] == 1
    assert last["outcomes"] == {"sent": 1}


@pytest.mark.asyncio
async def test_worker_loop_waits_for_cancelled_sweeps(monkeypatch):
    from orchestrator import worker

    started = []
    unwound = []

    async def hanging_sweep(session_factory, dispatcher=None):
        started.append(1)
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            unwound.append(1)
            raise

    monkeypatch.setattr(worker, "run_sweep", hanging_sweep)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(worker.worker_loop(0.01), timeout=0.05)

    # Every in-flight sweep finished unwinding before the loop returned
    assert started
    assert len(unwound) == len(started)
