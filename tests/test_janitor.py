"""Tests for the background sweep of expired throttle records."""

from __future__ import annotations

import asyncio
import contextlib

from fastapi.testclient import TestClient

from neuronova.adapters.throttle.in_memory import InMemoryThrottleStore
from neuronova.core.app_factory import run_janitor
from neuronova.services.throttle import RequestThrottle


def test_run_janitor_sweeps_until_cancelled() -> None:
    clock_ms = {"now": 0}
    store = InMemoryThrottleStore()
    throttle = RequestThrottle(
        window_duration_ms=1000,
        max_requests_per_window=5,
        store=store,
        clock=lambda: clock_ms["now"],
        sweep_interval_ms=10**9,
    )
    for i in range(3):
        throttle.admit(f"client-{i}")
    clock_ms["now"] = 5000

    async def scenario() -> None:
        task = asyncio.create_task(run_janitor({"general": throttle}, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert len(store) == 0


def test_lifespan_starts_and_stops_janitor(make_app) -> None:
    app = make_app(sweep_interval_seconds=0.01)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200

    assert app.state.throttles["general"].stats()["tracked_clients"] == 1
