"""
Background vault sweep: periodic purge survives store errors.
"""

from __future__ import annotations

import asyncio

import pytest

from backend.web import main as web_main


pytestmark = pytest.mark.anyio("asyncio")


class _CountingService:
    def __init__(self, fail_first: bool = False):
        self.calls = 0
        self.fail_first = fail_first

    async def purge_expired(self) -> int:
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise RuntimeError("store unavailable")
        return 2


@pytest.mark.anyio
async def test_sweep_runs_periodically_and_survives_errors():
    service = _CountingService(fail_first=True)
    task = asyncio.create_task(web_main._sweep_forever(service, 0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert service.calls >= 2


@pytest.mark.anyio
async def test_lifespan_starts_and_stops_sweep(auth_service):
    app = web_main.create_app(auth_service, sweep_interval=0.01)
    calls = {"n": 0}
    original = auth_service.purge_expired

    async def counting():
        calls["n"] += 1
        return await original()

    auth_service.purge_expired = counting
    async with app.router.lifespan_context(app):
        await asyncio.sleep(0.1)
    seen = calls["n"]
    assert seen >= 1
    await asyncio.sleep(0.05)
    assert calls["n"] == seen
