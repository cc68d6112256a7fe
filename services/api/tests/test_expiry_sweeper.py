from __future__ import annotations

import asyncio
import threading

import pytest


def test_sweeper_expires_in_a_worker_thread(monkeypatch: pytest.MonkeyPatch) -> None:
    import services.api.app.main as main

    sweep_threads: list[int] = []

    def fake_expire() -> int:
        sweep_threads.append(threading.get_ident())
        return 1

    monkeypatch.setattr(main, "expire_overdue_once", fake_expire)

    async def run() -> int:
        task = asyncio.create_task(main._sweep_expired(0.01))
        while not sweep_threads:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return threading.get_ident()

    loop_thread = asyncio.run(asyncio.wait_for(run(), timeout=5))

    assert sweep_threads
    assert loop_thread not in sweep_threads


def test_sweeper_survives_a_failed_sweep(monkeypatch: pytest.MonkeyPatch) -> None:
    import services.api.app.main as main

    calls: list[int] = []

    def flaky_expire() -> int:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return 0

    monkeypatch.setattr(main, "expire_overdue_once", flaky_expire)

    async def run() -> None:
        task = asyncio.create_task(main._sweep_expired(0.01))
        while len(calls) < 2:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(asyncio.wait_for(run(), timeout=5))

    assert len(calls) >= 2
