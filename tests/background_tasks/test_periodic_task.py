"""
Tests for PeriodicTask.

Tests cover:
- Immediate and delayed first tick
- Errors in a tick do not stop the loop
- Stop cancels a sleeping loop
- Manual ticks never overlap scheduled ones
"""

import asyncio

import pytest

from mc_presence.background_tasks.periodic import PeriodicTask


async def wait_for_count(calls: list, count: int) -> None:
    for _ in range(200):
        if len(calls) >= count:
            return
        await asyncio.sleep(0.005)


class TestPeriodicTask:
    async def test_ticks_repeatedly(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("test", tick, interval=lambda: 0.01)
        task.start()
        await wait_for_count(calls, 3)
        await task.stop()

        assert len(calls) >= 3
        assert not task.running

    async def test_delayed_first_tick(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("test", tick, interval=lambda: 3600, run_immediately=False)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert calls == []

    async def test_error_does_not_stop_loop(self, caplog):
        calls = []

        async def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")

        task = PeriodicTask("flaky", tick, interval=lambda: 0.01)
        task.start()
        await wait_for_count(calls, 2)
        await task.stop()

        assert len(calls) >= 2
        assert "Error in periodic task flaky" in caplog.text

    async def test_stop_is_safe_when_not_started(self):
        async def tick():
            pass

        task = PeriodicTask("idle", tick, interval=lambda: 1)
        await task.stop()
        assert not task.running

    async def test_start_twice_warns(self, caplog):
        async def tick():
            pass

        task = PeriodicTask("dup", tick, interval=lambda: 3600, run_immediately=False)
        task.start()
        task.start()
        await task.stop()

        assert "already running" in caplog.text

    async def test_run_once_is_single_flight(self):
        active = 0
        max_active = 0

        async def tick():
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1

        task = PeriodicTask("exclusive", tick, interval=lambda: 3600)
        await asyncio.gather(*(task.run_once() for _ in range(5)))

        assert max_active == 1

    async def test_interval_read_every_iteration(self):
        calls = []
        delay = {"value": 3600.0}

        async def tick():
            calls.append(1)

        task = PeriodicTask("dynamic", tick, interval=lambda: delay["value"])
        delay["value"] = 0.01
        task.start()
        await wait_for_count(calls, 3)
        await task.stop()

        assert len(calls) >= 3
