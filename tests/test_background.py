"""Tests for the periodic background task runner."""

import asyncio

from src.services.background import PeriodicTask


class TestPeriodicTask:
    async def test_run_once_returns_job_result(self):
        async def job():
            return {"sent": 2}

        assert await PeriodicTask("job", job, 60).run_once() == {"sent": 2}

    async def test_run_once_swallows_job_errors(self):
        async def job():
            raise RuntimeError("smtp exploded")

        assert await PeriodicTask("job", job, 60).run_once() is None

    async def test_loop_runs_until_stopped(self):
        ticks = []

        async def job():
            ticks.append(1)

        task = PeriodicTask("job", job, 0.01)
        task.start()
        assert task.running
        await asyncio.sleep(0.05)
        await task.stop()

        assert not task.running
        assert len(ticks) >= 2
        seen = len(ticks)
        await asyncio.sleep(0.03)
        assert len(ticks) == seen

    async def test_failing_job_keeps_looping(self):
        calls = []

        async def job():
            calls.append(1)
            raise ValueError("boom")

        task = PeriodicTask("job", job, 0.01)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()
        assert len(calls) >= 2

    async def test_start_twice_keeps_one_loop(self):
        async def job():
            return None

        task = PeriodicTask("job", job, 60)
        task.start()
        first = task._task
        task.start()
        assert task._task is first
        await task.stop()

    async def test_stop_without_start(self):
        async def job():
            return None

        await PeriodicTask("job", job, 60).stop()
