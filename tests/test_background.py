# tests/test_background.py
"""Tests for app/infra/background.py: detached task supervision."""
import asyncio
import logging

import pytest

from app.infra.background import BackgroundTaskRunner
from app.infra.metrics import get_metrics_collector


class TestBackgroundTaskRunner:
    @pytest.mark.asyncio
    async def test_spawn_runs_and_forgets_task(self):
        runner = BackgroundTaskRunner()
        done = asyncio.Event()

        async def job():
            done.set()

        task = runner.spawn(job(), name="job")
        assert runner.pending == 1

        await task
        await asyncio.sleep(0)

        assert done.is_set()
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        runner = BackgroundTaskRunner()
        before = get_metrics_collector().get_counter("background_task_failed_total")

        async def boom():
            raise RuntimeError("upload exploded")

        with caplog.at_level(logging.ERROR, logger="app.infra.background"):
            runner.spawn(boom(), name="forward-req-1")
            await runner.drain(timeout=1)
            await asyncio.sleep(0)

        assert runner.pending == 0
        assert any(
            "forward-req-1" in r.getMessage() and "upload exploded" in r.getMessage()
            for r in caplog.records
        )
        assert get_metrics_collector().get_counter("background_task_failed_total") == before + 1

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight_tasks(self):
        runner = BackgroundTaskRunner()
        finished = []

        async def slow(n):
            await asyncio.sleep(0.01)
            finished.append(n)

        for n in range(3):
            runner.spawn(slow(n))

        await runner.drain(timeout=5)

        assert sorted(finished) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_drain_cancels_stragglers(self):
        runner = BackgroundTaskRunner()

        async def forever():
            await asyncio.sleep(3600)

        task = runner.spawn(forever(), name="stuck")
        await runner.drain(timeout=0.01)

        assert task.cancelled()
        assert runner.pending == 0

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self):
        runner = BackgroundTaskRunner()
        await runner.drain(timeout=0.01)
        assert runner.pending == 0
