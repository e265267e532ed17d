# app/infra/background.py
"""
Supervised fire-and-forget tasks.

The webhook answers Instagram/Meta immediately and forwards media
afterwards. Those detached tasks are spawned here so that:
- a failure is always logged (never "Task exception was never retrieved")
- a reference is held until the task finishes (asyncio keeps only weak ones)
- shutdown can wait for in-flight forwarding before closing HTTP sessions

Usage:
    runner = BackgroundTaskRunner()
    runner.spawn(forwarder.forward(payload), name="forward")
    # ... on shutdown:
    await runner.drain(timeout=30)
"""
from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from app.infra.logging_config import get_logger
from app.infra.metrics import AppMetrics

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Tracks detached asyncio tasks and logs their failures."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        """Schedule ``coro`` without awaiting it. Must be called inside a running loop."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        """Callback: drop the reference and log unhandled exceptions."""
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task {task.get_name()!r} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            AppMetrics.background_task_failed()
            logger.error(
                f"Background task {task.get_name()!r} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight tasks; cancel whatever is still running after ``timeout``."""
        if not self._tasks:
            return

        pending = list(self._tasks)
        logger.info(f"Waiting for {len(pending)} background task(s) to finish")
        done, still_running = await asyncio.wait(pending, timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} background task(s) after {timeout}s")
            await asyncio.gather(*still_running, return_exceptions=True)
