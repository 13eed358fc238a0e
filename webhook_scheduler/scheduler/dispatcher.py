"""Dispatcher — bounded pool of in-flight task executions."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from webhook_scheduler.config import settings

if TYPE_CHECKING:
    from webhook_scheduler.scheduler.executor import TaskExecutor
    from webhook_scheduler.scheduler.models import Task

logger = logging.getLogger(__name__)


class Dispatcher:
    """Runs executions in the background without blocking the caller.

    At most *max_concurrent* executions run at once; the rest wait their
    turn. Outstanding work is tracked so shutdown can wait for it.

    Args:
        executor: TaskExecutor that performs each call.
        max_concurrent: Concurrency bound (default from settings).
    """

    def __init__(self, executor: TaskExecutor, max_concurrent: int | None = None) -> None:
        self._executor = executor
        self._limit = max_concurrent or settings.max_concurrent_executions
        self._semaphore = asyncio.Semaphore(self._limit)
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, task: Task) -> asyncio.Task:
        """Start executing *task* in the background and return immediately."""
        job = asyncio.create_task(self._run(task), name=f"execute-{task.id}")
        self._tasks.add(job)
        job.add_done_callback(self._tasks.discard)
        return job

    async def _run(self, task: Task) -> None:
        async with self._semaphore:
            try:
                await self._executor.execute(task)
            except Exception:
                logger.exception("Execution failed: '%s' (%s)", task.name, task.id)

    async def drain(self, timeout: float | None = None) -> int:
        """Wait up to *timeout* seconds for outstanding executions.

        Returns the number still running when the wait ended. Nothing is
        cancelled; stragglers finish on their own request timeout.
        """
        pending = set(self._tasks)
        if not pending:
            return 0
        logger.info("Waiting for %d in-flight execution(s)", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                "%d execution(s) still running after %.1fs shutdown wait",
                len(still_running),
                timeout or 0,
            )
        return len(still_running)
