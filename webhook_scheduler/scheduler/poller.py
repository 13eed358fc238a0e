"""OneOffPoller — periodically claims and fires due one-off tasks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from webhook_scheduler.config import settings
from webhook_scheduler.errors import PersistenceError
from webhook_scheduler.scheduler.models import TaskStatus, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from webhook_scheduler.scheduler.dispatcher import Dispatcher
    from webhook_scheduler.scheduler.models import Task
    from webhook_scheduler.scheduler.registry import JobRegistry
    from webhook_scheduler.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


class OneOffPoller:
    """Fires one-off tasks whose ``next_run`` has passed.

    Every tick:
    - fetch scheduled tasks, keep one-off tasks due at or before now
    - claim each task in the store (``scheduled -> completed``, next_run cleared)
    - hand claimed tasks to the dispatcher without waiting for the call

    The claim happens before dispatch, so a later tick (or a second poller)
    can never see a fired task as still scheduled. The first tick runs
    immediately, which also picks up tasks that came due while the service
    was down.

    Args:
        store: TaskStore to read and claim tasks.
        dispatcher: Dispatcher that runs executions.
        registry: JobRegistry to clear stray entries from.
        interval: Seconds between ticks (default from settings).
    """

    def __init__(
        self,
        store: TaskStore,
        dispatcher: Dispatcher,
        registry: JobRegistry,
        interval: float | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._registry = registry
        self._interval = interval or settings.poll_interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> float:
        return self._interval

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Launch the polling loop as a background task."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="one-off-poller")
        logger.info("One-off poller started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        """Signal the loop to exit and wait for the current tick to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("One-off poller stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("One-off poller tick failed")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)

    # -- Tick ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> list[Task]:
        """Claim and dispatch every due one-off task. Returns the fired tasks."""
        try:
            tasks = await self._store.get_scheduled_tasks()
        except PersistenceError:
            logger.exception("Failed to get scheduled tasks")
            return []

        now = now or utcnow()
        fired: list[Task] = []
        for task in tasks:
            if not task.is_one_off or task.next_run is None or task.next_run > now:
                continue

            try:
                claimed = await self._store.claim_one_off(task.id)
            except PersistenceError:
                logger.exception("Failed to claim one-off task %s", task.id)
                continue
            if not claimed:
                logger.debug("One-off task %s already claimed", task.id)
                continue

            self._registry.unregister(task.id)
            task.status = TaskStatus.COMPLETED
            task.next_run = None
            self._dispatcher.dispatch(task)
            fired.append(task)
            logger.info("Fired one-off task: '%s' (%s)", task.name, task.id)

        return fired
