"""SchedulerEngine — orchestrates cron jobs, the one-off poller and executions."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING

from webhook_scheduler.config import settings
from webhook_scheduler.errors import InvalidTriggerError, PersistenceError, StartupLoadError
from webhook_scheduler.scheduler.cron import CronEngine
from webhook_scheduler.scheduler.dispatcher import Dispatcher
from webhook_scheduler.scheduler.models import CronTrigger, OneOffTrigger
from webhook_scheduler.scheduler.poller import OneOffPoller
from webhook_scheduler.scheduler.registry import JobRegistry

if TYPE_CHECKING:
    from webhook_scheduler.scheduler.executor import TaskExecutor
    from webhook_scheduler.scheduler.models import Task
    from webhook_scheduler.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


class SchedulerEngine:
    """Keeps every scheduled task wired to whatever fires it.

    Cron tasks get a job in the cron engine, tracked by the job registry.
    One-off tasks only get their ``next_run`` persisted; the poller fires
    them. Both paths end in the dispatcher, which runs the executor.

    Collaborators not passed in are constructed here, one per engine.

    Args:
        store: TaskStore for persistence.
        executor: TaskExecutor to run tasks.
        cron: CronEngine firing recurring jobs.
        registry: JobRegistry of live cron jobs.
        dispatcher: Dispatcher bounding concurrent executions.
        poll_interval: Seconds between one-off poller ticks.
        shutdown_timeout: Seconds ``stop()`` waits for in-flight executions.
        timezone: IANA timezone for the default cron engine.
    """

    def __init__(
        self,
        store: TaskStore,
        executor: TaskExecutor,
        cron: CronEngine | None = None,
        registry: JobRegistry | None = None,
        dispatcher: Dispatcher | None = None,
        poll_interval: float | None = None,
        shutdown_timeout: float | None = None,
        timezone: str | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._cron = cron or CronEngine(timezone=timezone)
        self._registry = registry or JobRegistry()
        self._dispatcher = dispatcher or Dispatcher(executor)
        self._poller = OneOffPoller(store, self._dispatcher, self._registry, interval=poll_interval)
        self._shutdown_timeout = (
            settings.shutdown_timeout_seconds if shutdown_timeout is None else shutdown_timeout
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def cron(self) -> CronEngine:
        return self._cron

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def poller(self) -> OneOffPoller:
        return self._poller

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Recover scheduled tasks from the store, then start the cron engine and poller.

        Raises:
            StartupLoadError: if the scheduled tasks cannot be loaded.
        """
        if self._running:
            return

        try:
            tasks = await self._store.get_scheduled_tasks()
        except PersistenceError as exc:
            msg = f"failed to load scheduled tasks: {exc}"
            raise StartupLoadError(msg) from exc

        logger.info("Loading %d scheduled task(s)", len(tasks))
        scheduled = 0
        for task in tasks:
            try:
                await self.schedule_task(task)
            except Exception:
                logger.exception("Failed to schedule task: '%s' (%s)", task.name, task.id)
                continue
            scheduled += 1

        self._cron.start()
        self._poller.start()
        self._running = True
        logger.info(
            "Scheduler started with %d/%d task(s) (cron jobs=%d, tz=%s)",
            scheduled,
            len(tasks),
            len(self._registry),
            self._cron.timezone,
        )

    async def stop(self) -> None:
        """Stop polling and firing, then wait (bounded) for in-flight executions."""
        if not self._running:
            return
        logger.info("Stopping scheduler...")
        await self._poller.stop()
        self._cron.shutdown()
        self._registry.clear()
        await self._dispatcher.drain(timeout=self._shutdown_timeout)
        self._running = False
        logger.info("Scheduler stopped")

    # -- Task management -------------------------------------------------------

    async def schedule_task(self, task: Task) -> Task:
        """(Re)register *task* with whatever fires it and persist its ``next_run``.

        Any previous registration for the same ID is dropped first.

        Raises:
            InvalidScheduleError: if a cron expression cannot be parsed.
            InvalidTriggerError: if the trigger kind is unknown.
        """
        self._registry.unregister(task.id)

        trigger = task.trigger
        if isinstance(trigger, CronTrigger):
            await self._schedule_cron(task, trigger)
        elif isinstance(trigger, OneOffTrigger):
            await self._schedule_one_off(task, trigger)
        else:
            msg = f"unknown trigger type for task {task.id}: {type(trigger).__name__}"
            raise InvalidTriggerError(msg)
        return task

    def remove_task(self, task_id: str) -> bool:
        """Stop future firings of *task_id*. Persisted status is left alone.

        Safe to call repeatedly; returns whether a job was removed.
        """
        removed = self._registry.unregister(task_id)
        if removed:
            logger.info("Removed task from scheduler: %s", task_id)
        return removed

    # -- Internal --------------------------------------------------------------

    async def _schedule_cron(self, task: Task, trigger: CronTrigger) -> None:
        # The job runs this snapshot; later edits need another schedule_task call.
        snapshot = copy.deepcopy(task)
        handle = self._cron.add(trigger.expression, self._fire, args=[snapshot], name=task.name)
        self._registry.register(task.id, handle)

        task.next_run = self._cron.next_fire_time(handle)
        await self._persist(task)
        logger.info(
            "Scheduled cron task: '%s' (%s) [%s], next run: %s",
            task.name,
            task.id,
            trigger.expression,
            task.next_run,
        )

    async def _schedule_one_off(self, task: Task, trigger: OneOffTrigger) -> None:
        task.next_run = trigger.at
        await self._persist(task)
        logger.info("Scheduled one-off task: '%s' (%s) at %s", task.name, task.id, trigger.at)

    async def _persist(self, task: Task) -> None:
        try:
            await self._store.update_task(task)
        except PersistenceError:
            logger.exception("Failed to update next_run for task %s", task.id)

    async def _fire(self, snapshot: Task) -> None:
        """Cron callback: hand the execution off, then record the next fire time."""
        self._dispatcher.dispatch(snapshot)

        handle = self._registry.get(snapshot.id)
        if handle is None:
            return
        try:
            await self._store.update_next_run(snapshot.id, self._cron.next_fire_time(handle))
        except PersistenceError:
            logger.exception("Failed to update next_run for task %s", snapshot.id)
