"""Webhook scheduler entry point."""

import asyncio
import logging
import signal
import sys

from webhook_scheduler.api.server import ApiServer
from webhook_scheduler.config import settings
from webhook_scheduler.errors import StartupLoadError
from webhook_scheduler.scheduler.cron import CronEngine
from webhook_scheduler.scheduler.dispatcher import Dispatcher
from webhook_scheduler.scheduler.engine import SchedulerEngine
from webhook_scheduler.scheduler.executor import TaskExecutor
from webhook_scheduler.scheduler.registry import JobRegistry
from webhook_scheduler.scheduler.store import TaskStore
from webhook_scheduler.service import TaskService

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )


def build_scheduler(store: TaskStore) -> SchedulerEngine:
    """Wire the executor, dispatcher, cron engine and registry into a scheduler."""
    executor = TaskExecutor(store=store, timeout=settings.request_timeout_seconds)
    return SchedulerEngine(
        store=store,
        executor=executor,
        cron=CronEngine(timezone=settings.scheduler_timezone),
        registry=JobRegistry(),
        dispatcher=Dispatcher(executor, max_concurrent=settings.max_concurrent_executions),
        poll_interval=settings.poll_interval_seconds,
        shutdown_timeout=settings.shutdown_timeout_seconds,
    )


async def run() -> int:
    """Run the scheduler and API server until SIGINT/SIGTERM."""
    store = TaskStore(db_path=settings.database_path)
    scheduler = build_scheduler(store)
    server = ApiServer(TaskService(store, scheduler))

    try:
        await scheduler.start()
    except StartupLoadError:
        logger.exception("Scheduler failed to start")
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await server.start()
        logger.info("Webhook scheduler running on %s", settings.get_server_address())
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await server.stop()
        await scheduler.stop()
    return 0


def main() -> None:
    """Start the webhook scheduler service."""
    _configure_logging()
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
