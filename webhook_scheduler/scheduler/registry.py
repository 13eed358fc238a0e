"""JobRegistry — the live map from task ID to its cron job handle."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

logger = logging.getLogger(__name__)


class CancellableJob(Protocol):
    def cancel(self) -> None: ...


class JobRegistry:
    """Thread-safe mapping of task ID to the job firing it.

    Only cron tasks have entries; one-off tasks are fired by the poller.
    Registration always replaces: the previous handle for the same ID is
    cancelled so a task can never fire from two jobs. The lock guards the
    map only; handles are cancelled after it is released.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, CancellableJob] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str, handle: CancellableJob) -> None:
        """Store *handle* for *task_id*, cancelling any handle it replaces."""
        with self._lock:
            previous = self._jobs.get(task_id)
            self._jobs[task_id] = handle
        if previous is not None and previous is not handle:
            previous.cancel()
            logger.debug("Replaced job for task %s", task_id)

    def unregister(self, task_id: str) -> bool:
        """Remove and cancel the handle for *task_id*.

        Returns False (and does nothing) when no handle is registered.
        Executions already in flight are not interrupted.
        """
        with self._lock:
            handle = self._jobs.pop(task_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Unregistered job for task %s", task_id)
        return True

    def get(self, task_id: str) -> CancellableJob | None:
        with self._lock:
            return self._jobs.get(task_id)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def clear(self) -> None:
        """Cancel and drop every handle."""
        with self._lock:
            handles = list(self._jobs.values())
            self._jobs.clear()
        for handle in handles:
            handle.cancel()

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
