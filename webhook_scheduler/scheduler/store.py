"""TaskStore — aiosqlite persistence for tasks and their execution results."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import aiosqlite

from webhook_scheduler.config import settings
from webhook_scheduler.errors import PersistenceError, SchedulerError, TaskNotFoundError
from webhook_scheduler.scheduler.models import Task, TaskResult, TaskStatus, to_utc_iso, utcnow

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable
    from datetime import datetime
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    trigger TEXT NOT NULL,
    action TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'scheduled',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    next_run TEXT
);
CREATE INDEX IF NOT EXISTS idx_tasks_status_next_run ON tasks(status, next_run);

CREATE TABLE IF NOT EXISTS task_results (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    run_at TEXT NOT NULL,
    status_code INTEGER NOT NULL DEFAULT 0,
    success INTEGER NOT NULL DEFAULT 0,
    response_headers TEXT,
    response_body TEXT NOT NULL DEFAULT '',
    error_message TEXT,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_task_results_task_run ON task_results(task_id, run_at);
"""

_TASK_COLUMNS = "id, name, trigger, action, status, created_at, updated_at, next_run"
_RESULT_COLUMNS = (
    "id, task_id, run_at, status_code, success, response_headers, "
    "response_body, error_message, duration_ms, created_at"
)


def _offset(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit


class TaskStore:
    """Persists tasks and task results in SQLite.

    Each operation opens its own short-lived connection, so one store can be
    shared by the API handlers, the poller and concurrent executions. Pass an
    explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).

    Driver failures surface as ``PersistenceError``.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path), timeout=30.0)
        if not self._initialised:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.executescript(_SCHEMA)
            await db.commit()
            self._initialised = True
        return db

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection; wrap driver errors raised inside the block."""
        try:
            db = await self._connect()
        except (aiosqlite.Error, OSError) as exc:
            msg = f"{operation}: cannot open database {self._db_path}: {exc}"
            raise PersistenceError(msg) from exc
        try:
            yield db
        except SchedulerError:
            raise
        except aiosqlite.Error as exc:
            msg = f"{operation} failed: {exc}"
            raise PersistenceError(msg) from exc
        finally:
            await db.close()

    @staticmethod
    def _rows_to_tasks(rows: Iterable[tuple]) -> list[Task]:
        tasks: list[Task] = []
        for row in rows:
            try:
                tasks.append(Task.from_row(row))
            except (SchedulerError, ValueError, KeyError, TypeError):
                logger.exception("Skipping undecodable task row: %s", row[0])
        return tasks

    # -- Tasks -----------------------------------------------------------------

    async def add_task(self, task: Task) -> Task:
        """Insert a new task. Returns the same task object."""
        async with self._session("add_task") as db:
            await db.execute(
                f"INSERT INTO tasks ({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                task.to_row(),
            )
            await db.commit()
        logger.info("Added task: %s (%s)", task.name, task.id)
        return task

    async def get_task(self, task_id: str) -> Task | None:
        """Fetch a task by ID, or None if not found."""
        async with self._session("get_task") as db:
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)
            )
            row = await cursor.fetchone()
        return Task.from_row(row) if row else None

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Task], int]:
        """Return one page of tasks (newest first) and the total match count."""
        where = "WHERE status = ?" if status else ""
        args: tuple = (str(status),) if status else ()
        async with self._session("list_tasks") as db:
            cursor = await db.execute(f"SELECT COUNT(*) FROM tasks {where}", args)
            (total,) = await cursor.fetchone()
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks {where} "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (*args, limit, _offset(page, limit)),
            )
            rows = await cursor.fetchall()
        return self._rows_to_tasks(rows), total

    async def update_task(self, task: Task) -> None:
        """Persist name, trigger, action, status, updated_at and next_run."""
        row = task.to_row()
        async with self._session("update_task") as db:
            cursor = await db.execute(
                """
                UPDATE tasks
                SET name = ?, trigger = ?, action = ?, status = ?, updated_at = ?, next_run = ?
                WHERE id = ?
                """,
                (row[1], row[2], row[3], row[4], row[6], row[7], task.id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                msg = f"task not found: {task.id}"
                raise TaskNotFoundError(msg)

    async def update_next_run(self, task_id: str, next_run: datetime | None) -> bool:
        """Set or clear ``next_run`` on a task that is still scheduled.

        Returns False when the task is missing or no longer scheduled.
        """
        async with self._session("update_next_run") as db:
            cursor = await db.execute(
                "UPDATE tasks SET next_run = ? WHERE id = ? AND status = ?",
                (to_utc_iso(next_run), task_id, TaskStatus.SCHEDULED.value),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def cancel_task(self, task_id: str) -> None:
        """Mark a task as cancelled and clear its next run."""
        async with self._session("cancel_task") as db:
            cursor = await db.execute(
                "UPDATE tasks SET status = ?, updated_at = ?, next_run = NULL WHERE id = ?",
                (TaskStatus.CANCELLED.value, to_utc_iso(utcnow()), task_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                msg = f"task not found: {task_id}"
                raise TaskNotFoundError(msg)
        logger.info("Cancelled task: %s", task_id)

    async def get_scheduled_tasks(self) -> list[Task]:
        """Return all scheduled tasks, soonest ``next_run`` first, nulls last."""
        async with self._session("get_scheduled_tasks") as db:
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE status = ? "
                "ORDER BY next_run IS NULL, next_run ASC",
                (TaskStatus.SCHEDULED.value,),
            )
            rows = await cursor.fetchall()
        return self._rows_to_tasks(rows)

    async def claim_one_off(self, task_id: str) -> bool:
        """Atomically move a task from ``scheduled`` to ``completed``.

        Clears ``next_run``. Returns True only for the caller whose update
        won; a task that is no longer scheduled is left untouched.
        """
        async with self._session("claim_one_off") as db:
            cursor = await db.execute(
                """
                UPDATE tasks
                SET status = ?, next_run = NULL, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    TaskStatus.COMPLETED.value,
                    to_utc_iso(utcnow()),
                    task_id,
                    TaskStatus.SCHEDULED.value,
                ),
            )
            await db.commit()
            return cursor.rowcount == 1

    # -- Results ---------------------------------------------------------------

    async def create_task_result(self, result: TaskResult) -> None:
        """Append an execution result. Results are never updated."""
        async with self._session("create_task_result") as db:
            await db.execute(
                f"INSERT INTO task_results ({_RESULT_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                result.to_row(),
            )
            await db.commit()

    async def get_task_results(
        self, task_id: str, page: int = 1, limit: int = 10
    ) -> tuple[list[TaskResult], int]:
        """Return one page of a task's results (latest run first) and the total."""
        return await self.list_results(task_id=task_id, page=page, limit=limit)

    async def list_results(
        self,
        task_id: str | None = None,
        success: bool | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[TaskResult], int]:
        """Return one page of results matching the filters and the total count."""
        conditions: list[str] = []
        args: list = []
        if task_id is not None:
            conditions.append("task_id = ?")
            args.append(task_id)
        if success is not None:
            conditions.append("success = ?")
            args.append(int(success))
        if date_from is not None:
            conditions.append("run_at >= ?")
            args.append(to_utc_iso(date_from))
        if date_to is not None:
            conditions.append("run_at <= ?")
            args.append(to_utc_iso(date_to))
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        async with self._session("list_results") as db:
            cursor = await db.execute(f"SELECT COUNT(*) FROM task_results {where}", args)
            (total,) = await cursor.fetchone()
            cursor = await db.execute(
                f"SELECT {_RESULT_COLUMNS} FROM task_results {where} "
                "ORDER BY run_at DESC LIMIT ? OFFSET ?",
                (*args, limit, _offset(page, limit)),
            )
            rows = await cursor.fetchall()
        return [TaskResult.from_row(row) for row in rows], total
