"""TaskService — validates task definitions and keeps the store and scheduler in step."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

import httpx
from pydantic import BaseModel, Field, field_validator

from webhook_scheduler.errors import (
    InvalidScheduleError,
    InvalidTriggerError,
    TaskNotFoundError,
    ValidationError,
)
from webhook_scheduler.scheduler.models import (
    Action,
    CronTrigger,
    OneOffTrigger,
    Task,
    TaskStatus,
    make_task_id,
    trigger_from_dict,
    utcnow,
)

if TYPE_CHECKING:
    from datetime import datetime

    from webhook_scheduler.scheduler.engine import SchedulerEngine
    from webhook_scheduler.scheduler.models import TaskResult, Trigger
    from webhook_scheduler.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


# -- Request models ------------------------------------------------------------


class ActionRequest(BaseModel):
    """The HTTP call a task should make."""

    method: str = Field(min_length=1, description="HTTP method, e.g. POST.")
    url: str = Field(min_length=1, description="Absolute http(s) URL to call.")
    headers: dict[str, str] = Field(default_factory=dict)
    payload: Any = Field(default=None, description="Request body; non-strings are sent as JSON.")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            msg = f"invalid url: {exc}"
            raise ValueError(msg) from exc
        if url.scheme not in ("http", "https") or not url.host:
            msg = "url must be an absolute http(s) URL"
            raise ValueError(msg)
        return value

    def to_action(self) -> Action:
        return Action.from_dict(self.model_dump())


class CreateTaskRequest(BaseModel):
    name: str = Field(min_length=1)
    trigger: dict[str, Any]
    action: ActionRequest


class UpdateTaskRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""

    name: str | None = Field(default=None, min_length=1)
    trigger: dict[str, Any] | None = None
    action: ActionRequest | None = None
    status: TaskStatus | None = None


# -- Service -------------------------------------------------------------------


class TaskService:
    """Task CRUD on top of the store, with scheduler registration kept current.

    Args:
        store: TaskStore for persistence.
        scheduler: SchedulerEngine that fires tasks.
    """

    def __init__(self, store: TaskStore, scheduler: SchedulerEngine) -> None:
        self._store = store
        self._scheduler = scheduler

    @property
    def _timezone(self) -> ZoneInfo:
        return self._scheduler.cron.timezone

    def validate_trigger(self, raw: dict[str, Any]) -> Trigger:
        """Parse and check a trigger definition.

        One-off instants must lie in the future; cron expressions must parse.
        Naive datetimes are read in the scheduler timezone.
        """
        try:
            trigger = trigger_from_dict(raw, self._timezone)
        except InvalidTriggerError as exc:
            raise ValidationError(str(exc)) from exc

        if isinstance(trigger, OneOffTrigger) and trigger.at <= utcnow():
            msg = "datetime must be in the future"
            raise ValidationError(msg)
        if isinstance(trigger, CronTrigger):
            try:
                self._scheduler.cron.validate(trigger.expression)
            except InvalidScheduleError as exc:
                raise ValidationError(str(exc)) from exc
        return trigger

    async def create_task(self, request: CreateTaskRequest) -> Task:
        """Persist a new scheduled task and register it with the scheduler."""
        trigger = self.validate_trigger(request.trigger)
        now = utcnow()
        task = Task(
            id=make_task_id(),
            name=request.name,
            trigger=trigger,
            action=request.action.to_action(),
            status=TaskStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
            next_run=trigger.at if isinstance(trigger, OneOffTrigger) else None,
        )
        await self._store.add_task(task)
        await self._scheduler.schedule_task(task)
        return task

    async def get_task(self, task_id: str) -> Task:
        task = await self._store.get_task(task_id)
        if task is None:
            msg = f"task not found: {task_id}"
            raise TaskNotFoundError(msg)
        return task

    async def list_tasks(
        self, status: TaskStatus | None = None, page: int = 1, limit: int = 10
    ) -> tuple[list[Task], int]:
        return await self._store.list_tasks(status=status, page=page, limit=limit)

    async def update_task(self, task_id: str, request: UpdateTaskRequest) -> Task:
        """Apply a partial update, then reschedule or unschedule the task."""
        task = await self.get_task(task_id)

        if request.name is not None:
            task.name = request.name
        if request.trigger is not None:
            task.trigger = self.validate_trigger(request.trigger)
            if isinstance(task.trigger, OneOffTrigger):
                task.next_run = task.trigger.at
        if request.action is not None:
            task.action = request.action.to_action()
        if request.status is not None:
            task.status = request.status

        if not task.is_scheduled:
            task.next_run = None
        task.updated_at = utcnow()
        await self._store.update_task(task)

        if task.is_scheduled:
            await self._scheduler.schedule_task(task)
        else:
            self._scheduler.remove_task(task.id)
        logger.info("Updated task: '%s' (%s) status=%s", task.name, task.id, task.status)
        return task

    async def cancel_task(self, task_id: str) -> None:
        """Stop firing the task and mark it cancelled."""
        self._scheduler.remove_task(task_id)
        await self._store.cancel_task(task_id)

    async def get_task_results(
        self, task_id: str, page: int = 1, limit: int = 10
    ) -> tuple[list[TaskResult], int]:
        await self.get_task(task_id)
        return await self._store.get_task_results(task_id, page=page, limit=limit)

    async def list_results(
        self,
        task_id: str | None = None,
        success: bool | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[TaskResult], int]:
        return await self._store.list_results(
            task_id=task_id,
            success=success,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
        )
