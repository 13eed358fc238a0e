"""Webhook task scheduling — models, persistence, execution, and scheduling."""

from webhook_scheduler.scheduler.cron import CronEngine, JobHandle
from webhook_scheduler.scheduler.dispatcher import Dispatcher
from webhook_scheduler.scheduler.engine import SchedulerEngine
from webhook_scheduler.scheduler.executor import TaskExecutor
from webhook_scheduler.scheduler.models import (
    Action,
    CronTrigger,
    OneOffTrigger,
    Task,
    TaskResult,
    TaskStatus,
    Trigger,
)
from webhook_scheduler.scheduler.poller import OneOffPoller
from webhook_scheduler.scheduler.registry import JobRegistry
from webhook_scheduler.scheduler.store import TaskStore

__all__ = [
    "Action",
    "CronEngine",
    "CronTrigger",
    "Dispatcher",
    "JobHandle",
    "JobRegistry",
    "OneOffPoller",
    "OneOffTrigger",
    "SchedulerEngine",
    "Task",
    "TaskExecutor",
    "TaskResult",
    "TaskStatus",
    "TaskStore",
    "Trigger",
]
