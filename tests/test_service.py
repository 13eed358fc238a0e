"""Tests for TaskService — validation and store/scheduler coordination."""

from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from webhook_scheduler.errors import TaskNotFoundError, ValidationError
from webhook_scheduler.scheduler.engine import SchedulerEngine
from webhook_scheduler.scheduler.executor import TaskExecutor
from webhook_scheduler.scheduler.models import (
    CronTrigger,
    OneOffTrigger,
    TaskResult,
    TaskStatus,
    make_result_id,
    utcnow,
)
from webhook_scheduler.scheduler.store import TaskStore
from webhook_scheduler.service import (
    ActionRequest,
    CreateTaskRequest,
    TaskService,
    UpdateTaskRequest,
)


@pytest.fixture
def scheduler(store: TaskStore) -> SchedulerEngine:
    return SchedulerEngine(store=store, executor=TaskExecutor(store=store), timezone="UTC")


@pytest.fixture
def service(store: TaskStore, scheduler: SchedulerEngine) -> TaskService:
    return TaskService(store, scheduler)


def _future_iso(hours: int = 1) -> str:
    return (utcnow() + timedelta(hours=hours)).isoformat()


def _create_request(trigger: dict | None = None, **action) -> CreateTaskRequest:
    action = {"method": "POST", "url": "https://example.com/hook", **action}
    return CreateTaskRequest(
        name="Ping",
        trigger=trigger or {"type": "cron", "cron": "0 */5 * * * *"},
        action=action,
    )


# -- Request models ------------------------------------------------------------


@pytest.mark.parametrize("url", ["example.com/hook", "ftp://example.com/file", "http://"])
def test_action_request_rejects_bad_urls(url: str) -> None:
    with pytest.raises(PydanticValidationError):
        ActionRequest(method="GET", url=url)


def test_action_request_structured_payload_becomes_json_text() -> None:
    action = ActionRequest(method="post", url="http://x.test/a", payload={"k": "v"}).to_action()
    assert action.method == "POST"
    assert action.payload == '{"k":"v"}'


def test_create_request_requires_name() -> None:
    with pytest.raises(PydanticValidationError):
        CreateTaskRequest(name="", trigger={}, action={"method": "GET", "url": "http://x.test"})


# -- validate_trigger ----------------------------------------------------------


def test_validate_cron_trigger(service: TaskService) -> None:
    trigger = service.validate_trigger({"type": "cron", "cron": "@hourly"})
    assert trigger == CronTrigger(expression="@hourly")


def test_validate_rejects_bad_cron(service: TaskService) -> None:
    with pytest.raises(ValidationError):
        service.validate_trigger({"type": "cron", "cron": "every day"})


def test_validate_rejects_past_one_off(service: TaskService) -> None:
    with pytest.raises(ValidationError, match="future"):
        service.validate_trigger({"type": "one-off", "datetime": _future_iso(hours=-1)})


@pytest.mark.parametrize(
    "raw",
    [{"type": "one-off"}, {"type": "cron"}, {"type": "hourly"}],
)
def test_validate_rejects_malformed_trigger(service: TaskService, raw: dict) -> None:
    with pytest.raises(ValidationError):
        service.validate_trigger(raw)


# -- create / get / list -------------------------------------------------------


async def test_create_cron_task(
    service: TaskService, store: TaskStore, scheduler: SchedulerEngine
) -> None:
    task = await service.create_task(_create_request())

    assert task.status == TaskStatus.SCHEDULED
    assert task.id in scheduler.registry
    stored = await store.get_task(task.id)
    assert stored.next_run is not None


async def test_create_one_off_task(
    service: TaskService, store: TaskStore, scheduler: SchedulerEngine
) -> None:
    task = await service.create_task(
        _create_request(trigger={"type": "one-off", "datetime": _future_iso()})
    )

    assert isinstance(task.trigger, OneOffTrigger)
    assert task.id not in scheduler.registry
    stored = await store.get_task(task.id)
    assert stored.next_run == task.trigger.at


async def test_create_invalid_task_stores_nothing(service: TaskService, store: TaskStore) -> None:
    with pytest.raises(ValidationError):
        await service.create_task(_create_request(trigger={"type": "cron", "cron": "nope"}))

    _, total = await store.list_tasks()
    assert total == 0


async def test_get_missing_task(service: TaskService) -> None:
    with pytest.raises(TaskNotFoundError):
        await service.get_task("00000000-0000-0000-0000-000000000000")


async def test_list_tasks_filters_by_status(service: TaskService) -> None:
    first = await service.create_task(_create_request())
    await service.create_task(_create_request())
    await service.cancel_task(first.id)

    tasks, total = await service.list_tasks(status=TaskStatus.CANCELLED)
    assert total == 1
    assert tasks[0].id == first.id


# -- update --------------------------------------------------------------------


async def test_update_name_and_action(service: TaskService, store: TaskStore) -> None:
    task = await service.create_task(_create_request())

    updated = await service.update_task(
        task.id,
        UpdateTaskRequest(
            name="Renamed",
            action={"method": "put", "url": "https://example.com/other"},
        ),
    )

    assert updated.name == "Renamed"
    assert updated.action.method == "PUT"
    stored = await store.get_task(task.id)
    assert stored.action.url == "https://example.com/other"
    assert stored.updated_at >= stored.created_at


async def test_update_trigger_cron_to_one_off(
    service: TaskService, store: TaskStore, scheduler: SchedulerEngine
) -> None:
    task = await service.create_task(_create_request())
    assert task.id in scheduler.registry

    at = _future_iso(hours=2)
    updated = await service.update_task(
        task.id, UpdateTaskRequest(trigger={"type": "one-off", "datetime": at})
    )

    assert updated.is_one_off
    assert task.id not in scheduler.registry
    stored = await store.get_task(task.id)
    assert stored.next_run == updated.trigger.at


async def test_update_status_unschedules(
    service: TaskService, store: TaskStore, scheduler: SchedulerEngine
) -> None:
    task = await service.create_task(_create_request())

    await service.update_task(task.id, UpdateTaskRequest(status=TaskStatus.CANCELLED))

    assert task.id not in scheduler.registry
    stored = await store.get_task(task.id)
    assert stored.status == TaskStatus.CANCELLED
    assert stored.next_run is None


async def test_update_rejects_invalid_trigger(service: TaskService) -> None:
    task = await service.create_task(_create_request())
    with pytest.raises(ValidationError):
        await service.update_task(
            task.id, UpdateTaskRequest(trigger={"type": "cron", "cron": "* * *"})
        )


async def test_update_missing_task(service: TaskService) -> None:
    with pytest.raises(TaskNotFoundError):
        await service.update_task("ghost", UpdateTaskRequest(name="x"))


# -- cancel / results ----------------------------------------------------------


async def test_cancel_task(
    service: TaskService, store: TaskStore, scheduler: SchedulerEngine
) -> None:
    task = await service.create_task(_create_request())

    await service.cancel_task(task.id)

    assert task.id not in scheduler.registry
    stored = await store.get_task(task.id)
    assert stored.status == TaskStatus.CANCELLED
    assert stored.next_run is None


async def test_cancel_missing_task(service: TaskService) -> None:
    with pytest.raises(TaskNotFoundError):
        await service.cancel_task("ghost")


async def test_get_task_results(service: TaskService, store: TaskStore) -> None:
    task = await service.create_task(_create_request())
    await store.create_task_result(
        TaskResult(
            id=make_result_id(),
            task_id=task.id,
            run_at=utcnow(),
            status_code=200,
            success=True,
        )
    )

    results, total = await service.get_task_results(task.id)
    assert total == 1
    assert results[0].success is True


async def test_get_results_for_missing_task(service: TaskService) -> None:
    with pytest.raises(TaskNotFoundError):
        await service.get_task_results("ghost")
