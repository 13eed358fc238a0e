"""Tests for TaskStore — aiosqlite persistence."""

from datetime import timedelta

import aiosqlite
import pytest

from tests.factories import make_cron_task, make_one_off_task
from webhook_scheduler.errors import PersistenceError, TaskNotFoundError
from webhook_scheduler.scheduler.models import TaskResult, TaskStatus, make_result_id, utcnow
from webhook_scheduler.scheduler.store import TaskStore


def _make_result(task_id: str, success: bool = True, minutes_ago: int = 0) -> TaskResult:
    return TaskResult(
        id=make_result_id(),
        task_id=task_id,
        run_at=utcnow() - timedelta(minutes=minutes_ago),
        status_code=200 if success else 500,
        success=success,
    )


# -- add_task / get_task -------------------------------------------------------


async def test_add_and_get_task(store: TaskStore) -> None:
    task = make_cron_task(task_id="t1", name="Ping")
    await store.add_task(task)

    fetched = await store.get_task("t1")
    assert fetched is not None
    assert fetched.name == "Ping"
    assert fetched.trigger == task.trigger
    assert fetched.action == task.action
    assert fetched.status == TaskStatus.SCHEDULED


async def test_get_task_not_found(store: TaskStore) -> None:
    assert await store.get_task("nonexistent") is None


# -- update_task ---------------------------------------------------------------


async def test_update_task_persists_fields(store: TaskStore) -> None:
    task = make_one_off_task(task_id="t1")
    await store.add_task(task)

    task.name = "Renamed"
    task.next_run = task.trigger.at
    await store.update_task(task)

    fetched = await store.get_task("t1")
    assert fetched.name == "Renamed"
    assert fetched.next_run == task.trigger.at


async def test_update_missing_task_raises(store: TaskStore) -> None:
    with pytest.raises(TaskNotFoundError):
        await store.update_task(make_one_off_task(task_id="ghost"))


async def test_update_next_run_only_touches_scheduled(store: TaskStore) -> None:
    await store.add_task(make_cron_task(task_id="t1"))
    await store.add_task(make_cron_task(task_id="t2", status=TaskStatus.CANCELLED))
    when = utcnow() + timedelta(minutes=5)

    assert await store.update_next_run("t1", when) is True
    assert await store.update_next_run("t2", when) is False
    assert (await store.get_task("t1")).next_run == when
    assert (await store.get_task("t2")).next_run is None


# -- cancel_task ---------------------------------------------------------------


async def test_cancel_task(store: TaskStore) -> None:
    task = make_one_off_task(task_id="t1")
    task.next_run = task.trigger.at
    await store.add_task(task)

    await store.cancel_task("t1")

    fetched = await store.get_task("t1")
    assert fetched.status == TaskStatus.CANCELLED
    assert fetched.next_run is None


async def test_cancel_nonexistent_raises(store: TaskStore) -> None:
    with pytest.raises(TaskNotFoundError):
        await store.cancel_task("nope")


# -- get_scheduled_tasks -------------------------------------------------------


async def test_get_scheduled_tasks_orders_by_next_run_nulls_last(store: TaskStore) -> None:
    late = make_one_off_task(task_id="late", delay=timedelta(hours=2))
    late.next_run = late.trigger.at
    soon = make_one_off_task(task_id="soon", delay=timedelta(minutes=5))
    soon.next_run = soon.trigger.at
    unset = make_cron_task(task_id="unset")
    done = make_cron_task(task_id="done", status=TaskStatus.COMPLETED)

    for task in (unset, late, done, soon):
        await store.add_task(task)

    ids = [t.id for t in await store.get_scheduled_tasks()]
    assert ids == ["soon", "late", "unset"]


async def test_get_scheduled_tasks_skips_undecodable_rows(store: TaskStore, tmp_path) -> None:
    await store.add_task(make_cron_task(task_id="good"))
    async with aiosqlite.connect(str(tmp_path / "test.db")) as db:
        await db.execute(
            "INSERT INTO tasks (id, name, trigger, action, status, created_at, updated_at) "
            "VALUES ('bad', 'Bad', '{\"type\": \"weekly\"}', '{}', 'scheduled', 'x', 'x')"
        )
        await db.commit()

    ids = [t.id for t in await store.get_scheduled_tasks()]
    assert ids == ["good"]


# -- claim_one_off -------------------------------------------------------------


async def test_claim_one_off_marks_completed(store: TaskStore) -> None:
    task = make_one_off_task(task_id="t1")
    task.next_run = task.trigger.at
    await store.add_task(task)

    assert await store.claim_one_off("t1") is True

    fetched = await store.get_task("t1")
    assert fetched.status == TaskStatus.COMPLETED
    assert fetched.next_run is None


async def test_claim_one_off_only_once(store: TaskStore) -> None:
    await store.add_task(make_one_off_task(task_id="t1"))

    assert await store.claim_one_off("t1") is True
    assert await store.claim_one_off("t1") is False


async def test_claim_one_off_ignores_cancelled(store: TaskStore) -> None:
    await store.add_task(make_one_off_task(task_id="t1", status=TaskStatus.CANCELLED))
    assert await store.claim_one_off("t1") is False


# -- list_tasks ----------------------------------------------------------------


async def test_list_tasks_paginates_and_filters(store: TaskStore) -> None:
    for i in range(3):
        await store.add_task(make_cron_task(task_id=f"s{i}"))
    await store.add_task(make_cron_task(task_id="c1", status=TaskStatus.CANCELLED))

    tasks, total = await store.list_tasks(page=1, limit=2)
    assert total == 4
    assert len(tasks) == 2

    tasks, total = await store.list_tasks(status=TaskStatus.CANCELLED)
    assert total == 1
    assert [t.id for t in tasks] == ["c1"]


# -- Results -------------------------------------------------------------------


async def test_create_and_get_task_results(store: TaskStore) -> None:
    await store.add_task(make_cron_task(task_id="t1"))
    await store.create_task_result(_make_result("t1", minutes_ago=2))
    await store.create_task_result(_make_result("t1", success=False, minutes_ago=1))

    results, total = await store.get_task_results("t1")
    assert total == 2
    # Latest run first
    assert results[0].success is False
    assert results[1].success is True


async def test_result_without_headers_stays_null(store: TaskStore) -> None:
    await store.add_task(make_cron_task(task_id="t1"))
    await store.create_task_result(_make_result("t1"))

    results, _ = await store.get_task_results("t1")
    assert results[0].response_headers is None
    assert results[0].to_dict()["response_headers"] is None


async def test_list_results_filters(store: TaskStore) -> None:
    await store.add_task(make_cron_task(task_id="t1"))
    await store.add_task(make_cron_task(task_id="t2"))
    await store.create_task_result(_make_result("t1", success=True, minutes_ago=30))
    await store.create_task_result(_make_result("t1", success=False, minutes_ago=5))
    await store.create_task_result(_make_result("t2", success=True, minutes_ago=1))

    _, total = await store.list_results()
    assert total == 3

    results, total = await store.list_results(task_id="t1", success=False)
    assert total == 1
    assert results[0].task_id == "t1"

    results, total = await store.list_results(date_from=utcnow() - timedelta(minutes=10))
    assert total == 2


# -- Failures ------------------------------------------------------------------


async def test_driver_errors_become_persistence_errors(tmp_path) -> None:
    # A directory where the database file should be cannot be opened.
    db_path = tmp_path / "dir.db"
    db_path.mkdir()
    store = TaskStore(db_path=db_path)

    with pytest.raises(PersistenceError):
        await store.get_scheduled_tasks()
