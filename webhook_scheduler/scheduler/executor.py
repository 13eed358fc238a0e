"""TaskExecutor — performs a task's webhook call and records the outcome."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

import httpx

from webhook_scheduler.config import settings
from webhook_scheduler.errors import PersistenceError
from webhook_scheduler.scheduler.models import TaskResult, make_result_id, utcnow

if TYPE_CHECKING:
    from webhook_scheduler.scheduler.models import Task
    from webhook_scheduler.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"
MAX_REDIRECTS = 10


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _describe(exc: Exception) -> str:
    # Timeouts often carry an empty message.
    return str(exc) or type(exc).__name__


def build_headers(task: Task) -> dict[str, str]:
    """Return the request headers for *task*.

    ``Content-Type: application/json`` is added only when the task has a
    payload and did not set a content type itself.
    """
    headers = dict(task.action.headers)
    has_content_type = any(key.lower() == "content-type" for key in headers)
    if task.action.payload is not None and not has_content_type:
        headers["Content-Type"] = DEFAULT_CONTENT_TYPE
    return headers


def canonical_header_name(name: str) -> str:
    """``content-type`` -> ``Content-Type``."""
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def serialize_headers(headers: httpx.Headers) -> str | None:
    """Encode response headers as a JSON object of canonical name -> list of values."""
    if not headers:
        return None
    grouped: dict[str, list[str]] = {}
    for name, value in headers.multi_items():
        grouped.setdefault(canonical_header_name(name), []).append(value)
    return json.dumps(grouped)


class TaskExecutor:
    """Executes a task's HTTP action and persists exactly one result per call.

    Args:
        store: TaskStore the results are written to.
        timeout: Per-request timeout in seconds (default from settings).
    """

    def __init__(self, store: TaskStore, timeout: float | None = None) -> None:
        self._store = store
        self._timeout = timeout or settings.request_timeout_seconds

    async def execute(self, task: Task) -> TaskResult:
        """Run *task*'s webhook call once and record the outcome.

        Never raises for HTTP or transport failures: they are captured in the
        returned (and persisted) ``TaskResult``.
        """
        logger.info("Executing task: '%s' (%s)", task.name, task.id)

        result = TaskResult(id=make_result_id(), task_id=task.id, run_at=utcnow())
        action = task.action
        start = time.monotonic()

        async with httpx.AsyncClient(
            timeout=self._timeout, follow_redirects=True, max_redirects=MAX_REDIRECTS
        ) as client:
            try:
                request = client.build_request(
                    action.method,
                    action.url,
                    headers=build_headers(task),
                    content=action.payload.encode() if action.payload is not None else None,
                )
            except (httpx.HTTPError, httpx.InvalidURL, ValueError, TypeError) as exc:
                result.error_message = f"Failed to create request: {_describe(exc)}"
                result.duration_ms = _elapsed_ms(start)
                logger.warning("Task '%s' (%s): %s", task.name, task.id, result.error_message)
                await self._save_result(result)
                return result

            try:
                response = await client.send(request)
            except httpx.HTTPError as exc:
                result.error_message = f"Request failed: {_describe(exc)}"
                result.duration_ms = _elapsed_ms(start)
                logger.warning("Task '%s' (%s): %s", task.name, task.id, result.error_message)
                await self._save_result(result)
                return result

        result.duration_ms = _elapsed_ms(start)
        result.status_code = response.status_code
        result.success = 200 <= response.status_code < 300
        result.response_body = response.text
        result.response_headers = serialize_headers(response.headers)

        await self._save_result(result)
        logger.info(
            "Task executed: '%s', status=%d, success=%s, duration=%dms",
            task.name,
            result.status_code,
            result.success,
            result.duration_ms,
        )
        return result

    async def _save_result(self, result: TaskResult) -> None:
        """Persist *result*; failures are logged, never raised or retried."""
        try:
            await self._store.create_task_result(result)
        except PersistenceError:
            logger.exception("Failed to save result for task %s", result.task_id)
