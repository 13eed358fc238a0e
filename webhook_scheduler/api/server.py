"""Async HTTP API for managing tasks and reading execution results.

Runs in the same asyncio event loop as the scheduler, using aiohttp's
AppRunner/TCPSite for non-blocking start/stop. Every response uses the
envelope ``{"success": bool, "data"?, "error"?, "meta"?}``.
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import TYPE_CHECKING, Any

import pydantic
from aiohttp import web

from webhook_scheduler.config import settings
from webhook_scheduler.errors import PersistenceError, TaskNotFoundError, ValidationError
from webhook_scheduler.scheduler.models import TaskStatus, parse_datetime
from webhook_scheduler.service import CreateTaskRequest, TaskService, UpdateTaskRequest

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", TaskService)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class _BadRequest(Exception):
    """Malformed path or query parameter."""


# -- Envelope helpers ----------------------------------------------------------


def _success(data: Any, status: int = 200, meta: dict[str, Any] | None = None) -> web.Response:
    body: dict[str, Any] = {"success": True, "data": data}
    if meta is not None:
        body["meta"] = meta
    return web.json_response(body, status=status)


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


def pagination_meta(page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


# -- Parameter parsing ---------------------------------------------------------


def _task_id(request: web.Request) -> str:
    raw = request.match_info["id"]
    try:
        return str(uuid.UUID(raw))
    except ValueError as exc:
        msg = "Invalid task ID"
        raise _BadRequest(msg) from exc


def _int_query(request: web.Request, name: str, default: int) -> int:
    raw = request.query.get(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        msg = f"{name} must be an integer"
        raise _BadRequest(msg) from exc
    if value < 1:
        msg = f"{name} must be at least 1"
        raise _BadRequest(msg)
    return value


def _pagination(request: web.Request) -> tuple[int, int]:
    page = _int_query(request, "page", DEFAULT_PAGE)
    limit = _int_query(request, "limit", DEFAULT_LIMIT)
    if limit > MAX_LIMIT:
        msg = f"limit must be at most {MAX_LIMIT}"
        raise _BadRequest(msg)
    return page, limit


def _optional_datetime(request: web.Request, name: str):
    raw = request.query.get(name)
    if not raw:
        return None
    try:
        return parse_datetime(raw)
    except ValueError as exc:
        msg = f"{name} must be an ISO 8601 timestamp"
        raise _BadRequest(msg) from exc


async def _json_body(request: web.Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        msg = "invalid JSON"
        raise _BadRequest(msg) from exc


# -- Middleware ----------------------------------------------------------------


@web.middleware
async def _error_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    """Map domain errors onto HTTP status codes."""
    try:
        return await handler(request)
    except _BadRequest as exc:
        return _error(400, str(exc))
    except pydantic.ValidationError as exc:
        return _error(400, str(exc))
    except ValidationError as exc:
        return _error(400, str(exc))
    except TaskNotFoundError:
        return _error(404, "Task not found")
    except PersistenceError as exc:
        logger.exception("Storage failure: %s %s", request.method, request.path)
        return _error(500, str(exc))


# -- Handlers ------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return _success({"status": "healthy", "service": "webhook-scheduler"})


async def _create_task(request: web.Request) -> web.Response:
    body = await _json_body(request)
    task = await request.app[SERVICE_KEY].create_task(CreateTaskRequest.model_validate(body))
    return _success(task.to_dict(), status=201)


async def _list_tasks(request: web.Request) -> web.Response:
    page, limit = _pagination(request)
    raw_status = request.query.get("status")
    try:
        status = TaskStatus(raw_status) if raw_status else None
    except ValueError as exc:
        msg = f"invalid status: {raw_status}"
        raise _BadRequest(msg) from exc

    tasks, total = await request.app[SERVICE_KEY].list_tasks(status=status, page=page, limit=limit)
    return _success([t.to_dict() for t in tasks], meta=pagination_meta(page, limit, total))


async def _get_task(request: web.Request) -> web.Response:
    task = await request.app[SERVICE_KEY].get_task(_task_id(request))
    return _success(task.to_dict())


async def _update_task(request: web.Request) -> web.Response:
    task_id = _task_id(request)
    body = await _json_body(request)
    task = await request.app[SERVICE_KEY].update_task(
        task_id, UpdateTaskRequest.model_validate(body)
    )
    return _success(task.to_dict())


async def _cancel_task(request: web.Request) -> web.Response:
    await request.app[SERVICE_KEY].cancel_task(_task_id(request))
    return _success({"message": "Task cancelled successfully"})


async def _task_results(request: web.Request) -> web.Response:
    task_id = _task_id(request)
    page, limit = _pagination(request)
    results, total = await request.app[SERVICE_KEY].get_task_results(
        task_id, page=page, limit=limit
    )
    return _success([r.to_dict() for r in results], meta=pagination_meta(page, limit, total))


async def _list_results(request: web.Request) -> web.Response:
    page, limit = _pagination(request)

    task_id = None
    if raw_task_id := request.query.get("task_id"):
        try:
            task_id = str(uuid.UUID(raw_task_id))
        except ValueError as exc:
            msg = "Invalid task ID"
            raise _BadRequest(msg) from exc

    success = None
    if raw_success := request.query.get("success"):
        if raw_success.lower() not in ("true", "false", "1", "0"):
            msg = "success must be true or false"
            raise _BadRequest(msg)
        success = raw_success.lower() in ("true", "1")

    results, total = await request.app[SERVICE_KEY].list_results(
        task_id=task_id,
        success=success,
        date_from=_optional_datetime(request, "date_from"),
        date_to=_optional_datetime(request, "date_to"),
        page=page,
        limit=limit,
    )
    return _success([r.to_dict() for r in results], meta=pagination_meta(page, limit, total))


def create_web_app(service: TaskService) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_error_middleware])
    app[SERVICE_KEY] = service
    app.router.add_get("/health", _health)
    app.router.add_post("/api/v1/tasks", _create_task)
    app.router.add_get("/api/v1/tasks", _list_tasks)
    app.router.add_get("/api/v1/tasks/{id}", _get_task)
    app.router.add_put("/api/v1/tasks/{id}", _update_task)
    app.router.add_delete("/api/v1/tasks/{id}", _cancel_task)
    app.router.add_get("/api/v1/tasks/{id}/results", _task_results)
    app.router.add_get("/api/v1/results", _list_results)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        service: TaskService,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.host = host or settings.server_host
        self.port = port or settings.server_port
        self._service = service
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for API requests."""
        app = create_web_app(self._service)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("API server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("API server stopped")
