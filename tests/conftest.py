"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from webhook_scheduler.scheduler.store import TaskStore

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class Endpoint:
    """A local HTTP server standing in for webhook targets."""

    server: TestServer
    requests: list[dict[str, Any]] = field(default_factory=list)

    def url(self, path: str = "/ok") -> str:
        return str(self.server.make_url(path))


@pytest.fixture
async def store(tmp_path: Path) -> TaskStore:
    """Create a TaskStore backed by a temp database."""
    return TaskStore(db_path=tmp_path / "test.db")


@pytest.fixture
async def endpoint():
    """Serve /ok (200), /fail (500), /empty (204), /slow (200 after a delay),
    /moved (302 to /ok) and /loop (302 to itself).
    """
    requests: list[dict[str, Any]] = []

    async def _record(request: web.Request) -> None:
        requests.append(
            {
                "method": request.method,
                "path": request.path,
                "headers": dict(request.headers),
                "body": await request.text(),
            }
        )

    async def ok(request: web.Request) -> web.Response:
        await _record(request)
        return web.json_response({"ok": True}, headers={"X-Trace": "abc"})

    async def fail(request: web.Request) -> web.Response:
        await _record(request)
        return web.Response(status=500, text="boom")

    async def empty(request: web.Request) -> web.Response:
        await _record(request)
        return web.Response(status=204)

    async def slow(request: web.Request) -> web.Response:
        await _record(request)
        await asyncio.sleep(float(request.query.get("delay", "0.5")))
        return web.Response(text="late")

    async def moved(request: web.Request) -> web.Response:
        await _record(request)
        raise web.HTTPFound("/ok")

    async def loop(request: web.Request) -> web.Response:
        await _record(request)
        raise web.HTTPFound("/loop")

    app = web.Application()
    app.router.add_route("*", "/ok", ok)
    app.router.add_route("*", "/fail", fail)
    app.router.add_route("*", "/empty", empty)
    app.router.add_route("*", "/slow", slow)
    app.router.add_route("*", "/moved", moved)
    app.router.add_route("*", "/loop", loop)

    server = TestServer(app)
    await server.start_server()
    try:
        yield Endpoint(server=server, requests=requests)
    finally:
        await server.close()
