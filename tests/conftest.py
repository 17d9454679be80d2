"""Shared test fixtures for the Stampede test suite."""

from __future__ import annotations

import asyncio
import socket
import threading
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from stampede.dsl.http_client import ResponseOutcome

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator

    from stampede.dsl.scenario import RequestSpec


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Echo HTTP Server handlers
# =============================================================================


async def _echo_handler(request: web.Request) -> web.Response:
    """Echo back request details as JSON."""
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": str(request.path),
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body.decode("utf-8", errors="replace"),
        },
        status=200,
    )


async def _delay_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.1"))
    await asyncio.sleep(delay)
    return web.json_response({"delayed_by": delay})


async def _error_handler(request: web.Request) -> web.Response:
    """Return a configurable error status (query param: ?status=500)."""
    status = int(request.query.get("status", "500"))
    return web.json_response({"error": True}, status=status)


async def _health_handler(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    return web.json_response({"status": "ok"}, headers={"X-Service": "echo"})


async def _signup_handler(request: web.Request) -> web.Response:
    """Simulate a signup endpoint that echoes the submitted username."""
    data = await request.json()
    return web.json_response({"created": True, "username": data.get("username")}, status=201)


def _create_echo_app() -> web.Application:
    """Build the echo server app with all test routes."""
    app = web.Application()
    app.router.add_route("*", "/echo{path:.*}", _echo_handler)
    app.router.add_get("/delay", _delay_handler)
    app.router.add_route("*", "/error", _error_handler)
    app.router.add_get("/health", _health_handler)
    app.router.add_post("/signup", _signup_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def echo_server() -> AsyncIterator[str]:
    """Aiohttp echo server fixture.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_echo_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.fixture
def sync_echo_server() -> Iterator[str]:
    """Echo server running in a background thread for sync tests.

    Useful where the engine owns the event loop and blocks the main thread.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        app = _create_echo_app()
        runner = web.AppRunner(app)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


# =============================================================================
# Fake executors
# =============================================================================


class FakeExecutor:
    """In-memory executor returning canned outcomes, for engine tests.

    Attributes:
        calls: Every request spec passed to ``execute``.
        entered: True while inside the async context.
    """

    def __init__(
        self,
        respond: Callable[[RequestSpec], ResponseOutcome] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        self._respond = respond or (lambda _spec: ResponseOutcome(200, b"ok", 1.0))
        self._delay = delay
        self.calls: list[RequestSpec] = []
        self.entered = False

    async def __aenter__(self) -> FakeExecutor:
        self.entered = True
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.entered = False

    async def execute(self, spec: RequestSpec) -> ResponseOutcome:
        self.calls.append(spec)
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._respond(spec)


@pytest.fixture
def fake_executors() -> list[FakeExecutor]:
    """Collects every executor built by ``fake_factory``."""
    return []


@pytest.fixture
def fake_factory(fake_executors: list[FakeExecutor]) -> Callable[[int], FakeExecutor]:
    """Executor factory returning 200 OK instantly and recording instances."""

    def _factory(vu_id: int) -> FakeExecutor:
        executor = FakeExecutor()
        fake_executors.append(executor)
        return executor

    return _factory


@pytest.fixture
def fake_executor_cls() -> type[FakeExecutor]:
    """The ``FakeExecutor`` class, for tests that need custom responses."""
    return FakeExecutor
