"""pytest configuration and fixtures for construct_core tests.

This module provides shared fixtures for testing the pipeline engine,
including a fresh EventBridge, deterministic executors and httpx clients
served by an in-memory MockTransport.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from concurrent.futures import Executor, Future
from typing import TYPE_CHECKING, Any

import httpx
import pytest

if TYPE_CHECKING:
    from construct_core import EventBridge, ResolverRegistry


class InlineExecutor(Executor):
    """Executor running every submitted call immediately on the caller's thread."""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


class DeferredExecutor(Executor):
    """Executor queueing submitted calls until the test runs them."""

    def __init__(self) -> None:
        self.queue: list[tuple[Future, Callable[..., Any], tuple, dict]] = []
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        self.submitted += 1
        future: Future = Future()
        self.queue.append((future, fn, args, kwargs))
        return future

    def run_next(self) -> None:
        future, fn, args, kwargs = self.queue.pop(0)
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)

    def run_all(self) -> None:
        while self.queue:
            self.run_next()

    @property
    def pending(self) -> int:
        return len(self.queue)


class Routes:
    """In-memory HTTP responses keyed by URL, with a request log."""

    def __init__(self) -> None:
        self.responses: dict[str, httpx.Response | Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, url: str, response: httpx.Response | Callable[[httpx.Request], httpx.Response]):
        self.responses[url] = response

    def json(self, url: str, body: Any, status_code: int = 200) -> None:
        self.add(url, lambda request: httpx.Response(status_code, json=body))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.get(str(request.url))
        if response is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(response):
            return response(request)
        return response

    def count(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)


@pytest.fixture(scope="session")
def construct_core_module():
    """Provide the construct_core module as a fixture."""
    import construct_core

    return construct_core


@pytest.fixture
def event_bridge() -> Generator[EventBridge, None, None]:
    """Provide a fresh EventBridge for each test.

    The bridge is automatically started and cleaned up after the test.
    """
    from construct_core import EventBridge

    EventBridge.reset_instance()
    bridge = EventBridge.instance()
    bridge.start()
    yield bridge
    bridge.stop()
    EventBridge.reset_instance()


@pytest.fixture
def inline_executor() -> InlineExecutor:
    """Executor completing fetches synchronously inside request()."""
    return InlineExecutor()


@pytest.fixture
def deferred_executor() -> DeferredExecutor:
    """Executor leaving fetches pending until run_all() is called."""
    return DeferredExecutor()


@pytest.fixture
def routes() -> Routes:
    """Provide an empty route table for the mock HTTP client."""
    return Routes()


@pytest.fixture
def http_client(routes: Routes) -> Generator[httpx.Client, None, None]:
    """Provide an httpx.Client answering from the routes fixture."""
    client = httpx.Client(transport=httpx.MockTransport(routes.handle))
    yield client
    client.close()


@pytest.fixture
def counting_resolvers() -> list[dict[str, Any]]:
    """Provide the start/increment resolvers used by the arithmetic tests."""
    return [
        {"kind": "start", "handler": lambda previous, current, next: next(10)},
        {"kind": "increment", "handler": lambda previous, current, next: next(previous + 1)},
    ]


@pytest.fixture
def registry(counting_resolvers: list[dict[str, Any]]) -> ResolverRegistry:
    """Provide a registry holding the counting resolvers."""
    from construct_core import ResolverRegistry

    return ResolverRegistry.from_resolvers(counting_resolvers)


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks tests that use real worker threads")
