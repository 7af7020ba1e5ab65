"""Shared test fixtures for all test modules."""

from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

from perfbeacon.adapters.dispatch import InlineDispatcher
from perfbeacon.adapters.memory_readers import StaticMemoryReader
from perfbeacon.adapters.transport.in_memory import RecordingTransport
from perfbeacon.agent import Agent, build_agent
from perfbeacon.core.config import ApmConfig
from perfbeacon.core.context import ExecutionContextStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_config() -> Callable[..., ApmConfig]:
    """Factory for configurations that are deliverable by default."""

    def _config(**overrides: Any) -> ApmConfig:
        values: dict[str, Any] = {
            "api_key": "test-key",
            "endpoint_url": "https://collector.test/apm/v1/metrics",
            "revision": "abc123",
            "environment": "test",
        }
        values.update(overrides)
        return ApmConfig(**values)

    return _config


@pytest.fixture
def config(make_config: Callable[..., ApmConfig]) -> ApmConfig:
    return make_config()


@pytest.fixture
def store() -> ExecutionContextStore:
    return ExecutionContextStore()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def make_agent(
    make_config: Callable[..., ApmConfig], transport: RecordingTransport
) -> Iterator[Callable[..., Agent]]:
    """Factory building agents that deliver inline to a recording transport."""
    agents: list[Agent] = []

    def _agent(reader: StaticMemoryReader | None = None, **overrides: Any) -> Agent:
        agent = build_agent(
            make_config(**overrides),
            transport=transport,
            dispatcher=InlineDispatcher(),
            reader=reader or StaticMemoryReader(memory=[100.0, 104.5]),
        )
        agents.append(agent)
        return agent

    yield _agent
    for agent in agents:
        agent.close()


@pytest.fixture
def agent(make_agent: Callable[..., Agent]) -> Agent:
    return make_agent()


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""
    from perfbeacon.adapters.frameworks.asgi import Receive, Scope, Send

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts."""
    from perfbeacon.adapters.frameworks.asgi import Scope

    def _scope(method: str = "GET", path: str = "/test") -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": [],
        }

    return _scope


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture."""

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
