"""BDD step definitions for the telemetry pipeline features."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from perfbeacon.adapters.transport.in_memory import RecordingTransport
from perfbeacon.agent import Agent
from perfbeacon.core import notifications

_CONVERTERS: dict[str, Callable[[str], Any]] = {
    "enabled": lambda value: value == "true",
    "api_key": str,
    "sample_rate": int,
    "exclude_controllers": lambda value: (value,),
}


@dataclass
class PipelineScenarioContext:
    """Shared state for pipeline scenarios."""

    agent: Agent | None = None
    transport: RecordingTransport | None = None
    request: dict[str, Any] = field(default_factory=dict)


@pytest.fixture
def ctx() -> PipelineScenarioContext:
    """Fresh scenario context for each test."""
    return PipelineScenarioContext()


def _envelope(ctx: PipelineScenarioContext, event: str) -> dict[str, Any]:
    assert ctx.transport is not None
    matching = [e for e in ctx.transport.envelopes if e["event"] == event]
    assert matching, f"no {event} envelope in {ctx.transport.envelopes}"
    return matching[0]


def _start_request(ctx: PipelineScenarioContext, route: str) -> None:
    assert ctx.agent is not None
    controller, action = route.split("#")
    ctx.request = {
        "controller": controller,
        "action": action,
        "method": "GET",
        "path": f"/{action}",
    }
    ctx.agent.notifications.emit(notifications.REQUEST_START, dict(ctx.request))


def _finish_request(
    ctx: PipelineScenarioContext, status: int, duration_ms: float
) -> None:
    assert ctx.agent is not None
    ctx.agent.notifications.emit(
        notifications.REQUEST_FINISH,
        {**ctx.request, "status": status, "duration_ms": duration_ms},
    )


# === Given ===


@given("a telemetry agent")
def given_agent(
    ctx: PipelineScenarioContext,
    make_agent: Callable[..., Agent],
    transport: RecordingTransport,
) -> None:
    ctx.agent = make_agent()
    ctx.transport = transport


@given(parsers.re(r'a telemetry agent with "(?P<option>[^"]+)" set to "(?P<value>[^"]*)"'))
def given_configured_agent(
    ctx: PipelineScenarioContext,
    make_agent: Callable[..., Agent],
    transport: RecordingTransport,
    option: str,
    value: str,
) -> None:
    ctx.agent = make_agent(**{option: _CONVERTERS[option](value)})
    ctx.transport = transport


@given("a telemetry agent whose endpoint keeps failing")
def given_failing_endpoint(
    ctx: PipelineScenarioContext,
    make_agent: Callable[..., Agent],
    transport: RecordingTransport,
) -> None:
    transport.status = 503
    ctx.agent = make_agent()
    ctx.transport = transport


# === When ===


@when(
    parsers.parse(
        'a request to "{route}" runs the query "{sql}" taking {duration:g} ms'
    )
)
def when_request_runs_query(
    ctx: PipelineScenarioContext, route: str, sql: str, duration: float
) -> None:
    assert ctx.agent is not None
    _start_request(ctx, route)
    ctx.agent.notifications.emit(
        notifications.SQL_QUERY, {"sql": sql, "duration_ms": duration}
    )


@when(parsers.parse("the request finishes with status {status:d} after {duration:g} ms"))
def when_request_finishes(
    ctx: PipelineScenarioContext, status: int, duration: float
) -> None:
    _finish_request(ctx, status, duration)


@when(parsers.parse('the query "{sql}" runs outside any request'))
def when_query_outside_request(ctx: PipelineScenarioContext, sql: str) -> None:
    assert ctx.agent is not None
    ctx.agent.notifications.emit(notifications.SQL_QUERY, {"sql": sql})


@when(parsers.parse('a request to "{route}" fails with "{message}"'))
def when_request_fails(ctx: PipelineScenarioContext, route: str, message: str) -> None:
    assert ctx.agent is not None
    _start_request(ctx, route)
    with pytest.raises(RuntimeError):
        with ctx.agent.notifications.instrument(
            notifications.REQUEST_FINISH, {**ctx.request, "status": 500}
        ):
            raise RuntimeError(message)


@when(parsers.parse('{count:d} requests to "{route}" finish'))
def when_requests_finish(ctx: PipelineScenarioContext, count: int, route: str) -> None:
    for _ in range(count):
        _start_request(ctx, route)
        _finish_request(ctx, 200, 1.0)


# === Then ===


@then(parsers.parse("{count:d} envelope is delivered"))
@then(parsers.parse("{count:d} envelopes are delivered"))
def then_envelope_count(ctx: PipelineScenarioContext, count: int) -> None:
    assert ctx.transport is not None
    assert len(ctx.transport.envelopes) == count


@then(parsers.parse('the envelope "{event}" has "{key}" equal to {value:g}'))
def then_payload_value(
    ctx: PipelineScenarioContext, event: str, key: str, value: float
) -> None:
    assert _envelope(ctx, event)["payload"][key] == value


@then(parsers.parse('the envelope "{event}" is marked as an error'))
def then_error_envelope(ctx: PipelineScenarioContext, event: str) -> None:
    envelope = _envelope(ctx, event)
    assert envelope["error"] is True
    assert envelope["payload"]["exception_class"] == event


@then(parsers.parse('the circuit breaker is "{state}"'))
def then_breaker_state(ctx: PipelineScenarioContext, state: str) -> None:
    assert ctx.agent is not None
    assert ctx.agent.circuit_breaker is not None
    assert ctx.agent.circuit_breaker.state.value == state


@then(parsers.parse("{count:d} delivery attempts reached the endpoint"))
def then_delivery_attempts(ctx: PipelineScenarioContext, count: int) -> None:
    assert ctx.transport is not None
    assert len(ctx.transport.sent) == count
