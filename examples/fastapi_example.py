"""Example FastAPI application reporting its requests to a collector.

Run with:
    PERFBEACON_API_KEY=... uvicorn examples.fastapi_example:app --reload

Endpoints:
    /users        - runs two SQLite queries
    /weather      - makes one outgoing HTTP call
    /error        - raises, producing a metrics payload and an error payload
    /health       - excluded from reporting

Instrumentation:
    The ASGI middleware reports every request. SQL is captured by
    wrapping the DB-API connection; outgoing calls by wrapping the httpx
    transport. Both only record while a request is being tracked.
"""

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI
from starlette.routing import Match

from perfbeacon import build_agent, enable_debug_logging
from perfbeacon.adapters.frameworks.asgi import PerfBeaconMiddleware, Scope
from perfbeacon.adapters.instrumentation import InstrumentedTransport, TrackedConnection

enable_debug_logging()
agent = build_agent()

db = TrackedConnection(sqlite3.connect(":memory:", check_same_thread=False), agent.sql)
db.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
db.execute("INSERT INTO users (name) VALUES ('Alice'), ('Bob')")

http = httpx.Client(transport=InstrumentedTransport(agent.http))


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    http.close()
    agent.close()


app = FastAPI(title="perfbeacon example", lifespan=lifespan)


def resolve_route(scope: Scope) -> tuple[str | None, str | None]:
    """Name requests after the endpoint function that serves them."""
    for route in app.router.routes:
        match, _ = route.matches(scope)
        if match is Match.FULL:
            endpoint = getattr(route, "endpoint", None)
            if endpoint is not None:
                return endpoint.__module__, endpoint.__name__
    return "ASGI", scope.get("path")


@app.get("/users")
def list_users() -> dict[str, Any]:
    count = db.execute("SELECT COUNT(*) FROM users").fetchone()[0]
    rows = db.execute("SELECT id, name FROM users ORDER BY id").fetchall()
    return {"count": count, "users": [{"id": i, "name": n} for i, n in rows]}


@app.get("/weather")
def weather() -> dict[str, Any]:
    response = http.get("https://httpbin.org/json")
    return {"status": response.status_code}


@app.get("/error")
def error_endpoint() -> dict[str, str]:
    raise ValueError("Intentional error for demonstration")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.add_middleware(
    PerfBeaconMiddleware,
    agent=agent,
    resolve_route=resolve_route,
    exclude_paths=["/health"],
)

