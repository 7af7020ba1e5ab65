"""ASGI middleware reporting each HTTP request to the agent.

The middleware works with any ASGI server or framework. It emits
``request.start`` before calling the wrapped app and ``request.finish``
after it, so everything the app does in between (queries, renders,
outgoing calls) is attributed to the request.
"""

import fnmatch
import time
import uuid
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

from perfbeacon.core import notifications
from perfbeacon.core.models import Notification

if TYPE_CHECKING:
    from perfbeacon.agent import Agent

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]
RouteResolver = Callable[[Scope], tuple[str | None, str | None]]

DEFAULT_CONTROLLER = "ASGI"


def _header(scope: Scope, header_name: str) -> str | None:
    """Return the first value of a header (case-insensitive), if present."""
    header_bytes = header_name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for name, value in headers:
        if name.lower() == header_bytes:
            return value.decode("utf-8", errors="replace")
    return None


def _extract_request_id(scope: Scope, header_name: str = "X-Request-ID") -> str:
    """Extract the request ID from the headers or generate a UUID.

    Args:
        scope: ASGI scope dictionary containing request metadata.
        header_name: Name of the header to search for.

    Returns:
        Request ID string.
    """
    return _header(scope, header_name) or str(uuid.uuid4())


def _parse_params(scope: Scope) -> dict[str, str]:
    """Flatten the query string; the last value of a repeated key wins."""
    query_string = scope.get("query_string", b"").decode(errors="replace")
    return dict(parse_qsl(query_string, keep_blank_values=True))


def default_route(scope: Scope) -> tuple[str | None, str | None]:
    """Name a request when the host supplies no resolver.

    The controller is always ``ASGI`` and the action is the raw path, so
    exclusion patterns such as ``ASGI#/health`` work out of the box.
    """
    return DEFAULT_CONTROLLER, scope.get("path")


def _format(scope: Scope) -> str | None:
    accept = _header(scope, "accept") or ""
    if "json" in accept:
        return "json"
    if "html" in accept:
        return "html"
    return None


class PerfBeaconMiddleware:
    """ASGI middleware that emits request lifecycle notifications.

    Args:
        app: The ASGI application to wrap.
        agent: Agent whose notification hub receives the events.
        resolve_route: Maps the scope to ``(controller, action)``
            (default: :func:`default_route`).
        exclude_paths: Paths skipped entirely. Supports exact matches and
            wildcard patterns (e.g. ``"/internal/*"``).
        request_id_header: Header carrying the request ID.
    """

    def __init__(
        self,
        app: ASGIApp,
        agent: "Agent",
        resolve_route: RouteResolver | None = None,
        exclude_paths: list[str] | None = None,
        request_id_header: str = "X-Request-ID",
    ) -> None:
        self.app = app
        self.agent = agent
        self.resolve_route = resolve_route or default_route
        self.exclude_paths = exclude_paths or []
        self.request_id_header = request_id_header

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    def _request_data(self, scope: Scope) -> dict[str, Any]:
        controller, action = self.resolve_route(scope)
        return {
            "controller": controller,
            "action": action,
            "format": _format(scope),
            "method": scope.get("method"),
            "path": scope.get("path"),
            "request_id": _extract_request_id(scope, self.request_id_header),
            "params": _parse_params(scope),
            "headers": {
                name.decode("latin-1").lower(): value.decode("utf-8", errors="replace")
                for name, value in scope.get("headers", [])
            },
            "user_agent": _header(scope, "user-agent"),
            "referer": _header(scope, "referer"),
        }

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        hub = self.agent.notifications
        data = self._request_data(scope)
        hub.emit(notifications.REQUEST_START, dict(data))

        started = time.perf_counter()
        captured: dict[str, Any] = {"status": None, "exception": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        except Exception as e:
            captured["exception"] = e
            captured["status"] = 500

        finished = time.perf_counter()
        data["status"] = captured["status"]
        if captured["exception"] is not None:
            data["exception"] = captured["exception"]
        hub.publish(
            Notification(
                name=notifications.REQUEST_FINISH,
                started=started,
                finished=finished,
                payload=data,
                id=data["request_id"],
            )
        )
        if captured["exception"] is not None:
            raise captured["exception"]
