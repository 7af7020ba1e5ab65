"""Outgoing HTTP call collector.

Calls aimed at the agent's own delivery endpoint are never recorded, so
that shipping telemetry cannot generate more telemetry.
"""

import logging
import time
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import Any
from urllib.parse import urlsplit

from perfbeacon.core.context import NOT_TRACKING, ExecutionContextStore
from perfbeacon.core.models import HttpEvent, Notification

logger = logging.getLogger(__name__)

COLLECTOR_NAME = "http"
MAX_HTTP_EVENTS = 500

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _origin(url: str) -> tuple[str, str, int | None, str]:
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    try:
        port = parts.port or _DEFAULT_PORTS.get(scheme)
    except ValueError:
        port = None
    return scheme, (parts.hostname or "").lower(), port, parts.path or "/"


class HttpCollector:
    """Collects outgoing HTTP calls made during the active execution.

    Args:
        store: Execution context store.
        ignored_urls: Endpoints whose calls are never recorded (typically
            the delivery endpoint). A call is ignored when scheme, host and
            port match and its path starts with the endpoint's path.
    """

    name = COLLECTOR_NAME

    def __init__(
        self,
        store: ExecutionContextStore,
        ignored_urls: Iterable[str] = (),
        max_events: int = MAX_HTTP_EVENTS,
    ) -> None:
        self.store = store
        self.max_events = max_events
        self._ignored = [_origin(url) for url in ignored_urls if url]
        store.register(self.name, list)

    def is_ignored(self, url: str | None) -> bool:
        """Return True if a URL targets an ignored endpoint."""
        if not url:
            return False
        scheme, host, port, path = _origin(url)
        for i_scheme, i_host, i_port, i_path in self._ignored:
            if (scheme, host, port) == (i_scheme, i_host, i_port) and path.startswith(
                i_path.rstrip("/") or "/"
            ):
                return True
        return False

    def record(
        self,
        method: str | None,
        url: str | None,
        status: int | None,
        duration_ms: float,
        library: str = "unknown",
        exception: str | None = None,
    ) -> None:
        """Append one call to the active execution; never raises."""
        try:
            buffer = self.store.get(self.name)
            if buffer is NOT_TRACKING or len(buffer) >= self.max_events:
                return
            if self.is_ignored(url):
                return
            parts = urlsplit(url) if url else None
            buffer.append(
                HttpEvent(
                    library=library,
                    method=method.upper() if method else None,
                    url=url,
                    host=parts.hostname if parts else None,
                    path=(parts.path or "/") if parts else None,
                    status=int(status) if status is not None else None,
                    duration_ms=round(float(duration_ms), 2),
                    exception=exception,
                )
            )
        except Exception:
            logger.debug("Dropping HTTP event", exc_info=True)

    def on_event(self, notification: Notification) -> None:
        """Handle an ``http.request`` notification."""
        data = notification.payload
        exc = data.get("exception")
        self.record(
            method=data.get("method"),
            url=data.get("url"),
            status=data.get("status"),
            duration_ms=data.get("duration_ms", notification.duration_ms),
            library=data.get("library", "unknown"),
            exception=type(exc).__qualname__ if isinstance(exc, BaseException) else exc,
        )

    @contextmanager
    def track(
        self, method: str, url: str, library: str = "unknown"
    ) -> Generator[dict[str, Any]]:
        """Time an outgoing call made by any HTTP client.

        Yields:
            A dict where the block should set ``status``. If the block
            raises, the exception class is recorded and the exception
            propagates unchanged.
        """
        info: dict[str, Any] = {"status": None}
        started = time.perf_counter()
        error: str | None = None
        try:
            yield info
        except BaseException as exc:
            error = type(exc).__qualname__
            raise
        finally:
            self.record(
                method,
                url,
                info.get("status"),
                (time.perf_counter() - started) * 1000.0,
                library=library,
                exception=error,
            )

    def drain(self) -> list[HttpEvent]:
        """Return and clear the active execution's calls."""
        previous = self.store.replace(self.name, [])
        if previous is NOT_TRACKING:
            return []
        return list(previous)
