"""In-process publish/subscribe hub for host lifecycle events.

Hosts (or the thin adapters in ``perfbeacon.adapters``) publish named
notifications carrying a data map; collectors and the orchestrator
subscribe to them. A failing handler never affects the publisher or the
other handlers.
"""

import logging
import time
import uuid
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

from perfbeacon.core.models import Notification

logger = logging.getLogger(__name__)

REQUEST_START = "request.start"
REQUEST_FINISH = "request.finish"
JOB_START = "job.start"
JOB_FINISH = "job.finish"
SQL_QUERY = "sql.query"
VIEW_RENDER = "view.render"
HTTP_REQUEST = "http.request"
MEMORY_ALLOCATION = "memory.allocation"
EXCEPTION_UNCAUGHT = "exception.uncaught"

Handler = Callable[[Notification], None]


class Notifications:
    """Registry of handlers keyed by notification name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> Handler:
        """Register a handler for a notification name.

        Args:
            name: Notification name (e.g., "sql.query").
            handler: Callable receiving the Notification.

        Returns:
            The handler, so it can be passed to ``unsubscribe`` later.

        Raises:
            TypeError: If handler is not callable.
        """
        if not callable(handler):
            raise TypeError("handler must be callable")
        self._handlers.setdefault(name, []).append(handler)
        return handler

    def unsubscribe(self, name: str, handler: Handler | None = None) -> None:
        """Remove one handler, or every handler when none is given."""
        if handler is None:
            self._handlers.pop(name, None)
            return
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers(self, name: str) -> tuple[Handler, ...]:
        return tuple(self._handlers.get(name, ()))

    def publish(self, notification: Notification) -> None:
        """Deliver an already-timed notification to its handlers."""
        for handler in self.handlers(notification.name):
            try:
                handler(notification)
            except Exception:
                logger.debug(
                    "Handler %r failed for %s",
                    handler,
                    notification.name,
                    exc_info=True,
                )

    def emit(self, name: str, payload: dict[str, Any] | None = None) -> None:
        """Publish an instantaneous notification (zero duration)."""
        now = time.perf_counter()
        self.publish(
            Notification(
                name=name,
                started=now,
                finished=now,
                payload=payload if payload is not None else {},
                id=uuid.uuid4().hex,
            )
        )

    @contextmanager
    def instrument(
        self, name: str, payload: dict[str, Any] | None = None
    ) -> Generator[dict[str, Any]]:
        """Time a block and publish it as one notification.

        The yielded payload dict may be extended inside the block. If the
        block raises, the exception is attached under ``exception`` before
        publishing and then re-raised unchanged.

        Args:
            name: Notification name.
            payload: Initial data map.

        Yields:
            The mutable payload dict.
        """
        data: dict[str, Any] = payload if payload is not None else {}
        started = time.perf_counter()
        try:
            yield data
        except Exception as exc:
            data.setdefault("exception", exc)
            raise
        finally:
            finished = time.perf_counter()
            self.publish(
                Notification(
                    name=name,
                    started=started,
                    finished=finished,
                    payload=data,
                    id=uuid.uuid4().hex,
                )
            )
