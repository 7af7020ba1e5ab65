"""View rendering collector."""

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from perfbeacon.core.context import NOT_TRACKING, ExecutionContextStore
from perfbeacon.core.models import Notification, ViewEvent

logger = logging.getLogger(__name__)

COLLECTOR_NAME = "views"
RENDER_KINDS = ("template", "partial", "collection")
MAX_VIEW_EVENTS = 1000


def _normalize_kind(kind: object) -> str:
    text = str(kind or "template").lower()
    return text if text in RENDER_KINDS else "template"


def _normalize_cache_hit(value: object) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in ("hit", "true"):
            return True
        if lowered in ("miss", "false"):
            return False
        return None
    return bool(value)


class ViewCollector:
    """Collects template, partial and collection renders."""

    name = COLLECTOR_NAME

    def __init__(self, store: ExecutionContextStore, max_events: int = MAX_VIEW_EVENTS) -> None:
        self.store = store
        self.max_events = max_events
        store.register(self.name, list)

    def record(
        self,
        identifier: str,
        duration_ms: float,
        kind: str = "template",
        cache_hit: Any = None,
    ) -> None:
        """Append one render; renders past ``max_events`` are ignored."""
        try:
            buffer = self.store.get(self.name)
            if buffer is NOT_TRACKING or len(buffer) >= self.max_events:
                return
            buffer.append(
                ViewEvent(
                    identifier=str(identifier),
                    kind=_normalize_kind(kind),
                    duration_ms=round(float(duration_ms), 2),
                    cache_hit=_normalize_cache_hit(cache_hit),
                )
            )
        except Exception:
            logger.debug("Dropping view event", exc_info=True)

    def on_event(self, notification: Notification) -> None:
        """Handle a ``view.render`` notification."""
        data = notification.payload
        self.record(
            identifier=data.get("identifier", "unknown"),
            duration_ms=data.get("duration_ms", notification.duration_ms),
            kind=data.get("kind", "template"),
            cache_hit=data.get("cache_hit"),
        )

    @contextmanager
    def track_render(self, identifier: str, kind: str = "template") -> Generator[dict[str, Any]]:
        """Time a render performed by a template engine.

        Yields:
            A dict where the block may set ``cache_hit``.
        """
        info: dict[str, Any] = {"cache_hit": None}
        started = time.perf_counter()
        try:
            yield info
        finally:
            self.record(
                identifier,
                (time.perf_counter() - started) * 1000.0,
                kind=kind,
                cache_hit=info.get("cache_hit"),
            )

    def drain(self) -> list[ViewEvent]:
        """Return and clear the active execution's renders."""
        previous = self.store.replace(self.name, [])
        if previous is NOT_TRACKING:
            return []
        return list(previous)
