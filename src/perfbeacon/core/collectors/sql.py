"""SQL query collector.

Queries are appended to a bounded per-execution deque: once
``max_sql_queries`` is reached the oldest query is evicted. Each query
carries its sanitized text and the application frames that issued it.
"""

import logging
import sys
import time
import traceback
from collections import deque
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from perfbeacon.core.config import ApmConfig
from perfbeacon.core.context import NOT_TRACKING, ExecutionContextStore
from perfbeacon.core.models import Notification, SqlEvent
from perfbeacon.core.sanitize import filter_app_frames, sanitize_sql, scrub_frame

logger = logging.getLogger(__name__)

COLLECTOR_NAME = "sql"
IGNORED_QUERY_NAMES = frozenset({"SCHEMA"})

_PACKAGE_DIR = str(Path(__file__).resolve().parents[2])


def capture_stack(skip: int = 0) -> list[str]:
    """Render the caller's frames innermost first as ``path:line:in func``.

    Source lines are never read; only frame metadata is formatted.

    Args:
        skip: Extra frames to drop above the caller.
    """
    frames = traceback.StackSummary.extract(
        traceback.walk_stack(sys._getframe(skip + 1)), lookup_lines=False
    )
    return [f"{f.filename}:{f.lineno}:in {f.name}" for f in frames]


class SqlCollector:
    """Collects SQL queries into the active execution.

    Args:
        store: Execution context store holding the per-execution buffer.
        config: Configuration snapshot (buffer size, app root, allocation
            tracking).
    """

    name = COLLECTOR_NAME

    def __init__(self, store: ExecutionContextStore, config: ApmConfig) -> None:
        self.store = store
        self.config = config
        self._app_root = config.resolved_app_root
        store.register(self.name, self._new_buffer)

    def _new_buffer(self) -> deque[SqlEvent]:
        return deque(maxlen=self.config.max_sql_queries)

    def _trace(
        self, captured: Sequence[str] | None, explicit: Sequence[str] | None = None
    ) -> tuple[str, ...]:
        frames: list[str] = []
        if captured is None:
            captured = capture_stack(1)
        frames.extend(captured)
        if explicit:
            frames.extend(f for f in explicit if isinstance(f, str))
        return tuple(
            filter_app_frames(frames, self._app_root, excluded=(_PACKAGE_DIR,))
        )

    def append(self, event: SqlEvent) -> None:
        """Append an already-built event to the active execution."""
        buffer = self.store.get(self.name)
        if buffer is NOT_TRACKING:
            return
        buffer.append(event)

    def record(
        self,
        sql: str,
        duration_ms: float,
        name: str | None = None,
        cached: bool = False,
        connection_id: Any = None,
        backtrace: Sequence[str] | None = None,
        allocations: int | None = None,
        captured_stack: Sequence[str] | None = None,
    ) -> None:
        """Normalize and append one query; never raises."""
        try:
            if name in IGNORED_QUERY_NAMES:
                return
            if not self.store.tracking:
                return
            event = SqlEvent(
                sql=str(sanitize_sql(sql)),
                name=name,
                duration_ms=round(float(duration_ms), 2),
                cached=bool(cached),
                connection_id=connection_id,
                trace=self._trace(captured_stack, backtrace),
                allocations=allocations,
            )
            self.append(event)
        except Exception:
            logger.debug("Dropping SQL event", exc_info=True)

    def on_event(self, notification: Notification) -> None:
        """Handle a ``sql.query`` notification.

        Recognised payload keys: sql, name, cached, connection_id,
        backtrace, allocations, plus filename/line/method describing the
        call site when the host knows it.
        """
        try:
            data = notification.payload
            explicit: list[str] = []
            if data.get("filename") and data.get("line") and data.get("method"):
                explicit.append(
                    scrub_frame(f"{data['filename']}:{data['line']}:in {data['method']}")
                )
            backtrace = data.get("backtrace")
            if isinstance(backtrace, (list, tuple)):
                explicit.extend(backtrace)
            self.record(
                sql=data.get("sql", ""),
                duration_ms=data.get("duration_ms", notification.duration_ms),
                name=data.get("name"),
                cached=data.get("cached", False),
                connection_id=data.get("connection_id"),
                backtrace=explicit,
                allocations=data.get("allocations"),
            )
        except Exception:
            logger.debug("Dropping SQL notification", exc_info=True)

    @contextmanager
    def track_query(
        self, sql: str, name: str | None = None, connection_id: Any = None
    ) -> Generator[None]:
        """Time a query executed directly by a database driver.

        The query is recorded even when the block raises; the exception
        propagates unchanged.
        """
        if not self.store.tracking:
            yield
            return
        captured = capture_stack(2)
        blocks_before = (
            sys.getallocatedblocks() if self.config.allocation_tracking_enabled else None
        )
        started = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - started) * 1000.0
            allocations = None
            if blocks_before is not None:
                allocations = sys.getallocatedblocks() - blocks_before
            self.record(
                sql,
                duration_ms,
                name=name,
                connection_id=connection_id,
                allocations=allocations,
                captured_stack=captured,
            )

    def drain(self) -> list[SqlEvent]:
        """Return and clear the active execution's queries."""
        try:
            previous = self.store.replace(self.name, self._new_buffer())
            if previous is NOT_TRACKING:
                return []
            return list(previous)
        except Exception:
            logger.debug("Failed to drain SQL events", exc_info=True)
            return []
