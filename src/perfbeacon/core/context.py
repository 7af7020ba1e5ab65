"""Per-execution telemetry scope.

Each logical execution (one HTTP request or one background job) owns an
``ExecutionContext`` holding one buffer per registered collector. The
active context is tracked in a ``contextvars.ContextVar``, so concurrent
threads and asyncio tasks never observe each other's buffers, and a
reused worker thread starts clean once the previous execution stopped.

Re-entrant starts are not stacked: a nested ``start`` replaces the active
context.
"""

import contextvars
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class _NotTracking:
    """Sentinel returned when no execution is active."""

    _instance: "_NotTracking | None" = None

    def __new__(cls) -> "_NotTracking":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_TRACKING"


NOT_TRACKING = _NotTracking()


@dataclass
class ExecutionContext:
    """Telemetry state of one execution.

    Attributes:
        execution_id: Correlation key of the execution.
        started_at: Unix timestamp at start.
        started_monotonic: Monotonic clock reading at start.
        buffers: Collector name to that collector's mutable buffer.
    """

    execution_id: str
    started_at: float = field(default_factory=time.time)
    started_monotonic: float = field(default_factory=time.perf_counter)
    buffers: dict[str, Any] = field(default_factory=dict)


class ExecutionContextStore:
    """Starts, exposes and stops per-execution collector buffers."""

    def __init__(self, name: str = "perfbeacon_execution") -> None:
        self._var: contextvars.ContextVar[ExecutionContext | None] = (
            contextvars.ContextVar(name, default=None)
        )
        self._factories: dict[str, Callable[[], Any]] = {}

    def register(self, name: str, factory: Callable[[], Any]) -> None:
        """Declare a collector buffer created fresh for every execution.

        Args:
            name: Collector name.
            factory: Zero-argument callable producing an empty buffer.
        """
        if not callable(factory):
            raise TypeError("factory must be callable")
        self._factories[name] = factory

    @property
    def registered(self) -> tuple[str, ...]:
        return tuple(self._factories)

    def start(self, execution_id: str) -> ExecutionContext | None:
        """Begin tracking an execution in the current thread or task.

        Any context already active here is replaced.

        Returns:
            The new context, or None if a buffer factory failed.
        """
        try:
            ctx = ExecutionContext(execution_id=str(execution_id))
            for name, factory in self._factories.items():
                ctx.buffers[name] = factory()
            self._var.set(ctx)
            return ctx
        except Exception:
            logger.debug("Failed to start execution %s", execution_id, exc_info=True)
            return None

    def current(self) -> ExecutionContext | None:
        """Return the active context, or None outside an execution."""
        return self._var.get()

    @property
    def tracking(self) -> bool:
        return self._var.get() is not None

    def get(self, name: str) -> Any:
        """Return a collector's buffer for the active execution.

        Returns:
            The buffer, or NOT_TRACKING if no execution is active or the
            collector was not registered when it started.
        """
        ctx = self._var.get()
        if ctx is None:
            return NOT_TRACKING
        return ctx.buffers.get(name, NOT_TRACKING)

    def replace(self, name: str, buffer: Any) -> Any:
        """Swap a collector's buffer and return the previous one.

        Returns:
            The previous buffer, or NOT_TRACKING outside an execution.
        """
        ctx = self._var.get()
        if ctx is None or name not in ctx.buffers:
            return NOT_TRACKING
        previous = ctx.buffers[name]
        ctx.buffers[name] = buffer
        return previous

    def stop(self, execution_id: str) -> dict[str, Any]:
        """Finish an execution and hand back every buffer.

        Args:
            execution_id: Correlation key passed to ``start``.

        Returns:
            Collector name to buffer. Empty if nothing is active or a
            different execution is active (which is left untouched).
        """
        ctx = self._var.get()
        if ctx is None:
            return {}
        if ctx.execution_id != str(execution_id):
            logger.debug(
                "Ignoring stop for %s while %s is active",
                execution_id,
                ctx.execution_id,
            )
            return {}
        self._var.set(None)
        return ctx.buffers
