"""Core domain models for per-execution telemetry."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Notification:
    """A named host event carrying a data map.

    Attributes:
        name: Event name (e.g., "request.finish", "sql.query").
        started: Monotonic start time in seconds.
        finished: Monotonic finish time in seconds.
        payload: Event data supplied by the host.
        id: Unique identifier of this notification.
    """

    name: str
    started: float
    finished: float
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = ""

    @property
    def duration_ms(self) -> float:
        """Elapsed time between start and finish in milliseconds."""
        return round((self.finished - self.started) * 1000.0, 2)


@dataclass(frozen=True)
class SqlEvent:
    """A single SQL query observed during one execution.

    Attributes:
        sql: Sanitized query text.
        name: Logical name of the query (e.g., "User Load").
        duration_ms: Query duration in milliseconds.
        cached: Whether the result came from a query cache.
        connection_id: Identifier of the connection that ran the query.
        trace: Application call-site frames, outermost first.
        allocations: Allocated-block delta while the query ran, if tracked.
    """

    sql: str
    name: str | None
    duration_ms: float
    cached: bool = False
    connection_id: Any = None
    trace: tuple[str, ...] = ()
    allocations: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sql": self.sql,
            "name": self.name,
            "duration_ms": self.duration_ms,
            "cached": self.cached,
            "connection_id": self.connection_id,
            "trace": list(self.trace),
            "allocations": self.allocations,
        }


@dataclass(frozen=True)
class ViewEvent:
    """A template, partial or collection render.

    Attributes:
        identifier: Template identifier (usually a path).
        kind: One of "template", "partial" or "collection".
        duration_ms: Render duration in milliseconds.
        cache_hit: True on hit, False on miss, None when not cacheable.
    """

    identifier: str
    kind: str
    duration_ms: float
    cache_hit: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "kind": self.kind,
            "duration_ms": self.duration_ms,
            "cache_hit": self.cache_hit,
        }


@dataclass(frozen=True)
class HttpEvent:
    """An outgoing HTTP call made during one execution."""

    library: str
    method: str | None
    url: str | None
    host: str | None
    path: str | None
    status: int | None
    duration_ms: float
    exception: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "library": self.library,
            "method": self.method,
            "url": self.url,
            "host": self.host,
            "path": self.path,
            "status": self.status,
            "duration_ms": self.duration_ms,
            "exception": self.exception,
        }


@dataclass(frozen=True)
class GcStats:
    """Garbage collector and allocator counters at one instant.

    Attributes:
        count: Total collections run across all generations.
        collected: Total objects collected across all generations.
        uncollectable: Total uncollectable objects found.
        allocated_blocks: Memory blocks currently held by the allocator.
        tracked_objects: Objects pending in the collector's generations.
        allocated_objects: Running total of gc-tracked objects ever
            allocated (live plus collected).
    """

    count: int = 0
    collected: int = 0
    uncollectable: int = 0
    allocated_blocks: int = 0
    tracked_objects: int = 0
    allocated_objects: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "count": self.count,
            "collected": self.collected,
            "uncollectable": self.uncollectable,
            "allocated_blocks": self.allocated_blocks,
            "tracked_objects": self.tracked_objects,
            "allocated_objects": self.allocated_objects,
        }


@dataclass(frozen=True)
class MemorySnapshot:
    """Process memory state captured at a labelled point.

    Attributes:
        label: Snapshot label (e.g., "start", "after_import").
        memory_mb: Resident memory estimate in megabytes.
        gc: Collector counters.
        timestamp: Unix timestamp in seconds.
        object_count: Live object estimate.
        heap_blocks: Allocator block count.
    """

    label: str
    memory_mb: float
    gc: GcStats
    timestamp: float
    object_count: int = 0
    heap_blocks: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "memory_mb": self.memory_mb,
            "gc": self.gc.to_dict(),
            "timestamp": self.timestamp,
            "object_count": self.object_count,
            "heap_blocks": self.heap_blocks,
        }


@dataclass(frozen=True)
class AllocationEvent:
    """Allocations of one class reported by the host."""

    class_name: str
    count: int
    size: int

    @property
    def size_mb(self) -> float:
        return round(self.size / 1_000_000.0, 2)


@dataclass(frozen=True)
class MemoryReport:
    """Everything the memory collector gathered for one execution."""

    before: MemorySnapshot
    after: MemorySnapshot
    allocations: tuple[AllocationEvent, ...] = ()
    large_objects: tuple[AllocationEvent, ...] = ()
    snapshots: tuple[MemorySnapshot, ...] = ()

    @property
    def duration_seconds(self) -> float:
        return max(self.after.timestamp - self.before.timestamp, 0.0)


@dataclass(frozen=True)
class Envelope:
    """The wire body sent to the collector endpoint.

    Attributes:
        event: Event name.
        payload: JSON-representable payload tree.
        sent_at: ISO-8601 UTC send timestamp.
        revision: Deploy or revision identifier.
        error: Whether this envelope reports an error.
    """

    event: str
    payload: dict[str, Any]
    sent_at: str
    revision: str
    error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "payload": self.payload,
            "sent_at": self.sent_at,
            "revision": self.revision,
            "error": self.error,
        }
