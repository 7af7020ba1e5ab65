"""Memory collector.

Brackets each execution with a start and finish snapshot, keeps optional
interior snapshots, and records host-reported allocations. Allocations
above ``large_object_threshold`` bytes are also kept in a separate
large-object list.
"""

import logging
import random
import time
from dataclasses import dataclass, field

from perfbeacon.core.config import ApmConfig
from perfbeacon.core.context import NOT_TRACKING, ExecutionContextStore
from perfbeacon.core.models import (
    AllocationEvent,
    MemoryReport,
    MemorySnapshot,
    Notification,
)
from perfbeacon.core.ports import MemoryReaderPort

logger = logging.getLogger(__name__)

COLLECTOR_NAME = "memory"
MAX_SNAPSHOTS = 100


@dataclass
class MemoryBuffer:
    """Mutable per-execution memory state."""

    before: MemorySnapshot | None = None
    allocations: list[AllocationEvent] = field(default_factory=list)
    large_objects: list[AllocationEvent] = field(default_factory=list)
    snapshots: list[MemorySnapshot] = field(default_factory=list)


class MemoryCollector:
    """Collects memory snapshots and allocations for the active execution.

    Args:
        store: Execution context store.
        config: Configuration snapshot.
        reader: Source of memory readings.
        rng: Random source for allocation sampling.
    """

    name = COLLECTOR_NAME

    def __init__(
        self,
        store: ExecutionContextStore,
        config: ApmConfig,
        reader: MemoryReaderPort,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.reader = reader
        self._rng = rng or random.Random()
        store.register(self.name, MemoryBuffer)

    def snapshot(self, label: str) -> MemorySnapshot:
        """Take a labelled snapshot from the memory reader."""
        return MemorySnapshot(
            label=label,
            memory_mb=self.reader.memory_mb(),
            gc=self.reader.gc_stats(),
            timestamp=time.time(),
            object_count=self.reader.object_count(),
            heap_blocks=self.reader.heap_blocks(),
        )

    def _buffer(self) -> MemoryBuffer | None:
        if not self.config.memory_tracking_enabled:
            return None
        buffer = self.store.get(self.name)
        if buffer is NOT_TRACKING:
            return None
        return buffer

    def begin(self) -> None:
        """Record the start snapshot for the active execution."""
        try:
            buffer = self._buffer()
            if buffer is not None:
                buffer.before = self.snapshot("start")
        except Exception:
            logger.debug("Failed to take start snapshot", exc_info=True)

    def take_snapshot(self, label: str | None = None) -> None:
        """Record an interior snapshot; at most MAX_SNAPSHOTS are kept."""
        try:
            buffer = self._buffer()
            if buffer is None or len(buffer.snapshots) >= MAX_SNAPSHOTS:
                return
            buffer.snapshots.append(
                self.snapshot(label or f"snapshot_{int(time.time())}")
            )
        except Exception:
            logger.debug("Failed to take memory snapshot", exc_info=True)

    def record_allocation(self, class_name: str | None, count: int, size: int) -> None:
        """Record allocations of one class reported by the host.

        Only applies when allocation tracking is enabled. Allocations are
        sampled at ``allocation_sampling_rate`` and capped per execution.
        """
        try:
            if not self.config.allocation_tracking_enabled:
                return
            buffer = self._buffer()
            if buffer is None:
                return
            if len(buffer.allocations) >= self.config.max_allocations_per_execution:
                return
            if self._rng.random() >= self.config.allocation_sampling_rate:
                return
            allocation = AllocationEvent(
                class_name=class_name or "Unknown", count=int(count), size=int(size)
            )
            if allocation.size > self.config.large_object_threshold:
                buffer.large_objects.append(allocation)
            buffer.allocations.append(allocation)
        except Exception:
            logger.debug("Dropping allocation event", exc_info=True)

    def on_event(self, notification: Notification) -> None:
        """Handle a ``memory.allocation`` notification."""
        data = notification.payload
        if data.get("count") is None or data.get("size") is None:
            return
        self.record_allocation(data.get("class_name"), data["count"], data["size"])

    def drain(self) -> MemoryReport | None:
        """Record the finish snapshot and return the execution's report.

        Returns:
            The report, or None when nothing was tracked.
        """
        try:
            buffer = self._buffer()
            if buffer is None:
                return None
            self.store.replace(self.name, MemoryBuffer())
            after = self.snapshot("finish")
            before = buffer.before or after
            return MemoryReport(
                before=before,
                after=after,
                allocations=tuple(buffer.allocations),
                large_objects=tuple(buffer.large_objects),
                snapshots=tuple(buffer.snapshots),
            )
        except Exception:
            logger.debug("Failed to drain memory events", exc_info=True)
            return None

    def current_usage(self) -> dict[str, object]:
        """Lightweight process readings attached to every payload."""
        try:
            return {
                "memory_usage_mb": self.reader.memory_mb(),
                "gc_stats": self.reader.gc_stats().to_dict(),
            }
        except Exception:
            logger.debug("Failed to read memory usage", exc_info=True)
            return {"memory_usage_mb": 0, "gc_stats": {}}
