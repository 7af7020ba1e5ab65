"""Memory readers: where process memory readings come from."""

import gc
import sys
import threading
import time
from collections.abc import Callable
from typing import TypeVar

import psutil

from perfbeacon.core.models import GcStats

T = TypeVar("T")

RSS_CACHE_SECONDS = 1.0


def read_gc_stats(live_objects: int = 0) -> GcStats:
    """Sum the collector's per-generation statistics.

    Args:
        live_objects: Current count of gc-tracked objects. Added to the
            collected total to give the running allocation total.
    """
    generations = gc.get_stats()
    collected = sum(g.get("collected", 0) for g in generations)
    return GcStats(
        count=sum(g.get("collections", 0) for g in generations),
        collected=collected,
        uncollectable=sum(g.get("uncollectable", 0) for g in generations),
        allocated_blocks=sys.getallocatedblocks(),
        tracked_objects=sum(gc.get_count()),
        allocated_objects=live_objects + collected,
    )


class ProcessMemoryReader:
    """Reads the current process through psutil and the gc module.

    Resident memory and the live object count are each cached for
    RSS_CACHE_SECONDS, so bracketing every request with two readings stays
    cheap. The object count walks every gc-tracked object when refreshed.

    Args:
        clock: Monotonic clock used for the cache.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._process = psutil.Process()
        self._clock = clock
        self._lock = threading.Lock()
        self._cached_mb = 0.0
        self._cached_at: float | None = None
        self._cached_objects = 0
        self._objects_at: float | None = None

    def memory_mb(self) -> float:
        with self._lock:
            now = self._clock()
            if self._cached_at is None or now - self._cached_at >= RSS_CACHE_SECONDS:
                try:
                    rss = self._process.memory_info().rss
                except psutil.Error:
                    rss = 0
                self._cached_mb = round(rss / 1024 / 1024, 2)
                self._cached_at = now
            return self._cached_mb

    def gc_stats(self) -> GcStats:
        return read_gc_stats(self.object_count())

    def object_count(self) -> int:
        with self._lock:
            now = self._clock()
            if self._objects_at is None or now - self._objects_at >= RSS_CACHE_SECONDS:
                self._cached_objects = len(gc.get_objects())
                self._objects_at = now
            return self._cached_objects

    def heap_blocks(self) -> int:
        return sys.getallocatedblocks()


class StaticMemoryReader:
    """Reader returning scripted readings; each call pops the next value.

    The last value of each series repeats once the series is exhausted.
    """

    def __init__(
        self,
        memory: list[float] | None = None,
        objects: list[int] | None = None,
        heap_blocks: list[int] | None = None,
        gc: list[GcStats] | None = None,
    ) -> None:
        self._memory = list(memory or [0.0])
        self._objects = list(objects or [0])
        self._heap = list(heap_blocks or [0])
        self._gc = list(gc or [GcStats()])

    @staticmethod
    def _next(series: list[T]) -> T:
        return series.pop(0) if len(series) > 1 else series[0]

    def memory_mb(self) -> float:
        return self._next(self._memory)

    def gc_stats(self) -> GcStats:
        return self._next(self._gc)

    def object_count(self) -> int:
        return self._next(self._objects)

    def heap_blocks(self) -> int:
        return self._next(self._heap)
