"""Tests for the memory readers."""

import pytest

from perfbeacon.adapters.memory_readers import (
    ProcessMemoryReader,
    StaticMemoryReader,
    read_gc_stats,
)
from perfbeacon.core.models import GcStats
from perfbeacon.core.ports import MemoryReaderPort

pytestmark = [pytest.mark.tier(1)]


class TestProcessMemoryReader:
    """Tests for ProcessMemoryReader."""

    @pytest.mark.tra("MemoryReaders.Process.Port")
    def test_implements_port(self) -> None:
        """The process reader satisfies the memory reader port."""
        assert isinstance(ProcessMemoryReader(), MemoryReaderPort)

    @pytest.mark.tra("MemoryReaders.Process.Rss")
    def test_reports_positive_rss(self) -> None:
        """Resident memory of the test process is positive."""
        assert ProcessMemoryReader().memory_mb() > 0

    @pytest.mark.tra("MemoryReaders.Process.Cache")
    def test_rss_is_cached_for_one_second(self, clock) -> None:
        """Resident memory is re-read only after one second."""
        reader = ProcessMemoryReader(clock=clock)
        first = reader.memory_mb()
        reader._cached_mb = -1.0

        assert reader.memory_mb() == -1.0
        clock.advance(1.0)
        assert reader.memory_mb() != -1.0
        assert first > 0

    @pytest.mark.tra("MemoryReaders.Process.Gc")
    def test_gc_stats(self) -> None:
        """Collector counters are read from the running interpreter."""
        stats = read_gc_stats()
        assert stats.allocated_blocks > 0
        assert stats.count >= 0
        assert ProcessMemoryReader().heap_blocks() > 0

    @pytest.mark.tra("MemoryReaders.Process.Objects")
    def test_object_count_is_cached_live_object_total(self, clock) -> None:
        """Live gc-tracked objects are counted and cached for one second."""
        reader = ProcessMemoryReader(clock=clock)
        first = reader.object_count()
        retained = [[] for _ in range(5000)]

        assert first > 0
        assert reader.object_count() == first
        clock.advance(1.0)
        assert reader.object_count() > first
        assert len(retained) == 5000

    @pytest.mark.tra("MemoryReaders.Process.AllocatedObjects")
    def test_allocated_objects_adds_live_and_collected(self) -> None:
        """The running allocation total is live objects plus collected ones."""
        stats = read_gc_stats(live_objects=500)
        assert stats.allocated_objects == 500 + stats.collected

    @pytest.mark.tra("MemoryReaders.Process.GcObjects")
    def test_gc_stats_use_object_count(self, clock) -> None:
        """Reader gc stats carry the cached live object count."""
        reader = ProcessMemoryReader(clock=clock)
        reader._cached_objects = 7
        reader._objects_at = clock()

        stats = reader.gc_stats()

        assert stats.allocated_objects == 7 + stats.collected


class TestStaticMemoryReader:
    """Tests for StaticMemoryReader."""

    @pytest.mark.tra("MemoryReaders.Static.Series")
    def test_series_repeat_last_value(self) -> None:
        """Scripted series repeat their last value."""
        reader = StaticMemoryReader(memory=[1.0, 2.0], gc=[GcStats(count=3)])
        assert [reader.memory_mb() for _ in range(3)] == [1.0, 2.0, 2.0]
        assert reader.gc_stats().count == 3
        assert reader.object_count() == 0
        assert isinstance(reader, MemoryReaderPort)
