"""Reduction of drained event streams into compact summaries.

Every function here is pure: it takes drained events and returns a plain
mapping. Orderings that rank events ("slowest", "top allocating") are
stable, so ties keep the order in which events were observed.
"""

from collections.abc import Sequence
from typing import Any

from perfbeacon.core.models import (
    AllocationEvent,
    GcStats,
    HttpEvent,
    MemoryReport,
    MemorySnapshot,
    SqlEvent,
    ViewEvent,
)

TOP_SLOWEST = 5
TOP_ALLOCATING_CLASSES = 10
CACHEABLE_KINDS = ("partial", "collection")


def _mb(size: float) -> float:
    return round(size / 1_000_000.0, 2)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def summarize_sql(events: Sequence[SqlEvent], top: int = TOP_SLOWEST) -> dict[str, Any]:
    """Summarize SQL queries: counts, total time and slowest statements."""
    total = sum(e.duration_ms for e in events)
    slowest = sorted(events, key=lambda e: -e.duration_ms)[:top]
    return {
        "count": len(events),
        "cached_count": sum(1 for e in events if e.cached),
        "total_duration_ms": round(total, 2),
        "slowest": [{"sql": e.sql, "duration_ms": e.duration_ms} for e in slowest],
    }


def cache_hit_rate(events: Sequence[ViewEvent], kind: str) -> float:
    """Hit rate of one render kind: hits / (hits + misses), 0.0 when empty.

    Renders without a cache outcome (``cache_hit is None``) are ignored.
    """
    hits = sum(1 for e in events if e.kind == kind and e.cache_hit is True)
    misses = sum(1 for e in events if e.kind == kind and e.cache_hit is False)
    return round(_ratio(hits, hits + misses), 4)


def summarize_views(
    events: Sequence[ViewEvent], top: int = TOP_SLOWEST
) -> dict[str, Any]:
    """Summarize view renders.

    Args:
        events: Drained view events in observation order.
        top: Number of slowest renders to report.

    Returns:
        Mapping with total_renders, total_duration_ms, average_duration_ms,
        by_kind, slowest and cache_hit_rates (partial and collection).
    """
    total = sum(e.duration_ms for e in events)
    by_kind: dict[str, dict[str, Any]] = {}
    for event in events:
        bucket = by_kind.setdefault(event.kind, {"count": 0, "total_duration_ms": 0.0})
        bucket["count"] += 1
        bucket["total_duration_ms"] += event.duration_ms
    for bucket in by_kind.values():
        bucket["total_duration_ms"] = round(bucket["total_duration_ms"], 2)

    slowest = sorted(events, key=lambda e: -e.duration_ms)[:top]
    return {
        "total_renders": len(events),
        "total_duration_ms": round(total, 2),
        "average_duration_ms": round(_ratio(total, len(events)), 2),
        "by_kind": by_kind,
        "slowest": [e.to_dict() for e in slowest],
        "cache_hit_rates": {kind: cache_hit_rate(events, kind) for kind in CACHEABLE_KINDS},
    }


def summarize_http(events: Sequence[HttpEvent]) -> dict[str, Any]:
    """Summarize outgoing HTTP calls: totals, failures and per-host counts."""
    by_host: dict[str, int] = {}
    for event in events:
        host = event.host or "unknown"
        by_host[host] = by_host.get(host, 0) + 1
    failed = sum(
        1
        for e in events
        if e.exception is not None or (e.status is not None and e.status >= 400)
    )
    return {
        "count": len(events),
        "failed_count": failed,
        "total_duration_ms": round(sum(e.duration_ms for e in events), 2),
        "by_host": by_host,
    }


def top_allocating_classes(
    allocations: Sequence[AllocationEvent], top: int = TOP_ALLOCATING_CLASSES
) -> list[dict[str, Any]]:
    """Group allocations by class and rank by total bytes, descending."""
    grouped: dict[str, dict[str, int]] = {}
    for allocation in allocations:
        bucket = grouped.setdefault(allocation.class_name, {"count": 0, "size": 0})
        bucket["count"] += allocation.count
        bucket["size"] += allocation.size
    ranked = sorted(grouped.items(), key=lambda item: -item[1]["size"])[:top]
    return [
        {
            "class_name": class_name,
            "count": data["count"],
            "size": data["size"],
            "size_mb": _mb(data["size"]),
        }
        for class_name, data in ranked
    ]


def analyze_large_objects(large_objects: Sequence[AllocationEvent]) -> dict[str, Any]:
    """Count and size large allocations, with per-class counts."""
    if not large_objects:
        return {}
    by_class: dict[str, int] = {}
    for obj in large_objects:
        by_class[obj.class_name] = by_class.get(obj.class_name, 0) + 1
    return {
        "count": len(large_objects),
        "total_size_mb": round(sum(obj.size_mb for obj in large_objects), 2),
        "largest_object_mb": max(obj.size_mb for obj in large_objects),
        "by_class": by_class,
    }


def memory_growth_rates(snapshots: Sequence[MemorySnapshot]) -> list[float]:
    """Memory change per second between consecutive snapshots.

    A pair recorded at the same instant contributes a rate of 0.
    """
    rates: list[float] = []
    for previous, current in zip(snapshots, snapshots[1:]):
        elapsed = current.timestamp - previous.timestamp
        growth = current.memory_mb - previous.memory_mb
        rates.append(growth / elapsed if elapsed > 0 else 0.0)
    return rates


def analyze_memory_trends(snapshots: Sequence[MemorySnapshot]) -> dict[str, Any]:
    """Describe how memory moved across interior snapshots."""
    if len(snapshots) < 2:
        return {}
    rates = memory_growth_rates(snapshots)
    values = [s.memory_mb for s in snapshots]
    return {
        "average_growth_rate_mb_per_second": sum(rates) / len(rates),
        "max_growth_rate_mb_per_second": max(rates),
        "memory_volatility": sum(abs(r) for r in rates) / len(rates),
        "peak_memory_mb": max(values),
        "min_memory_mb": min(values),
    }


def gc_efficiency(before: GcStats | None, after: GcStats | None) -> dict[str, Any]:
    """Collector activity between two counter readings."""
    if before is None or after is None:
        return {}
    gc_count_increase = after.count - before.count
    return {
        "gc_count_increase": gc_count_increase,
        "heap_blocks_increase": after.allocated_blocks - before.allocated_blocks,
        "objects_allocated": after.allocated_objects - before.allocated_objects,
        "gc_frequency": _ratio(gc_count_increase, max(after.count, 1)),
    }


def analyze_memory(report: MemoryReport) -> dict[str, Any]:
    """Summarize one execution's memory behaviour.

    Args:
        report: Start/finish snapshots plus allocations, large objects and
            interior snapshots recorded during the execution.

    Returns:
        Mapping with growth, allocation totals and rates, top allocating
        classes, large-object analysis, trends and GC efficiency.
    """
    allocations = report.allocations
    total_allocations = sum(a.count for a in allocations)
    total_size = sum(a.size for a in allocations)
    duration = report.duration_seconds
    return {
        "memory_growth_mb": round(report.after.memory_mb - report.before.memory_mb, 2),
        "total_allocations": total_allocations,
        "total_allocated_size": total_size,
        "total_allocated_size_mb": _mb(total_size),
        "allocations_per_second": (
            round(total_allocations / duration, 2) if duration > 0 else 0
        ),
        "top_allocating_classes": top_allocating_classes(allocations),
        "large_objects": analyze_large_objects(report.large_objects),
        "memory_trends": analyze_memory_trends(report.snapshots),
        "gc_efficiency": gc_efficiency(report.before.gc, report.after.gc),
        "memory_snapshots_count": len(report.snapshots),
    }
