"""Port interfaces for the agent's outer edges.

The core depends only on these protocols; concrete implementations live in
``perfbeacon.adapters``.
"""

from collections.abc import Callable, Mapping
from typing import Protocol, runtime_checkable

from perfbeacon.core.models import GcStats


@runtime_checkable
class TransportPort(Protocol):
    """Port for sending one encoded envelope to the collector.

    Examples: HttpxTransport, RecordingTransport.
    """

    def send(self, body: bytes, headers: Mapping[str, str]) -> int:
        """POST the body and return the HTTP status code.

        Raises:
            Exception: On timeouts or connection failures.
        """
        ...


@runtime_checkable
class DispatcherPort(Protocol):
    """Port for running work off the caller's path.

    Examples: BackgroundDispatcher, InlineDispatcher.
    """

    def submit(self, fn: Callable[[], None]) -> bool:
        """Schedule ``fn``; return False if it was dropped instead."""
        ...


@runtime_checkable
class MemoryReaderPort(Protocol):
    """Port for reading process memory and collector counters.

    Examples: ProcessMemoryReader, StaticMemoryReader.
    """

    def memory_mb(self) -> float:
        """Resident memory estimate in megabytes."""
        ...

    def gc_stats(self) -> GcStats:
        """Current collector counters."""
        ...

    def object_count(self) -> int:
        """Live object estimate."""
        ...

    def heap_blocks(self) -> int:
        """Allocator block count."""
        ...
