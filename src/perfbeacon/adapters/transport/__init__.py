"""Transport adapters implementing TransportPort."""

from perfbeacon.adapters.transport.httpx_transport import HttpxTransport
from perfbeacon.adapters.transport.in_memory import RecordingTransport

__all__ = ["HttpxTransport", "RecordingTransport"]
