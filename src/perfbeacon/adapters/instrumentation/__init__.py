"""Wrappers that feed host-side calls into the collectors."""

from perfbeacon.adapters.instrumentation.dbapi import TrackedConnection, TrackedCursor
from perfbeacon.adapters.instrumentation.http_client import (
    AsyncInstrumentedTransport,
    InstrumentedTransport,
)

__all__ = [
    "AsyncInstrumentedTransport",
    "InstrumentedTransport",
    "TrackedConnection",
    "TrackedCursor",
]
