"""Per-execution event collectors."""

from perfbeacon.core.collectors.http import HttpCollector
from perfbeacon.core.collectors.memory import MemoryBuffer, MemoryCollector
from perfbeacon.core.collectors.sql import SqlCollector
from perfbeacon.core.collectors.views import ViewCollector

__all__ = [
    "HttpCollector",
    "MemoryBuffer",
    "MemoryCollector",
    "SqlCollector",
    "ViewCollector",
]
