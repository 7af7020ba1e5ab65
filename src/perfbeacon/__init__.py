"""perfbeacon - in-process performance telemetry agent.

Collects SQL queries, view renders, outgoing HTTP calls and memory
readings per request or background job and ships one bounded JSON
payload per execution to a collector endpoint.
"""

from perfbeacon.adapters.logging import enable_debug_logging, get_logger
from perfbeacon.agent import Agent, build_agent
from perfbeacon.core.circuit_breaker import CIRCUIT_OPEN, CircuitBreaker, CircuitState
from perfbeacon.core.config import ApmConfig
from perfbeacon.core.context import NOT_TRACKING, ExecutionContextStore
from perfbeacon.core.models import Notification
from perfbeacon.core.notifications import Notifications

__all__ = [
    "CIRCUIT_OPEN",
    "NOT_TRACKING",
    "Agent",
    "ApmConfig",
    "CircuitBreaker",
    "CircuitState",
    "ExecutionContextStore",
    "Notification",
    "Notifications",
    "build_agent",
    "enable_debug_logging",
    "get_logger",
]
