"""Agent assembly.

``build_agent`` wires the notification hub, the execution context store,
every collector, the circuit breaker, the delivery client and the
lifecycle subscriber into one ``Agent``. Hosts normally build exactly one
agent per process at startup.
"""

import logging
from dataclasses import dataclass

from perfbeacon.adapters.dispatch import BackgroundDispatcher
from perfbeacon.adapters.memory_readers import ProcessMemoryReader
from perfbeacon.adapters.transport.httpx_transport import HttpxTransport
from perfbeacon.core.circuit_breaker import CircuitBreaker
from perfbeacon.core.collectors import (
    HttpCollector,
    MemoryCollector,
    SqlCollector,
    ViewCollector,
)
from perfbeacon.core.config import ApmConfig
from perfbeacon.core.context import ExecutionContextStore
from perfbeacon.core.delivery import DeliveryClient
from perfbeacon.core.notifications import Notifications
from perfbeacon.core.ports import DispatcherPort, MemoryReaderPort, TransportPort
from perfbeacon.core.sampling import Sampler
from perfbeacon.core.subscriber import Subscriber

logger = logging.getLogger(__name__)


@dataclass
class Agent:
    """Every component of a running agent."""

    config: ApmConfig
    notifications: Notifications
    store: ExecutionContextStore
    sql: SqlCollector
    views: ViewCollector
    memory: MemoryCollector
    http: HttpCollector
    client: DeliveryClient
    subscriber: Subscriber
    dispatcher: DispatcherPort
    transport: TransportPort

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        return self.client.circuit_breaker

    def close(self) -> None:
        """Stop the delivery workers without waiting for queued envelopes."""
        close = getattr(self.dispatcher, "close", None)
        if close is not None:
            close(timeout=0)
        transport_close = getattr(self.transport, "close", None)
        if transport_close is not None:
            try:
                transport_close()
            except Exception:
                logger.debug("Failed to close transport", exc_info=True)


def build_agent(
    config: ApmConfig | None = None,
    *,
    transport: TransportPort | None = None,
    dispatcher: DispatcherPort | None = None,
    reader: MemoryReaderPort | None = None,
) -> Agent:
    """Build and subscribe a complete agent.

    Args:
        config: Configuration snapshot (default: ``ApmConfig.from_env()``).
        transport: Wire client (default: httpx against ``endpoint_url``).
        dispatcher: Work runner (default: a background worker pool).
        reader: Memory reader (default: psutil-backed process reader).

    Returns:
        The wired agent, already listening on its notification hub.
    """
    config = config or ApmConfig.from_env()
    if transport is None:
        transport = HttpxTransport(
            config.endpoint_url,
            open_timeout=config.open_timeout,
            read_timeout=config.read_timeout,
        )
    if dispatcher is None:
        dispatcher = BackgroundDispatcher(
            workers=config.delivery_workers, max_pending=config.max_pending_deliveries
        )
    if reader is None:
        reader = ProcessMemoryReader()

    hub = Notifications()
    store = ExecutionContextStore()
    sql = SqlCollector(store, config)
    views = ViewCollector(store)
    memory = MemoryCollector(store, config, reader)
    http = HttpCollector(store, ignored_urls=[config.endpoint_url])
    sampler = Sampler(config)
    client = DeliveryClient(config, transport, dispatcher, sampler=sampler)
    subscriber = Subscriber(config, client, store, sql, views, memory, http, sampler)
    subscriber.subscribe(hub)
    logger.debug(
        "Agent built: enabled=%s sample_rate=%s endpoint=%s",
        config.enabled,
        config.sample_rate,
        config.endpoint_url,
    )
    return Agent(
        config=config,
        notifications=hub,
        store=store,
        sql=sql,
        views=views,
        memory=memory,
        http=http,
        client=client,
        subscriber=subscriber,
        dispatcher=dispatcher,
        transport=transport,
    )
