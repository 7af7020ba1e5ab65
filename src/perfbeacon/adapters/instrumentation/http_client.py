"""httpx transports that record outgoing calls in the HTTP collector.

Wrap the transport of any client the host uses::

    client = httpx.Client(transport=InstrumentedTransport(agent.http))

Calls to the agent's own delivery endpoint are filtered by the collector.
"""

import httpx

from perfbeacon.core.collectors import HttpCollector

LIBRARY_NAME = "httpx"


class InstrumentedTransport(httpx.BaseTransport):
    """Synchronous httpx transport wrapper.

    Args:
        collector: HTTP collector receiving the calls.
        transport: Wrapped transport (default: ``httpx.HTTPTransport()``).
    """

    def __init__(
        self, collector: HttpCollector, transport: httpx.BaseTransport | None = None
    ) -> None:
        self._collector = collector
        self._transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        with self._collector.track(
            request.method, str(request.url), library=LIBRARY_NAME
        ) as info:
            response = self._transport.handle_request(request)
            info["status"] = response.status_code
        return response

    def close(self) -> None:
        self._transport.close()


class AsyncInstrumentedTransport(httpx.AsyncBaseTransport):
    """Asynchronous httpx transport wrapper.

    Args:
        collector: HTTP collector receiving the calls.
        transport: Wrapped transport (default: ``httpx.AsyncHTTPTransport()``).
    """

    def __init__(
        self,
        collector: HttpCollector,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._collector = collector
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        with self._collector.track(
            request.method, str(request.url), library=LIBRARY_NAME
        ) as info:
            response = await self._transport.handle_async_request(request)
            info["status"] = response.status_code
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()
