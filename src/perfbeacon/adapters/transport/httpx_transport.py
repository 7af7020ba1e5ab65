"""HTTP transport built on httpx."""

from collections.abc import Mapping

import httpx


class HttpxTransport:
    """Posts envelopes to the collector endpoint with a shared httpx client.

    Args:
        endpoint_url: Collector endpoint.
        open_timeout: Connect timeout in seconds.
        read_timeout: Read (and write/pool) timeout in seconds.
        client: Preconfigured client, mainly for tests using
            ``httpx.MockTransport``.
    """

    def __init__(
        self,
        endpoint_url: str,
        open_timeout: float = 1.0,
        read_timeout: float = 1.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(read_timeout, connect=open_timeout)
        )

    def send(self, body: bytes, headers: Mapping[str, str]) -> int:
        """POST the body and return the status code.

        Raises:
            httpx.HTTPError: On timeouts and connection failures.
        """
        response = self._client.post(self.endpoint_url, content=body, headers=dict(headers))
        return response.status_code

    def close(self) -> None:
        self._client.close()
