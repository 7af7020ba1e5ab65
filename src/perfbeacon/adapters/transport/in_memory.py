"""In-memory transport that records what would have been sent."""

import json
import threading
from collections.abc import Mapping
from typing import Any


class RecordingTransport:
    """Records each POST and answers with a scripted status.

    Args:
        status: Status code returned for every send.
        error: Exception raised instead of answering, if set.
    """

    def __init__(self, status: int = 202, error: Exception | None = None) -> None:
        self.status = status
        self.error = error
        self.sent: list[tuple[bytes, dict[str, str]]] = []
        self._lock = threading.Lock()

    def send(self, body: bytes, headers: Mapping[str, str]) -> int:
        with self._lock:
            self.sent.append((body, dict(headers)))
        if self.error is not None:
            raise self.error
        return self.status

    @property
    def envelopes(self) -> list[dict[str, Any]]:
        """Decoded bodies of every recorded send."""
        with self._lock:
            return [json.loads(body) for body, _headers in self.sent]

    def clear(self) -> None:
        with self._lock:
            self.sent.clear()
