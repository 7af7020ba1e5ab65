"""Fire-and-forget delivery of telemetry envelopes.

``post_metric`` runs on the host's request path, so it only checks its
preconditions, builds the envelope and hands the network call to a
dispatcher. The outcome of that call (2xx, other status, timeout or
connection error) is fed back into the circuit breaker from the worker.
Nothing raised here ever reaches the caller.
"""

import logging
from collections.abc import Mapping
from typing import Any

from perfbeacon.core.circuit_breaker import CircuitBreaker
from perfbeacon.core.config import ApmConfig, resolve_revision
from perfbeacon.core.models import Envelope
from perfbeacon.core.payload import build_envelope, encode_envelope
from perfbeacon.core.ports import DispatcherPort, TransportPort
from perfbeacon.core.sampling import Sampler

logger = logging.getLogger(__name__)


def is_success_status(status: int) -> bool:
    return 200 <= status < 300


class DeliveryClient:
    """Sends telemetry payloads to the collector endpoint.

    Args:
        config: Configuration snapshot.
        transport: Performs the POST and returns the status code.
        dispatcher: Runs the POST off the caller's path.
        circuit_breaker: Shared breaker; created from the config when
            omitted and the breaker is enabled.
        sampler: Sampling policy used when the caller did not decide.
    """

    def __init__(
        self,
        config: ApmConfig,
        transport: TransportPort,
        dispatcher: DispatcherPort,
        circuit_breaker: CircuitBreaker | None = None,
        sampler: Sampler | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.dispatcher = dispatcher
        if circuit_breaker is None and config.circuit_breaker_enabled:
            circuit_breaker = CircuitBreaker(
                failure_threshold=config.circuit_breaker_failure_threshold,
                recovery_timeout=config.circuit_breaker_recovery_timeout,
                retry_timeout=config.circuit_breaker_retry_timeout,
            )
        self.circuit_breaker = circuit_breaker if config.circuit_breaker_enabled else None
        self.sampler = sampler or Sampler(config)
        self.revision = resolve_revision(config)

    def post_metric(
        self,
        event_name: str,
        payload: Mapping[str, Any],
        *,
        error: bool = False,
        sampled: bool | None = None,
    ) -> bool:
        """Queue one payload for delivery.

        Preconditions, checked in order: telemetry enabled, sampled (error
        payloads are never sampled out), API key present, circuit breaker
        admits the request.

        Args:
            event_name: Event name placed in the envelope.
            payload: JSON-representable payload tree.
            error: Marks the envelope as an error report.
            sampled: The execution's sampling decision; decided here when
                None.

        Returns:
            True if the envelope was handed to the dispatcher.
        """
        try:
            return self._post(event_name, payload, error, sampled)
        except Exception:
            logger.debug("Failed to post %s", event_name, exc_info=True)
            return False

    def _post(
        self,
        event_name: str,
        payload: Mapping[str, Any],
        error: bool,
        sampled: bool | None,
    ) -> bool:
        if not self.config.enabled:
            logger.debug("Telemetry disabled; skipping %s", event_name)
            return False
        if not error:
            if sampled is None:
                sampled = self.sampler.should_sample()
            if not sampled:
                logger.debug("Execution not sampled; skipping %s", event_name)
                return False
        if not self.config.has_api_key:
            logger.debug("Missing api_key; skipping %s", event_name)
            return False
        envelope = build_envelope(event_name, payload, self.revision, error=error)
        breaker = self.circuit_breaker
        if breaker is not None and not breaker.allow_request():
            logger.debug("Circuit open; skipping %s", event_name)
            return False

        try:
            submitted = self.dispatcher.submit(lambda: self._transmit(envelope))
        except Exception:
            if breaker is not None:
                breaker.release_trial()
            raise
        if not submitted:
            logger.debug("Delivery queue full; dropping %s", event_name)
            if breaker is not None:
                breaker.release_trial()
        return submitted

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def _transmit(self, envelope: Envelope) -> None:
        """Perform the POST and record its outcome; runs on a worker."""
        breaker = self.circuit_breaker
        try:
            status = self.transport.send(encode_envelope(envelope), self.headers())
        except Exception as exc:
            logger.debug("Delivery of %s failed: %s", envelope.event, exc)
            if breaker is not None:
                breaker.on_failure()
            return
        if is_success_status(status):
            if breaker is not None:
                breaker.on_success()
            return
        logger.debug("Delivery of %s rejected with status %s", envelope.event, status)
        if breaker is not None:
            breaker.on_failure()
