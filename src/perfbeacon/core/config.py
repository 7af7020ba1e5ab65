"""Immutable configuration snapshot for the telemetry agent.

The configuration is resolved once at startup (explicitly, or from the
environment via ``ApmConfig.from_env``) and handed to every component.
Reconfiguring means building a new snapshot with ``dataclasses.replace``.
"""

import functools
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

DEFAULT_ENDPOINT_URL = "https://deadbro.aberatii.com/apm/v1/metrics"
DEFAULT_ENDPOINT_PATH = "/apm/v1/metrics"
DEFAULT_SAMPLE_RATE = 100

ENV_PREFIX = "PERFBEACON_"

# Checked in order after PERFBEACON_REVISION
_REVISION_ENV_VARS = ("REVISION", "GIT_COMMIT", "SOURCE_VERSION", "HEROKU_SLUG_COMMIT")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _present(value: object) -> bool:
    return value is not None and value != ""


def _split_patterns(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _join_url(base: str, path: str) -> str:
    base = base.rstrip("/")
    if not path.startswith("/"):
        path = f"/{path}"
    return base + path


def parse_sample_rate(raw: str | None) -> int:
    """Parse a sample rate from text.

    Args:
        raw: Raw value, typically from an environment variable.

    Returns:
        The rate as an int in [0, 100], or DEFAULT_SAMPLE_RATE if the value
        is missing, not an integer, or out of range.
    """
    if raw is None:
        return DEFAULT_SAMPLE_RATE
    try:
        value = int(raw.strip())
    except ValueError:
        return DEFAULT_SAMPLE_RATE
    if 0 <= value <= 100:
        return value
    return DEFAULT_SAMPLE_RATE


@dataclass(frozen=True)
class ApmConfig:
    """Resolved agent configuration.

    Attributes:
        enabled: Master switch; when False nothing is transmitted.
        api_key: Bearer token for the collector endpoint.
        endpoint_url: Collector endpoint receiving POSTed envelopes.
        open_timeout: Connect timeout in seconds.
        read_timeout: Read timeout in seconds.
        sample_rate: Percentage of executions to transmit (0-100).
        exclude_controllers: Patterns matched against "Controller" or
            "Controller#action" names to skip.
        include_controllers: When non-empty, only matching controllers are
            tracked.
        exclude_jobs: Job class patterns to skip.
        include_jobs: When non-empty, only matching job classes are tracked.
        circuit_breaker_enabled: Whether delivery is gated by the breaker.
        circuit_breaker_failure_threshold: Consecutive failures that open it.
        circuit_breaker_recovery_timeout: Seconds before a trial is allowed.
        circuit_breaker_retry_timeout: Secondary periodic-retry window.
        memory_tracking_enabled: Record start/finish memory snapshots.
        allocation_tracking_enabled: Record host-reported allocations and
            per-query allocation deltas.
        allocation_sampling_rate: Fraction (0.0-1.0) of allocations kept.
        max_allocations_per_execution: Cap on allocation events.
        large_object_threshold: Bytes above which an allocation is flagged.
        max_sql_queries: SQL buffer size; oldest queries are evicted.
        revision: Deploy or revision identifier.
        environment: Deployment environment name.
        app_root: Directory whose frames count as application code.
        user_email_tracking_enabled: Attach the requesting user's email.
        user_email_extractor: Custom callable extracting the email.
        delivery_workers: Background delivery threads.
        max_pending_deliveries: Envelopes allowed to wait for a worker.
    """

    enabled: bool = True
    api_key: str | None = None
    endpoint_url: str = DEFAULT_ENDPOINT_URL
    open_timeout: float = 1.0
    read_timeout: float = 1.0
    sample_rate: int = DEFAULT_SAMPLE_RATE
    exclude_controllers: tuple[str, ...] = ()
    include_controllers: tuple[str, ...] = ()
    exclude_jobs: tuple[str, ...] = ()
    include_jobs: tuple[str, ...] = ()
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 3
    circuit_breaker_recovery_timeout: float = 60.0
    circuit_breaker_retry_timeout: float = 300.0
    memory_tracking_enabled: bool = True
    allocation_tracking_enabled: bool = False
    allocation_sampling_rate: float = 0.1
    max_allocations_per_execution: int = 1000
    large_object_threshold: int = 1_000_000
    max_sql_queries: int = 500
    revision: str | None = None
    environment: str | None = None
    app_root: str | None = None
    user_email_tracking_enabled: bool = False
    user_email_extractor: Callable[[Mapping[str, Any]], str | None] | None = None
    delivery_workers: int = 2
    max_pending_deliveries: int = 100

    def __post_init__(self) -> None:
        if (
            isinstance(self.sample_rate, bool)
            or not isinstance(self.sample_rate, int)
            or not 0 <= self.sample_rate <= 100
        ):
            raise ValueError("sample_rate must be an integer between 0 and 100")
        if self.circuit_breaker_failure_threshold < 1:
            raise ValueError("circuit_breaker_failure_threshold must be positive")
        for name in (
            "open_timeout",
            "read_timeout",
            "circuit_breaker_recovery_timeout",
            "circuit_breaker_retry_timeout",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if not 0.0 <= self.allocation_sampling_rate <= 1.0:
            raise ValueError("allocation_sampling_rate must be between 0.0 and 1.0")
        if self.max_sql_queries < 1:
            raise ValueError("max_sql_queries must be positive")
        if self.delivery_workers < 1 or self.max_pending_deliveries < 1:
            raise ValueError("delivery pool sizes must be positive")

    @property
    def has_api_key(self) -> bool:
        return _present(self.api_key)

    @property
    def resolved_app_root(self) -> str:
        return self.app_root or os.getcwd()

    @property
    def resolved_environment(self) -> str:
        if self.environment:
            return self.environment
        return os.environ.get("APP_ENV") or os.environ.get("ENV") or "development"

    def with_overrides(self, **changes: Any) -> "ApmConfig":
        """Return a new snapshot with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> "ApmConfig":
        """Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ).
            **overrides: Explicit field values; these win over the environment.

        Returns:
            A validated ApmConfig.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        enabled = env.get(f"{ENV_PREFIX}ENABLED")
        if enabled is not None:
            values["enabled"] = enabled.strip().lower() in _TRUE_VALUES

        api_key = env.get(f"{ENV_PREFIX}API_KEY")
        if _present(api_key):
            values["api_key"] = api_key

        endpoint_url = env.get(f"{ENV_PREFIX}ENDPOINT_URL")
        host = env.get(f"{ENV_PREFIX}HOST")
        if _present(endpoint_url):
            values["endpoint_url"] = endpoint_url
        elif host:
            values["endpoint_url"] = _join_url(host, DEFAULT_ENDPOINT_PATH)

        values["sample_rate"] = parse_sample_rate(env.get(f"{ENV_PREFIX}SAMPLE_RATE"))

        environment = env.get(f"{ENV_PREFIX}ENV")
        if _present(environment):
            values["environment"] = environment

        revision = env.get(f"{ENV_PREFIX}REVISION")
        if _present(revision):
            values["revision"] = revision

        excluded_controllers = _split_patterns(
            env.get(f"{ENV_PREFIX}EXCLUDE_CONTROLLERS")
        )
        if excluded_controllers:
            values["exclude_controllers"] = excluded_controllers
        excluded_jobs = _split_patterns(env.get(f"{ENV_PREFIX}EXCLUDE_JOBS"))
        if excluded_jobs:
            values["exclude_jobs"] = excluded_jobs

        values.update(overrides)
        return cls(**values)


@functools.cache
def _revision_from_process() -> str:
    for name in (f"{ENV_PREFIX}REVISION", *_REVISION_ENV_VARS):
        value = os.environ.get(name)
        if _present(value):
            return str(value).strip()
    revision_file = Path.cwd() / "REVISION"
    try:
        content = revision_file.read_text(encoding="utf-8").strip()
    except OSError:
        content = ""
    return content or "unknown"


def resolve_revision(config: ApmConfig) -> str:
    """Return the deploy identifier, resolving the process-wide one once."""
    if _present(config.revision):
        return str(config.revision)
    return _revision_from_process()
