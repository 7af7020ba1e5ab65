"""Lifecycle orchestration: from host notifications to delivered payloads.

On an execution-start notification the subscriber checks the exclusion
rules and starts the execution context (plus the memory start snapshot).
On the matching finish notification it drains every collector, runs the
aggregators, assembles one payload and hands it to the delivery client.

A failed execution produces two envelopes: the regular metrics payload
(marked ``failed`` and carrying the exception fields) and a separate
error payload named after the exception class. Error payloads bypass
sampling; metrics payloads share one sampling decision per execution.
"""

import functools
import logging
import os
import socket
import time
import uuid
from collections.abc import Mapping
from typing import Any

from perfbeacon.core import aggregation, notifications
from perfbeacon.core.collectors import (
    HttpCollector,
    MemoryCollector,
    SqlCollector,
    ViewCollector,
)
from perfbeacon.core.config import ApmConfig
from perfbeacon.core.context import ExecutionContextStore
from perfbeacon.core.delivery import DeliveryClient
from perfbeacon.core.exclusions import excluded_controller, excluded_job
from perfbeacon.core.models import Notification
from perfbeacon.core.notifications import Notifications
from perfbeacon.core.payload import (
    exception_fields,
    extract_user_email,
    filter_params,
    safe_arguments,
    safe_user_agent,
    sequence_to_dicts,
)
from perfbeacon.core.sampling import Sampler

logger = logging.getLogger(__name__)

UNCAUGHT_EXCEPTION_EVENT = "exception.uncaught"


@functools.cache
def _hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return ""


def _class_name(obj: Any) -> str | None:
    if obj is None:
        return None
    if isinstance(obj, str):
        return obj
    cls = obj if isinstance(obj, type) else type(obj)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


class Subscriber:
    """Turns lifecycle notifications into delivered telemetry.

    Args:
        config: Configuration snapshot.
        client: Delivery client.
        store: Execution context store shared with the collectors.
        sql: SQL collector.
        views: View collector.
        memory: Memory collector.
        http: Outgoing HTTP collector.
        sampler: Sampling policy (default: bound to ``config``).
    """

    def __init__(
        self,
        config: ApmConfig,
        client: DeliveryClient,
        store: ExecutionContextStore,
        sql: SqlCollector,
        views: ViewCollector,
        memory: MemoryCollector,
        http: HttpCollector,
        sampler: Sampler | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.store = store
        self.sql = sql
        self.views = views
        self.memory = memory
        self.http = http
        self.sampler = sampler or client.sampler

    def subscribe(self, hub: Notifications) -> None:
        """Register every lifecycle and collector handler on a hub."""
        hub.subscribe(notifications.REQUEST_START, self.on_request_start)
        hub.subscribe(notifications.REQUEST_FINISH, self.on_request_finish)
        hub.subscribe(notifications.JOB_START, self.on_job_start)
        hub.subscribe(notifications.JOB_FINISH, self.on_job_finish)
        hub.subscribe(notifications.EXCEPTION_UNCAUGHT, self.on_uncaught_exception)
        hub.subscribe(notifications.SQL_QUERY, self.sql.on_event)
        hub.subscribe(notifications.VIEW_RENDER, self.views.on_event)
        hub.subscribe(notifications.HTTP_REQUEST, self.http.on_event)
        hub.subscribe(notifications.MEMORY_ALLOCATION, self.memory.on_event)

    # === Start ===

    def _excluded_request(self, data: Mapping[str, Any]) -> bool:
        return excluded_controller(
            self.config, data.get("controller"), data.get("action")
        )

    def _start(self, execution_id: object) -> None:
        self.store.start(str(execution_id or uuid.uuid4().hex))
        self.memory.begin()

    def on_request_start(self, notification: Notification) -> None:
        try:
            data = notification.payload
            if self._excluded_request(data):
                return
            self._start(data.get("request_id") or notification.id)
        except Exception:
            logger.debug("Failed to start request tracking", exc_info=True)

    def on_job_start(self, notification: Notification) -> None:
        try:
            data = notification.payload
            if excluded_job(self.config, _class_name(data.get("job_class"))):
                return
            self._start(data.get("job_id") or notification.id)
        except Exception:
            logger.debug("Failed to start job tracking", exc_info=True)

    # === Finish ===

    def _collect(self) -> dict[str, Any]:
        """Drain every collector and aggregate the results."""
        sql_events = self.sql.drain()
        view_events = self.views.drain()
        http_events = self.http.drain()
        report = self.memory.drain()
        ctx = self.store.current()
        if ctx is not None:
            self.store.stop(ctx.execution_id)

        sections: dict[str, Any] = {
            "sql_count": len(sql_events),
            "sql_queries": sequence_to_dicts(sql_events),
            "sql_summary": aggregation.summarize_sql(sql_events),
            "view_events": sequence_to_dicts(view_events),
            "view_summary": aggregation.summarize_views(view_events),
            "http_outgoing": sequence_to_dicts(http_events),
            "http_summary": aggregation.summarize_http(http_events),
        }
        if self.config.memory_tracking_enabled:
            sections.update(self.memory.current_usage())
        if report is not None:
            sections["memory_performance"] = aggregation.analyze_memory(report)
        return sections

    def _duration_ms(self, notification: Notification) -> float:
        explicit = notification.payload.get("duration_ms")
        if isinstance(explicit, (int, float)) and not isinstance(explicit, bool):
            return round(float(explicit), 2)
        return notification.duration_ms

    def _common(self) -> dict[str, Any]:
        return {
            "host": _hostname(),
            "environment": self.config.resolved_environment,
            "pid": os.getpid(),
        }

    def on_request_finish(self, notification: Notification) -> None:
        try:
            data = notification.payload
            if self._excluded_request(data):
                return
            sections = self._collect()
            payload = self.build_request_payload(notification, sections)
            self._deliver(
                notification.name,
                payload,
                data.get("exception"),
                self._request_metadata(data),
            )
        except Exception:
            logger.debug("Failed to report request", exc_info=True)

    def on_job_finish(self, notification: Notification) -> None:
        try:
            data = notification.payload
            if excluded_job(self.config, _class_name(data.get("job_class"))):
                return
            sections = self._collect()
            payload = self.build_job_payload(notification, sections)
            self._deliver(
                notification.name,
                payload,
                data.get("exception"),
                self._job_metadata(data),
            )
        except Exception:
            logger.debug("Failed to report job", exc_info=True)

    def build_request_payload(
        self, notification: Notification, sections: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Assemble the metrics payload of one HTTP request."""
        data = notification.payload
        sql_total = sections.get("sql_summary", {}).get("total_duration_ms", 0.0)
        view_total = sections.get("view_summary", {}).get("total_duration_ms", 0.0)
        payload: dict[str, Any] = {
            "controller": data.get("controller"),
            "action": data.get("action"),
            "format": data.get("format"),
            "method": data.get("method"),
            "path": str(data.get("path") or ""),
            "status": data.get("status"),
            "duration_ms": self._duration_ms(notification),
            "view_runtime_ms": data.get("view_runtime_ms", view_total),
            "db_runtime_ms": data.get("db_runtime_ms", sql_total),
            "request_id": data.get("request_id"),
            "params": filter_params(data.get("params")),
            "user_agent": safe_user_agent(data.get("user_agent")),
            **self._common(),
            **sections,
        }
        if self.config.user_email_tracking_enabled:
            try:
                payload["user_email"] = extract_user_email(
                    data, self.config.user_email_extractor
                )
            except Exception:
                logger.debug("User email extraction failed", exc_info=True)
                payload["user_email"] = None
        exc = data.get("exception")
        if isinstance(exc, BaseException):
            payload.update(exception_fields(exc))
        return payload

    def build_job_payload(
        self, notification: Notification, sections: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Assemble the metrics payload of one background job."""
        data = notification.payload
        exc = data.get("exception")
        payload: dict[str, Any] = {
            "job_class": _class_name(data.get("job_class")),
            "job_id": data.get("job_id"),
            "queue_name": data.get("queue_name"),
            "arguments": safe_arguments(data.get("arguments")),
            "duration_ms": self._duration_ms(notification),
            "status": "failed" if exc is not None else "completed",
            **self._common(),
            **sections,
        }
        if isinstance(exc, BaseException):
            payload.update(exception_fields(exc))
        return payload

    # === Errors ===

    def _request_metadata(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "request": {
                "method": data.get("method"),
                "path": data.get("path"),
                "controller": data.get("controller"),
                "action": data.get("action"),
                "request_id": data.get("request_id"),
                "user_agent": safe_user_agent(data.get("user_agent")),
                "referer": str(data.get("referer") or "")[:500],
                "params": filter_params(data.get("params")),
            }
        }

    def _job_metadata(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "job": {
                "job_class": _class_name(data.get("job_class")),
                "job_id": data.get("job_id"),
                "queue_name": data.get("queue_name"),
                "arguments": safe_arguments(data.get("arguments")),
            }
        }

    def build_error_payload(
        self, exc: BaseException, metadata: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Assemble the error payload reported alongside a failure."""
        return {
            **exception_fields(exc),
            "occurred_at": int(time.time()),
            **metadata,
            **self._common(),
        }

    def _deliver(
        self,
        event_name: str,
        payload: dict[str, Any],
        exc: object,
        metadata: Mapping[str, Any],
    ) -> None:
        sampled = self.sampler.should_sample()
        self.client.post_metric(event_name, payload, sampled=sampled)
        if isinstance(exc, BaseException):
            self.client.post_metric(
                type(exc).__qualname__ or UNCAUGHT_EXCEPTION_EVENT,
                self.build_error_payload(exc, metadata),
                error=True,
            )

    def on_uncaught_exception(self, notification: Notification) -> None:
        """Report an exception that escaped the host outside any request."""
        try:
            data = notification.payload
            exc = data.get("exception")
            if not isinstance(exc, BaseException):
                return
            self.client.post_metric(
                type(exc).__qualname__ or UNCAUGHT_EXCEPTION_EVENT,
                self.build_error_payload(exc, self._request_metadata(data)),
                error=True,
            )
        except Exception:
            logger.debug("Failed to report uncaught exception", exc_info=True)
