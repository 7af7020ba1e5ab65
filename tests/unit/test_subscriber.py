"""Tests for the lifecycle subscriber (request/job orchestration)."""

import pytest

from perfbeacon.core import notifications
from perfbeacon.core.models import Notification

pytestmark = [pytest.mark.integration, pytest.mark.tier(1)]


def _finish(name: str, payload: dict, duration_s: float = 0.15025) -> Notification:
    return Notification(name=name, started=10.0, finished=10.0 + duration_s, payload=payload)


class TestRequestLifecycle:
    """request.start / request.finish."""

    @pytest.mark.tra("Subscriber.Request.Payload")
    def test_request_payload(self, agent, transport) -> None:
        """A finished request produces one complete metrics payload."""
        hub = agent.notifications
        request = {
            "controller": "UsersController",
            "action": "show",
            "method": "GET",
            "path": "/users/1",
            "request_id": "req-1",
            "params": {"id": "1", "password": "hunter2"},
            "user_agent": "curl/8.0",
        }
        hub.emit(notifications.REQUEST_START, dict(request))
        hub.emit(notifications.SQL_QUERY, {"sql": "SELECT * FROM users", "duration_ms": 12.5})
        hub.emit(notifications.VIEW_RENDER, {"identifier": "users/show", "duration_ms": 3.0})
        hub.publish(_finish(notifications.REQUEST_FINISH, {**request, "status": 200}))

        [envelope] = transport.envelopes
        payload = envelope["payload"]
        assert envelope["event"] == "request.finish"
        assert envelope["error"] is False
        assert payload["controller"] == "UsersController"
        assert payload["action"] == "show"
        assert payload["status"] == 200
        assert payload["duration_ms"] == 150.25
        assert payload["params"] == {"id": "1"}
        assert payload["sql_count"] == 1
        assert payload["sql_queries"][0]["sql"] == "SELECT * FROM users"
        assert payload["sql_queries"][0]["duration_ms"] == 12.5
        assert payload["db_runtime_ms"] == 12.5
        assert payload["view_runtime_ms"] == 3.0
        assert payload["view_summary"]["total_renders"] == 1
        assert payload["environment"] == "test"
        assert payload["memory_usage_mb"] == 104.5
        assert payload["memory_performance"]["memory_growth_mb"] == 4.5
        assert "user_email" not in payload
        assert agent.store.current() is None

    @pytest.mark.tra("Subscriber.Request.ExplicitDuration")
    def test_explicit_duration_wins(self, agent, transport) -> None:
        """A host-supplied duration overrides the measured one."""
        data = {"controller": "UsersController", "action": "show", "duration_ms": 150.25}
        agent.notifications.emit(notifications.REQUEST_START, dict(data))
        agent.notifications.emit(notifications.REQUEST_FINISH, data)

        assert transport.envelopes[0]["payload"]["duration_ms"] == 150.25

    @pytest.mark.tra("Subscriber.Request.Excluded")
    def test_excluded_controller_sends_nothing(self, make_agent, transport) -> None:
        """Excluded controllers are neither tracked nor reported."""
        agent = make_agent(exclude_controllers=("HealthController",))
        data = {"controller": "HealthController", "action": "show"}

        agent.notifications.emit(notifications.REQUEST_START, dict(data))
        agent.notifications.emit(notifications.SQL_QUERY, {"sql": "SELECT 1"})
        agent.notifications.emit(notifications.REQUEST_FINISH, data)

        assert transport.sent == []
        assert agent.store.current() is None

    @pytest.mark.tra("Subscriber.Request.Failure")
    def test_failed_request_sends_metrics_and_error(self, agent, transport) -> None:
        """A failed request sends metrics and an error report."""
        try:
            raise ValueError("bad id")
        except ValueError as exc:
            error = exc
        data = {"controller": "UsersController", "action": "show", "path": "/users/x"}

        agent.notifications.emit(notifications.REQUEST_START, dict(data))
        agent.notifications.emit(
            notifications.REQUEST_FINISH, {**data, "status": 500, "exception": error}
        )

        metrics, report = transport.envelopes
        assert metrics["error"] is False
        assert metrics["payload"]["exception_class"] == "ValueError"
        assert report["error"] is True
        assert report["event"] == "ValueError"
        assert report["payload"]["message"] == "bad id"
        assert report["payload"]["request"]["path"] == "/users/x"

    @pytest.mark.tra("Subscriber.Request.ErrorsBypassSampling")
    def test_unsampled_failure_still_reports_error(self, make_agent, transport) -> None:
        """Unsampled failures still send their error report."""
        agent = make_agent(sample_rate=0)
        data = {"controller": "UsersController", "action": "show"}

        agent.notifications.emit(notifications.REQUEST_START, dict(data))
        agent.notifications.emit(
            notifications.REQUEST_FINISH, {**data, "exception": RuntimeError("boom")}
        )

        [report] = transport.envelopes
        assert report["error"] is True
        assert report["event"] == "RuntimeError"

    @pytest.mark.tra("Subscriber.Request.UserEmail")
    def test_user_email_when_enabled(self, make_agent, transport) -> None:
        """The user email is added when tracking is enabled."""
        agent = make_agent(user_email_tracking_enabled=True)
        data = {"controller": "UsersController", "params": {"email": "a@example.com"}}

        agent.notifications.emit(notifications.REQUEST_START, dict(data))
        agent.notifications.emit(notifications.REQUEST_FINISH, data)

        assert transport.envelopes[0]["payload"]["user_email"] == "a@example.com"

    @pytest.mark.tra("Subscriber.Request.Isolation")
    def test_events_outside_execution_are_dropped(self, agent, transport) -> None:
        """Events outside an execution never reach a payload."""
        agent.notifications.emit(notifications.SQL_QUERY, {"sql": "SELECT stray"})
        data = {"controller": "UsersController", "action": "index"}
        agent.notifications.emit(notifications.REQUEST_START, dict(data))
        agent.notifications.emit(notifications.REQUEST_FINISH, data)

        assert transport.envelopes[0]["payload"]["sql_count"] == 0


class TestJobLifecycle:
    """job.start / job.finish."""

    @pytest.mark.tra("Subscriber.Job.Payload")
    def test_job_payload(self, agent, transport) -> None:
        """A finished job produces one complete metrics payload."""
        data = {
            "job_class": "MailerJob",
            "job_id": "job-1",
            "queue_name": "mailers",
            "arguments": ["x" * 300, {"token": "t", "user_id": 1}],
        }
        agent.notifications.emit(notifications.JOB_START, dict(data))
        agent.notifications.emit(notifications.SQL_QUERY, {"sql": "SELECT 1"})
        agent.notifications.publish(_finish(notifications.JOB_FINISH, data))

        [envelope] = transport.envelopes
        payload = envelope["payload"]
        assert envelope["event"] == "job.finish"
        assert payload["job_class"] == "MailerJob"
        assert payload["queue_name"] == "mailers"
        assert payload["status"] == "completed"
        assert payload["arguments"] == ["x" * 200 + "...", {"user_id": 1}]
        assert payload["sql_count"] == 1

    @pytest.mark.tra("Subscriber.Job.Failure")
    def test_failed_job(self, agent, transport) -> None:
        """A failed job is marked failed and reported as an error."""
        data = {"job_class": "MailerJob", "job_id": "job-2"}
        agent.notifications.emit(notifications.JOB_START, dict(data))
        agent.notifications.emit(
            notifications.JOB_FINISH, {**data, "exception": KeyError("user")}
        )

        metrics, report = transport.envelopes
        assert metrics["payload"]["status"] == "failed"
        assert report["event"] == "KeyError"
        assert report["payload"]["job"]["job_class"] == "MailerJob"

    @pytest.mark.tra("Subscriber.Job.Excluded")
    def test_excluded_job(self, make_agent, transport) -> None:
        """Excluded jobs are neither tracked nor reported."""
        agent = make_agent(exclude_jobs=("Cleanup*",))
        data = {"job_class": "CleanupJob"}
        agent.notifications.emit(notifications.JOB_START, dict(data))
        agent.notifications.emit(notifications.JOB_FINISH, data)

        assert transport.sent == []


class TestUncaught:
    """exception.uncaught."""

    @pytest.mark.tra("Subscriber.Uncaught")
    def test_uncaught_exception_reported(self, agent, transport) -> None:
        """Uncaught exceptions are reported as errors."""
        agent.notifications.emit(
            notifications.EXCEPTION_UNCAUGHT,
            {"exception": ConnectionError("db down"), "path": "/boot"},
        )

        [report] = transport.envelopes
        assert report["error"] is True
        assert report["event"] == "ConnectionError"
        assert report["payload"]["request"]["path"] == "/boot"

    @pytest.mark.tra("Subscriber.Uncaught.NoException")
    def test_missing_exception_ignored(self, agent, transport) -> None:
        """Uncaught-exception events without an exception are ignored."""
        agent.notifications.emit(notifications.EXCEPTION_UNCAUGHT, {"path": "/boot"})
        assert transport.sent == []
