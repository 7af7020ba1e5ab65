"""Tests for the notification hub."""

import pytest

from perfbeacon.core.models import Notification
from perfbeacon.core.notifications import Notifications

pytestmark = [pytest.mark.core, pytest.mark.tier(0)]


class TestSubscribe:
    """Tests for Notifications.subscribe()."""

    @pytest.mark.tra("Notifications.Subscribe")
    def test_handlers_run_in_subscription_order(self) -> None:
        """Handlers run in the order they subscribed."""
        hub = Notifications()
        calls: list[str] = []
        hub.subscribe("sql.query", lambda n: calls.append("first"))
        hub.subscribe("sql.query", lambda n: calls.append("second"))

        hub.emit("sql.query", {"sql": "SELECT 1"})

        assert calls == ["first", "second"]

    @pytest.mark.tra("Notifications.Subscribe.NonCallable")
    def test_subscribe_non_callable_raises_typeerror(self) -> None:
        """Handlers must be callable."""
        hub = Notifications()
        with pytest.raises(TypeError, match="handler must be callable"):
            hub.subscribe("sql.query", "not a handler")  # type: ignore[arg-type]

    @pytest.mark.tra("Notifications.Unsubscribe")
    def test_unsubscribe_removes_handler(self) -> None:
        """Unsubscribed handlers are no longer called."""
        hub = Notifications()
        calls: list[Notification] = []
        handler = hub.subscribe("sql.query", calls.append)

        hub.unsubscribe("sql.query", handler)
        hub.emit("sql.query")

        assert calls == []
        assert hub.handlers("sql.query") == ()

    @pytest.mark.tra("Notifications.Publish.OtherNames")
    def test_emit_only_reaches_matching_name(self) -> None:
        """Handlers only see their own event name."""
        hub = Notifications()
        calls: list[Notification] = []
        hub.subscribe("view.render", calls.append)

        hub.emit("sql.query")

        assert calls == []


class TestFailureIsolation:
    """A failing handler never affects the publisher or other handlers."""

    @pytest.mark.tra("Notifications.Publish.HandlerError")
    def test_failing_handler_is_swallowed(self) -> None:
        """A failing handler does not stop the others."""
        hub = Notifications()
        calls: list[Notification] = []

        def broken(notification: Notification) -> None:
            raise RuntimeError("collector bug")

        hub.subscribe("sql.query", broken)
        hub.subscribe("sql.query", calls.append)

        hub.emit("sql.query", {"sql": "SELECT 1"})

        assert len(calls) == 1
        assert calls[0].payload == {"sql": "SELECT 1"}


class TestInstrument:
    """Tests for Notifications.instrument()."""

    @pytest.mark.tra("Notifications.Instrument.Timing")
    def test_instrument_publishes_timed_notification(self) -> None:
        """Instrumented blocks publish one timed notification."""
        hub = Notifications()
        calls: list[Notification] = []
        hub.subscribe("job.finish", calls.append)

        with hub.instrument("job.finish", {"job_class": "Mailer"}) as payload:
            payload["extra"] = 1

        [notification] = calls
        assert notification.name == "job.finish"
        assert notification.payload == {"job_class": "Mailer", "extra": 1}
        assert notification.finished >= notification.started
        assert notification.duration_ms >= 0
        assert notification.id

    @pytest.mark.tra("Notifications.Instrument.Exception")
    def test_instrument_attaches_exception_and_reraises(self) -> None:
        """Exceptions are attached to the payload and re-raised."""
        hub = Notifications()
        calls: list[Notification] = []
        hub.subscribe("job.finish", calls.append)

        with pytest.raises(ValueError, match="bad input"):
            with hub.instrument("job.finish"):
                raise ValueError("bad input")

        [notification] = calls
        assert isinstance(notification.payload["exception"], ValueError)

    @pytest.mark.tra("Notifications.Duration")
    def test_duration_is_rounded_milliseconds(self) -> None:
        """Durations are milliseconds rounded to two places."""
        notification = Notification(name="x", started=1.0, finished=1.1503456)
        assert notification.duration_ms == 150.35
