"""Payload shaping: size bounds, secret filtering and envelope encoding.

``bound_payload`` is applied to every payload right before transmission.
It drops sensitive keys, redacts secret-looking assignments in strings and
truncates strings, sequences and mappings so one execution can never ship
an unbounded document.
"""

import datetime
import json
import traceback
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from perfbeacon.core.models import Envelope
from perfbeacon.core.sanitize import is_sensitive_key, redact_secrets, truncate_text

MAX_STRING_LENGTH = 1000
MAX_ARRAY_ITEMS = 20
MAX_MAP_KEYS = 30
MAX_DEPTH = 8
MAX_BACKTRACE_LINES = 50
MAX_MESSAGE_LENGTH = 1000
MAX_USER_AGENT_LENGTH = 200
MAX_ARGUMENT_LENGTH = 200
MAX_JOB_ARGUMENTS = 10
MAX_ARGUMENT_KEYS = 20
MAX_ARGUMENT_ITEMS = 5

# Array limits for fields that legitimately carry more than MAX_ARRAY_ITEMS
DEFAULT_ARRAY_LIMITS: Mapping[str, int] = {
    "sql_queries": 500,
    "view_events": 100,
    "http_outgoing": 100,
    "backtrace": MAX_BACKTRACE_LINES,
    "trace": 50,
}


@dataclass(frozen=True)
class PayloadLimits:
    """Size bounds applied by ``bound_payload``.

    Attributes:
        max_string: Longest string leaf kept (an ellipsis is appended).
        max_items: Default longest sequence kept.
        max_keys: Most keys kept per mapping.
        max_depth: Deepest nesting kept; deeper values become strings.
        array_limits: Per-key overrides of ``max_items``.
    """

    max_string: int = MAX_STRING_LENGTH
    max_items: int = MAX_ARRAY_ITEMS
    max_keys: int = MAX_MAP_KEYS
    max_depth: int = MAX_DEPTH
    array_limits: Mapping[str, int] = field(
        default_factory=lambda: dict(DEFAULT_ARRAY_LIMITS)
    )


DEFAULT_LIMITS = PayloadLimits()


def bound_payload(
    value: Any,
    limits: PayloadLimits = DEFAULT_LIMITS,
    *,
    _key: str | None = None,
    _depth: int = 0,
) -> Any:
    """Return a bounded, JSON-representable copy of a payload tree.

    Sensitive keys are dropped before any truncation happens. The key
    limit applies to nested mappings only; the top level is the payload
    schema itself.
    """
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return truncate_text(redact_secrets(value), limits.max_string)
    if _depth >= limits.max_depth:
        return truncate_text(redact_secrets(str(value)), limits.max_string)
    if isinstance(value, Mapping):
        bounded: dict[str, Any] = {}
        for key, item in value.items():
            if is_sensitive_key(key):
                continue
            if _depth > 0 and len(bounded) >= limits.max_keys:
                break
            name = str(key)
            bounded[name] = bound_payload(item, limits, _key=name, _depth=_depth + 1)
        return bounded
    if isinstance(value, (list, tuple, set, frozenset)):
        limit = limits.array_limits.get(_key or "", limits.max_items)
        items = list(value)[:limit]
        return [bound_payload(item, limits, _key=_key, _depth=_depth + 1) for item in items]
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return bound_payload(value.to_dict(), limits, _key=_key, _depth=_depth)
    return truncate_text(redact_secrets(str(value)), limits.max_string)


def filter_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Drop sensitive keys from request parameters."""
    if not params:
        return {}
    return {str(k): v for k, v in params.items() if not is_sensitive_key(k)}


def safe_user_agent(user_agent: object) -> str:
    if user_agent is None:
        return ""
    return str(user_agent)[:MAX_USER_AGENT_LENGTH]


def _safe_argument(arg: Any) -> Any:
    if isinstance(arg, str):
        return truncate_text(arg, MAX_ARGUMENT_LENGTH)
    if isinstance(arg, Mapping):
        filtered = {k: v for k, v in arg.items() if not is_sensitive_key(k)}
        return dict(list(filtered.items())[:MAX_ARGUMENT_KEYS])
    if isinstance(arg, (list, tuple)):
        return list(arg[:MAX_ARGUMENT_ITEMS])
    if arg is None or isinstance(arg, (bool, int, float)):
        return arg
    return truncate_text(str(arg), MAX_ARGUMENT_LENGTH)


def safe_arguments(arguments: object) -> list[Any]:
    """Sanitize background job arguments.

    Keeps at most ten arguments: long strings are cut to 200 characters
    plus an ellipsis, mappings lose sensitive keys and keep at most 20
    keys, sequences keep five items, other objects become short strings.
    """
    if not isinstance(arguments, (list, tuple)):
        return []
    return [_safe_argument(arg) for arg in arguments[:MAX_JOB_ARGUMENTS]]


def format_backtrace(exc: BaseException, limit: int = MAX_BACKTRACE_LINES) -> list[str]:
    """Format an exception's traceback as ``path:line:in func`` lines."""
    frames = traceback.extract_tb(exc.__traceback__)
    lines = [f"{f.filename}:{f.lineno}:in {f.name}" for f in frames]
    return lines[-limit:]


def exception_fields(exc: BaseException) -> dict[str, Any]:
    """Describe an exception with class, truncated message and backtrace."""
    return {
        "exception_class": type(exc).__qualname__,
        "message": str(exc)[:MAX_MESSAGE_LENGTH],
        "backtrace": format_backtrace(exc),
    }


def _attr_or_key(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def extract_user_email(
    request_data: Mapping[str, Any],
    extractor: Callable[[Mapping[str, Any]], str | None] | None = None,
) -> str | None:
    """Find the requesting user's email in request data.

    A custom extractor wins. Otherwise ``current_user.email``, then params
    ``user_email``/``email``, then the ``X-User-Email`` header, then session
    ``user_email`` are consulted.
    """
    if extractor is not None:
        return extractor(request_data)

    user = request_data.get("current_user")
    if user is not None:
        email = _attr_or_key(user, "email")
        if email:
            return str(email)

    params = request_data.get("params")
    if isinstance(params, Mapping):
        email = params.get("user_email") or params.get("email")
        if email:
            return str(email)

    headers = request_data.get("headers")
    if isinstance(headers, Mapping):
        for name in ("X-User-Email", "x-user-email", "HTTP_X_USER_EMAIL"):
            if headers.get(name):
                return str(headers[name])

    session = request_data.get("session")
    if isinstance(session, Mapping) and session.get("user_email"):
        return str(session["user_email"])
    return None


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a ``Z`` suffix."""
    now = datetime.datetime.now(datetime.UTC).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


def build_envelope(
    event: str,
    payload: Mapping[str, Any],
    revision: str,
    error: bool = False,
    limits: PayloadLimits = DEFAULT_LIMITS,
) -> Envelope:
    """Bound a payload and wrap it with send metadata."""
    bounded = bound_payload(dict(payload), limits)
    return Envelope(
        event=event,
        payload=bounded,
        sent_at=utc_now_iso(),
        revision=revision,
        error=error,
    )


def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize an envelope to a compact JSON body."""
    return json.dumps(envelope.to_dict(), separators=(",", ":"), default=str).encode()


def sequence_to_dicts(events: Sequence[Any]) -> list[dict[str, Any]]:
    return [e.to_dict() for e in events]
