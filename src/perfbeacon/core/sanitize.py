"""Redaction of secrets from SQL text, free text and stack frames."""

import re
from collections.abc import Iterable

SQL_MAX_LENGTH = 1000
ELLIPSIS = "..."
PLACEHOLDER = "?"
FILTERED_SEGMENT = "/[FILTERED]/"
MAX_TRACE_FRAMES = 50

_SENSITIVE_FIELDS = r"password|token|secret|key|ssn|credit_card"

_QUOTED_ASSIGNMENT = re.compile(
    rf"\b({_SENSITIVE_FIELDS})\s*=\s*(['\"])[^'\"]*\2", re.IGNORECASE
)
_BARE_ASSIGNMENT = re.compile(
    rf"\b({_SENSITIVE_FIELDS})\s*=\s*(?!\?)[^'\",\s)]+", re.IGNORECASE
)
_WHERE_CLAUSE = re.compile(
    r"\bWHERE\b.*?(?=\b(?:GROUP\s+BY|ORDER\s+BY|HAVING|LIMIT|OFFSET|UNION|RETURNING)\b|;|$)",
    re.IGNORECASE | re.DOTALL,
)
_QUOTED_COMPARISON = re.compile(r"(=|<>|!=|\bLIKE\b)\s*(['\"])[^'\"]*\2", re.IGNORECASE)

_SENSITIVE_PATH_SEGMENT = re.compile(r"/[^/]*(password|secret|key|token)[^/]*/", re.IGNORECASE)

_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_confirmation",
        "passwd",
        "token",
        "secret",
        "key",
        "api_key",
        "apikey",
        "access_key",
        "secret_key",
        "private_key",
        "authorization",
        "ssn",
        "credit_card",
    }
)
_SENSITIVE_KEY_FRAGMENTS = ("password", "secret", "token")


def truncate_text(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, appending an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def redact_secrets(text: str) -> str:
    """Replace values assigned to secret-looking fields with a placeholder.

    Both quoted (``password = 'x'``) and bare (``token=abc``) forms are
    rewritten to ``<field> = ?``.
    """
    text = _QUOTED_ASSIGNMENT.sub(rf"\1 = {PLACEHOLDER}", text)
    return _BARE_ASSIGNMENT.sub(rf"\1 = {PLACEHOLDER}", text)


def _redact_where(match: re.Match[str]) -> str:
    return _QUOTED_COMPARISON.sub(rf"\1 {PLACEHOLDER}", match.group(0))


def sanitize_sql(sql: object) -> object:
    """Redact secrets and literal comparison values from a SQL statement.

    Secret-named assignments are redacted everywhere; quoted literals
    compared in WHERE clauses are replaced as well. The result is capped at
    SQL_MAX_LENGTH characters plus an ellipsis.

    Args:
        sql: Query text. Non-string values are returned unchanged.

    Returns:
        The sanitized query.
    """
    if not isinstance(sql, str):
        return sql
    sql = redact_secrets(sql)
    sql = _WHERE_CLAUSE.sub(_redact_where, sql)
    return truncate_text(sql, SQL_MAX_LENGTH)


def scrub_frame(frame: str) -> str:
    """Mask path segments that mention a sensitive keyword."""
    return _SENSITIVE_PATH_SEGMENT.sub(FILTERED_SEGMENT, frame)


def is_app_frame(frame: str, app_root: str, excluded: Iterable[str] = ()) -> bool:
    """Return True if a formatted frame points at application code.

    Args:
        frame: Frame text starting with the file path.
        app_root: Directory holding the application's own code.
        excluded: Additional path fragments that disqualify a frame.
    """
    root = app_root.rstrip("/") + "/"
    if not frame.startswith(root):
        return False
    if "site-packages" in frame or "dist-packages" in frame or "/vendor/" in frame:
        return False
    return not any(fragment in frame for fragment in excluded)


def filter_app_frames(
    frames: Iterable[str],
    app_root: str,
    excluded: Iterable[str] = (),
    limit: int = MAX_TRACE_FRAMES,
) -> list[str]:
    """Keep scrubbed, de-duplicated application frames in original order."""
    excluded = tuple(excluded)
    kept: list[str] = []
    seen: set[str] = set()
    for frame in frames:
        if not isinstance(frame, str) or not is_app_frame(frame, app_root, excluded):
            continue
        scrubbed = scrub_frame(frame)
        if scrubbed in seen:
            continue
        seen.add(scrubbed)
        kept.append(scrubbed)
        if len(kept) >= limit:
            break
    return kept


def is_sensitive_key(key: object) -> bool:
    """Return True for mapping keys whose values must never be shipped."""
    name = str(key).lower()
    if name in _SENSITIVE_KEYS:
        return True
    return any(fragment in name for fragment in _SENSITIVE_KEY_FRAGMENTS)
