"""DB-API 2.0 connection and cursor wrappers feeding the SQL collector.

Only ``execute`` and ``executemany`` are intercepted; every other
attribute is forwarded to the wrapped object.
"""

from collections.abc import Iterator, Sequence
from typing import Any

from perfbeacon.core.collectors import SqlCollector


class TrackedCursor:
    """Cursor wrapper timing each statement.

    Args:
        cursor: DB-API cursor.
        collector: SQL collector receiving the queries.
        connection_id: Identifier attached to every recorded query.
    """

    def __init__(self, cursor: Any, collector: SqlCollector, connection_id: Any = None) -> None:
        self._cursor = cursor
        self._collector = collector
        self._connection_id = connection_id

    def execute(self, sql: str, *args: Any) -> "TrackedCursor":
        with self._collector.track_query(sql, connection_id=self._connection_id):
            self._cursor.execute(sql, *args)
        return self

    def executemany(self, sql: str, seq_of_parameters: Sequence[Any]) -> "TrackedCursor":
        with self._collector.track_query(sql, connection_id=self._connection_id):
            self._cursor.executemany(sql, seq_of_parameters)
        return self

    def __iter__(self) -> Iterator[Any]:
        return iter(self._cursor)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cursor, name)


class TrackedConnection:
    """Connection wrapper whose cursors are tracked.

    Args:
        connection: DB-API connection.
        collector: SQL collector receiving the queries.
    """

    def __init__(self, connection: Any, collector: SqlCollector) -> None:
        self._connection = connection
        self._collector = collector
        self.connection_id = id(connection)

    def cursor(self, *args: Any, **kwargs: Any) -> TrackedCursor:
        return TrackedCursor(
            self._connection.cursor(*args, **kwargs),
            self._collector,
            self.connection_id,
        )

    def execute(self, sql: str, *args: Any) -> TrackedCursor:
        """Shortcut found on some drivers (sqlite3): run on a new cursor."""
        return self.cursor().execute(sql, *args)

    def __enter__(self) -> "TrackedConnection":
        self._connection.__enter__()
        return self

    def __exit__(self, *exc_info: Any) -> Any:
        return self._connection.__exit__(*exc_info)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._connection, name)
