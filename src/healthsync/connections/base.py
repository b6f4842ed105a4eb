"""
Lazily opened ibis backends shared by the state store and the SQL adapters.
"""

from abc import ABC, abstractmethod
from typing import Any

import ibis

from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.connections.base")

ACCESS_MODES = ("read", "readwrite")


class ReadOnlyConnectionError(RuntimeError):
    """A statement that modifies data was sent through a read-only connection."""


def execute_sql(connection: ibis.BaseBackend, query: str) -> None:
    """
    Run a statement that returns no rows (DDL, INSERT, UPDATE, DELETE).

    Queries that return rows go through ``connection.sql(query).execute()``.
    On DuckDB ``raw_sql`` returns the live ``DuckDBPyConnection`` (the
    backend's ``con``), which must stay open; a DBAPI cursor, as returned
    by the Postgres backend, is closed once the statement has run.
    """
    cursor = connection.raw_sql(query)
    if getattr(connection, "name", None) == "duckdb" or cursor is None or cursor is connection:
        return
    if cursor is not getattr(connection, "con", None) and hasattr(cursor, "close"):
        cursor.close()


class BaseConnection(ABC):
    """
    Named wrapper around one ibis backend.

    ``config["access"]`` is ``"readwrite"`` unless the owner asks for
    ``"read"``. Partner sources are opened with ``"read"`` so nothing in the
    sync path can alter partner data.
    """

    def __init__(self, name: str, config: dict[str, Any]):
        access = config.get("access", "readwrite")
        if access not in ACCESS_MODES:
            raise ValueError(f"Connection '{name}': access must be one of {ACCESS_MODES}, got '{access}'")
        self.name = name
        self.config = config
        self._access: str = access
        self._connection: ibis.BaseBackend | None = None

    @property
    def access(self) -> str:
        return self._access

    @property
    def is_read_only(self) -> bool:
        return self._access == "read"

    @property
    @abstractmethod
    def connection(self) -> ibis.BaseBackend:
        """The ibis backend, opened on first use."""

    def assert_writable(self, operation: str = "write") -> None:
        if self.is_read_only:
            raise ReadOnlyConnectionError(f"Connection '{self.name}' is read-only; refusing {operation}")

    def execute(self, query: str, **kwargs: Any) -> Any:
        """SELECT into a pandas DataFrame."""
        return self.connection.sql(query).execute(**kwargs)

    def execute_sql(self, query: str) -> None:
        self.assert_writable("DDL/DML")
        execute_sql(self.connection, query)

    def close(self) -> None:
        backend, self._connection = self._connection, None
        if backend is None or not hasattr(backend, "disconnect"):
            return
        try:
            backend.disconnect()
        except Exception as e:
            logger.debug(f"Connection '{self.name}' did not disconnect cleanly: {e}")

    def __enter__(self) -> "BaseConnection":
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        try:
            self.close()
        except Exception as e:
            if exc_type is None:
                raise
            logger.warning(f"Closing connection '{self.name}' after an error failed: {e}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name='{self.name}', access='{self._access}')"
