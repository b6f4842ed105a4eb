"""
DuckDB backend: in-memory for tests, a single file for small deployments.
"""

import re
from pathlib import Path

import ibis

from healthsync.connections.base import BaseConnection
from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.connections.duckdb")

_LOCK_HINTS = ("lock", "conflicting")


class DuckDBConnection(BaseConnection):
    """``config["path"]`` is a file path or ``:memory:`` (the default)."""

    def _open_file(self, path: Path) -> ibis.BaseBackend:
        path.parent.mkdir(parents=True, exist_ok=True)
        # DuckDB cannot open a missing file read-only
        read_only = self.is_read_only and path.exists()
        try:
            return ibis.duckdb.connect(str(path), read_only=read_only)
        except Exception as e:
            message = str(e)
            if any(hint in message.lower() for hint in _LOCK_HINTS):
                holder = re.search(r"PID\s+(\d+)", message)
                suffix = f" by PID {holder.group(1)}" if holder else ""
                raise RuntimeError(f"DuckDB file '{path}' is locked{suffix}") from e
            raise RuntimeError(f"Cannot open DuckDB file '{path}': {message}") from e

    @property
    def connection(self) -> ibis.BaseBackend:
        if self._connection is None:
            path = self.config.get("path", ":memory:")
            if path == ":memory:":
                self._connection = ibis.duckdb.connect()
            else:
                self._connection = self._open_file(Path(path))
                logger.debug(f"Connection '{self.name}' opened DuckDB file '{path}'")
        return self._connection
