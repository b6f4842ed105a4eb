"""
Postgres connection via ibis.
"""

from typing import Any

import ibis

from healthsync.connections.base import BaseConnection
from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.connections.postgres")


class PostgresConnection(BaseConnection):
    """Postgres connection wrapper using ibis (psycopg under the hood)."""

    @property
    def connection(self) -> ibis.BaseBackend:
        """Get Postgres connection via ibis (lazy initialization)."""
        if self._connection is None:
            db_config: dict[str, Any] = self.config.get("config", {})
            self._connection = ibis.postgres.connect(
                host=db_config.get("host", "localhost"),
                port=db_config.get("port", 5432),
                user=db_config.get("user", ""),
                password=db_config.get("password", ""),
                database=db_config.get("database", ""),
            )
            logger.debug(f"Opened Postgres connection '{self.name}' to {db_config.get('host', 'localhost')}")
        return self._connection
