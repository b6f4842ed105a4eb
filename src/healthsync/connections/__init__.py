"""
Connections to the state store, partner sources and destinations.

Every store is addressed by URL:

    duckdb://:memory:             in-memory DuckDB
    duckdb:///var/lib/sync.db     DuckDB file (absolute path)
    duckdb://data/sync.db         DuckDB file (relative path)
    postgresql://user:pw@host:5432/db
"""

from typing import Any
from urllib.parse import unquote, urlparse

from healthsync.connections.base import BaseConnection, ReadOnlyConnectionError, execute_sql
from healthsync.connections.duckdb import DuckDBConnection
from healthsync.connections.postgres import PostgresConnection
from healthsync.exceptions import ConfigurationError


def parse_url(url: str) -> tuple[str, dict[str, Any]]:
    """
    Split a store URL into a connection type and its config dictionary.

    Raises:
        ConfigurationError: If the scheme is not supported
    """
    if not url:
        raise ConfigurationError("Connection URL is empty")

    if url.startswith("duckdb://"):
        path = url[len("duckdb://") :] or ":memory:"
        return "duckdb", {"path": path}

    parsed = urlparse(url)
    if parsed.scheme in ("postgres", "postgresql"):
        return "postgres", {
            "config": {
                "host": parsed.hostname or "localhost",
                "port": parsed.port or 5432,
                "user": unquote(parsed.username or ""),
                "password": unquote(parsed.password or ""),
                "database": parsed.path.lstrip("/"),
            }
        }

    raise ConfigurationError(
        f"Unsupported connection URL scheme '{parsed.scheme}'",
        details={"supported": ["duckdb", "postgres", "postgresql"]},
    )


def connect_url(url: str, *, name: str = "default", access: str = "readwrite") -> BaseConnection:
    """Build a (lazily opened) connection wrapper for a store URL."""
    conn_type, config = parse_url(url)
    config["access"] = access
    if conn_type == "duckdb":
        return DuckDBConnection(name, config)
    return PostgresConnection(name, config)


__all__ = [
    "BaseConnection",
    "ReadOnlyConnectionError",
    "DuckDBConnection",
    "PostgresConnection",
    "connect_url",
    "execute_sql",
    "parse_url",
]
