"""
Quoting for the SQL text built by the state store and the SQL adapters.

Statements are assembled as strings; identifiers and literals only enter
them through these functions.
"""

import re
from datetime import UTC, datetime
from typing import Any

_SAFE_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def escape_identifier(identifier: str) -> str:
    """
    Double-quote a table, column or schema name.

        >>> escape_identifier('canonical"patient')
        '"canonical""patient"'
    """
    if not identifier:
        raise ValueError("Identifier cannot be empty")
    return '"' + identifier.replace('"', '""') + '"'


def validate_identifier(identifier: str) -> bool:
    """True for plain names usable without quoting, e.g. a configured partner column."""
    return bool(identifier) and _SAFE_IDENTIFIER.fullmatch(identifier) is not None


def escape_sql_string(value: str | None) -> str:
    """Single-quoted literal; ``None`` becomes NULL."""
    if value is None:
        return "NULL"
    return "'" + str(value).replace("'", "''") + "'"


def sql_value(value: Any) -> str:
    """
    Literal for a Python value.

    Timestamps are written as naive UTC, which is how every timestamp
    column of the state store is stored.
    """
    if value is None:
        return "NULL"
    if value is True or value is False:
        return str(value).upper()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return f"TIMESTAMP '{value.isoformat(sep=' ')}'"
    return escape_sql_string(str(value))
