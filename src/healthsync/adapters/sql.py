"""
SQL adapters over ibis backends.

SqlSource reads a partner's canonical views, one relation per entity type
named ``{ENTITY}_INTERHEALTH`` (``PATIENT_INTERHEALTH``, ...), paging by
keyset on the entity's natural key columns. SqlDestination upserts into one
``canonical_<entity>`` table per entity type.
"""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from typing import Any

import ibis
import pandas as pd
from ibis.common.exceptions import IbisError

from healthsync.adapters.base import DestinationWriter, SourceReader
from healthsync.connections import BaseConnection, connect_url, execute_sql
from healthsync.core.types import NATURAL_KEYS, EntityBatch, EntityType, natural_key, natural_key_values, utcnow
from healthsync.exceptions import AdapterError, TransientIOError
from healthsync.utils.logging import get_logger
from healthsync.utils.sql_escape import escape_identifier, sql_value, validate_identifier

logger = get_logger("healthsync.adapters.sql")


def _clean_value(value: Any) -> Any:
    """Convert pandas/numpy scalars into JSON-friendly Python values."""
    if value is None:
        return None
    if isinstance(value, (list, dict)):
        return value
    if pd.isna(value):
        return None
    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "item"):
        return value.item()
    return value


def _clean_record(record: dict[str, Any]) -> dict[str, Any]:
    return {str(column): _clean_value(value) for column, value in record.items()}


class SqlSource(SourceReader):
    """
    Source reading canonical views from a SQL database.

    Config keys:
        url: Store URL (see ``healthsync.connections``)
        schema: Optional database schema holding the views
        table_suffix: Relation name suffix (default ``_INTERHEALTH``)
        partner_column: Optional column filtering rows by partner, for
            databases shared between partners
    """

    def __init__(self, config: dict[str, Any]):
        url = config.get("url")
        if not url:
            raise AdapterError("SQL source requires 'url'")
        self.config = config
        self.schema: str | None = config.get("schema")
        self.table_suffix: str = config.get("table_suffix", "_INTERHEALTH")
        self.partner_column: str | None = config.get("partner_column")
        if self.partner_column and not validate_identifier(self.partner_column):
            raise AdapterError(f"Invalid partner_column '{self.partner_column}'")
        self._wrapper: BaseConnection = connect_url(url, name=config.get("name", "source"), access="read")
        # One statement at a time per connection
        self._lock = asyncio.Lock()
        self._known_relations: set[str] = set()

    def relation_name(self, entity_type: EntityType | str) -> str:
        return f"{EntityType(entity_type).value.upper()}{self.table_suffix}"

    async def close(self) -> None:
        self._wrapper.close()

    def _build_query(self, partner_id: str, entity: str, cursor: str | None, limit: int) -> ibis.Table:
        conn = self._wrapper.connection
        table = conn.table(self.relation_name(entity), database=self.schema)
        keys = NATURAL_KEYS[EntityType(entity)]

        if self.partner_column:
            table = table.filter(table[self.partner_column] == partner_id)

        if cursor:
            # Literals take the column's type, so numeric and date keys compare natively
            last = [ibis.literal(value).cast(table[key].type()) for key, value in zip(keys, json.loads(cursor))]
            # Lexicographic "(k1, k2, ...) > (v1, v2, ...)"
            condition = None
            for index in reversed(range(len(keys))):
                term = table[keys[index]] > last[index]
                for prefix in range(index):
                    term = term & (table[keys[prefix]] == last[prefix])
                condition = term if condition is None else condition | term
            table = table.filter(condition)

        return table.order_by([table[key] for key in keys]).limit(limit)

    def _check_relation(self, entity: str) -> None:
        """Fail fast (not retryable) when an entity's view does not exist."""
        relation = self.relation_name(entity)
        if relation in self._known_relations:
            return
        try:
            tables = self._wrapper.connection.list_tables(database=self.schema)
        except Exception as e:
            raise TransientIOError(f"Cannot list relations of source: {e}") from e
        if relation not in tables:
            raise AdapterError(
                f"Source relation {relation} does not exist", details={"entity_type": entity, "schema": self.schema}
            )
        self._known_relations.add(relation)

    def _read(self, partner_id: str, entity: str, cursor: str | None, limit: int) -> EntityBatch:
        self._check_relation(entity)
        try:
            frame = self._build_query(partner_id, entity, cursor, limit).execute()
        except IbisError as e:
            raise AdapterError(
                f"Cannot read {self.relation_name(entity)}: {e}", details={"entity_type": entity}
            ) from e
        except Exception as e:
            raise TransientIOError(f"Read of {self.relation_name(entity)} failed: {e}") from e

        records = [_clean_record(row) for row in frame.to_dict("records")]
        next_cursor = cursor
        if records:
            last = records[-1]
            # Raises MalformedRecordError for a row without its key
            natural_key_values(entity, last)
            next_cursor = json.dumps([last[key] for key in NATURAL_KEYS[EntityType(entity)]])
        return EntityBatch(
            entity_type=entity,
            records=records,
            cursor=next_cursor,
            exhausted=len(records) < limit,
        )

    async def read_batch(
        self,
        partner_id: str,
        entity_type: EntityType | str,
        cursor: str | None,
        limit: int,
    ) -> EntityBatch:
        entity = EntityType(entity_type).value
        async with self._lock:
            return await asyncio.to_thread(self._read, partner_id, entity, cursor, limit)


class SqlDestination(DestinationWriter):
    """
    Destination writing canonical records as JSON payloads.

    Each entity type gets a ``canonical_<entity>`` table keyed by
    ``(partner_id, natural_key)``; tables are created on ``connect``.
    """

    def __init__(self, config: dict[str, Any]):
        url = config.get("url")
        if not url:
            raise AdapterError("SQL destination requires 'url'")
        self.config = config
        self.table_prefix: str = config.get("table_prefix", "canonical_")
        self._wrapper: BaseConnection = connect_url(url, name=config.get("name", "destination"))
        self._lock = asyncio.Lock()
        self._ready = False

    def table_name(self, entity_type: EntityType | str) -> str:
        return f"{self.table_prefix}{EntityType(entity_type).value}"

    def _create_tables(self) -> None:
        conn = self._wrapper.connection
        for entity in EntityType:
            execute_sql(
                conn,
                f"""
                CREATE TABLE IF NOT EXISTS {escape_identifier(self.table_name(entity))} (
                    partner_id VARCHAR NOT NULL,
                    natural_key VARCHAR NOT NULL,
                    payload TEXT NOT NULL,
                    synced_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (partner_id, natural_key)
                )
                """,
            )
        self._ready = True

    async def connect(self) -> None:
        async with self._lock:
            if not self._ready:
                await asyncio.to_thread(self._create_tables)

    async def close(self) -> None:
        self._wrapper.close()
        self._ready = False

    def _write(self, entity: str, rows: list[tuple[str, str]], partner_id: str) -> None:
        if not self._ready:
            self._create_tables()
        synced_at = utcnow()
        values = ", ".join(
            f"({sql_value(partner_id)}, {sql_value(key)}, {sql_value(payload)}, {sql_value(synced_at)})"
            for key, payload in rows
        )
        table = escape_identifier(self.table_name(entity))
        try:
            execute_sql(
                self._wrapper.connection,
                f"INSERT INTO {table} (partner_id, natural_key, payload, synced_at) VALUES {values} "
                f"ON CONFLICT (partner_id, natural_key) DO UPDATE SET "
                f"payload = EXCLUDED.payload, synced_at = EXCLUDED.synced_at",
            )
        except Exception as e:
            raise TransientIOError(f"Write to {self.table_name(entity)} failed: {e}") from e

    @staticmethod
    def _encode(entity: str, record: dict[str, Any]) -> tuple[str, str]:
        return natural_key(entity, record), json.dumps(record, sort_keys=True, default=str)

    async def upsert(self, entity_type: EntityType | str, record: dict[str, Any], *, partner_id: str) -> None:
        entity = EntityType(entity_type).value
        row = self._encode(entity, record)
        async with self._lock:
            await asyncio.to_thread(self._write, entity, [row], partner_id)

    async def upsert_many(
        self, entity_type: EntityType | str, records: list[dict[str, Any]], *, partner_id: str
    ) -> int:
        """Upsert a batch in one statement (last record wins per key)."""
        if not records:
            return 0
        entity = EntityType(entity_type).value
        rows = dict(self._encode(entity, record) for record in records)
        async with self._lock:
            await asyncio.to_thread(self._write, entity, list(rows.items()), partner_id)
        return len(records)
