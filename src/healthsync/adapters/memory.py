"""
In-memory source and destination adapters.

Useful for development, tests and dry runs: records live in the process,
and failures can be injected per entity type to exercise retry paths.

Example:
    source = InMemorySource()
    source.add_records("partner-1", "patient", [{"patient_code": "P1", "name": "Ana"}])

    destination = InMemoryDestination()
    batch = await source.read_batch("partner-1", "patient", None, 100)
    await destination.upsert_many("patient", batch.records, partner_id="partner-1")
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Any

from healthsync.adapters.base import DestinationWriter, SourceReader
from healthsync.core.types import EntityBatch, EntityType, natural_key, natural_key_values
from healthsync.exceptions import TransientIOError


class _FailurePlan:
    """Per entity type count of upcoming calls that should fail."""

    def __init__(self):
        self._pending: dict[str, list[Exception]] = defaultdict(list)

    def add(self, entity_type: str, times: int, error: Exception | None) -> None:
        for _ in range(times):
            self._pending[entity_type].append(error or TransientIOError(f"Injected failure for {entity_type}"))

    def check(self, entity_type: str) -> None:
        pending = self._pending.get(entity_type)
        if pending:
            raise pending.pop(0)


class InMemorySource(SourceReader):
    """
    Source over in-process record lists.

    Records of each (partner, entity type) are served ordered by natural
    key. The cursor is the number of records already delivered.
    """

    def __init__(self, records: dict[str, dict[str, list[dict[str, Any]]]] | None = None, delay: float = 0.0):
        """
        Args:
            records: Optional ``{partner_id: {entity_type: [record, ...]}}``
            delay: Seconds to sleep inside every read (lets tests interleave)
        """
        self._records: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.delay = delay
        self.read_calls: list[tuple[str, str, str | None]] = []
        self._failures = _FailurePlan()
        for partner_id, entities in (records or {}).items():
            for entity_type, rows in entities.items():
                self.add_records(partner_id, entity_type, rows)

    def add_records(self, partner_id: str, entity_type: EntityType | str, records: list[dict[str, Any]]) -> None:
        entity = EntityType(entity_type).value
        rows = self._records.setdefault((partner_id, entity), [])
        rows.extend(copy.deepcopy(records))
        rows.sort(key=lambda record: natural_key_values(entity, record))

    def fail_next(self, entity_type: EntityType | str, times: int = 1, error: Exception | None = None) -> None:
        """Make the next ``times`` reads of an entity type raise ``error``."""
        self._failures.add(EntityType(entity_type).value, times, error)

    async def read_batch(
        self,
        partner_id: str,
        entity_type: EntityType | str,
        cursor: str | None,
        limit: int,
    ) -> EntityBatch:
        entity = EntityType(entity_type).value
        self.read_calls.append((partner_id, entity, cursor))
        if self.delay:
            await asyncio.sleep(self.delay)
        self._failures.check(entity)

        rows = self._records.get((partner_id, entity), [])
        offset = int(cursor) if cursor else 0
        page = copy.deepcopy(rows[offset : offset + limit])
        next_offset = offset + len(page)
        return EntityBatch(
            entity_type=entity,
            records=page,
            cursor=str(next_offset) if page else cursor,
            exhausted=next_offset >= len(rows),
        )


class InMemoryDestination(DestinationWriter):
    """Destination that keeps the latest version of every record in a dict."""

    def __init__(self, delay: float = 0.0):
        self._rows: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.delay = delay
        self.write_count = 0
        self._failures = _FailurePlan()

    def fail_next(self, entity_type: EntityType | str, times: int = 1, error: Exception | None = None) -> None:
        """Make the next ``times`` upserts of an entity type raise ``error``."""
        self._failures.add(EntityType(entity_type).value, times, error)

    async def upsert(self, entity_type: EntityType | str, record: dict[str, Any], *, partner_id: str) -> None:
        entity = EntityType(entity_type).value
        key = natural_key(entity, record)
        if self.delay:
            await asyncio.sleep(self.delay)
        self._failures.check(entity)
        self._rows[(entity, partner_id, key)] = copy.deepcopy(record)
        self.write_count += 1

    def get(self, entity_type: EntityType | str, partner_id: str, key: str) -> dict[str, Any] | None:
        return self._rows.get((EntityType(entity_type).value, partner_id, key))

    def records(self, entity_type: EntityType | str, partner_id: str) -> list[dict[str, Any]]:
        entity = EntityType(entity_type).value
        return [row for (e, p, _), row in sorted(self._rows.items()) if e == entity and p == partner_id]

    def snapshot(self) -> dict[tuple[str, str, str], dict[str, Any]]:
        """Copy of the full destination state, for comparisons."""
        return copy.deepcopy(self._rows)

    def __len__(self) -> int:
        return len(self._rows)
