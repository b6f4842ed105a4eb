"""
Source and destination adapter interfaces.

A partner is served by one SourceReader (partner-native records already
reshaped into canonical entities) and one DestinationWriter (the target
platform). The sync engine only ever talks to these two capabilities.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from healthsync.core.types import EntityBatch, EntityType


class SourceReader(ABC):
    """
    Read-only, resumable access to canonical entity streams.

    Records of one entity type come back in a stable order. The cursor
    returned with a batch is opaque to callers; passing it back yields the
    records that follow that batch, so a batch can be re-read from the
    previous cursor any number of times.
    """

    async def connect(self) -> None:
        """Open underlying resources. No-op by default."""

    async def close(self) -> None:
        """Release underlying resources. No-op by default."""

    @abstractmethod
    async def read_batch(
        self,
        partner_id: str,
        entity_type: EntityType | str,
        cursor: str | None,
        limit: int,
    ) -> EntityBatch:
        """
        Fetch up to ``limit`` records positioned after ``cursor``.

        Args:
            partner_id: Partner whose records are read
            entity_type: Canonical entity type
            cursor: Position returned by the previous batch, or None to start
            limit: Maximum number of records

        Returns:
            EntityBatch with the records, the cursor after the last record
            (unchanged when the batch is empty) and an exhausted flag

        Raises:
            TransientIOError: For failures worth retrying
        """
        ...


class DestinationWriter(ABC):
    """
    Idempotent upsert of canonical records, keyed by (partner, natural key).
    """

    async def connect(self) -> None:
        """Open underlying resources. No-op by default."""

    async def close(self) -> None:
        """Release underlying resources. No-op by default."""

    @abstractmethod
    async def upsert(self, entity_type: EntityType | str, record: dict[str, Any], *, partner_id: str) -> None:
        """
        Insert or replace one record.

        Writing the same record twice leaves the destination unchanged.

        Raises:
            MalformedRecordError: If the record has no natural key
            TransientIOError: For failures worth retrying
        """
        ...

    async def upsert_many(
        self, entity_type: EntityType | str, records: list[dict[str, Any]], *, partner_id: str
    ) -> int:
        """
        Upsert a batch of records.

        Default implementation writes one at a time.
        Subclasses may override for efficient batching.

        Returns:
            Number of records written
        """
        count = 0
        for record in records:
            await self.upsert(entity_type, record, partner_id=partner_id)
            count += 1
        return count
