"""
Execution engine: one checkpointed pass over every entity stream of a partner.

For each entity type in ENTITY_ORDER the engine loads the checkpoint,
skips exhausted streams, then repeatedly reads a batch after the stored
cursor, upserts every record and commits the new cursor. A batch (read plus
writes) is retried as a whole on transient errors.

Pausing is cooperative: the cancel event is checked before every batch and
between entity types, never in the middle of a batch.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from healthsync.adapters.base import DestinationWriter, SourceReader
from healthsync.core.retry import RetryManager, RetryPolicy
from healthsync.core.state import StateStore
from healthsync.core.types import ENTITY_ORDER, Checkpoint, EntityBatch, EntityType
from healthsync.exceptions import FatalError, RetryExhaustedError
from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.engine")

DEFAULT_BATCH_SIZE = 100

# Retry states kept per pass; older batches are dropped
RETRY_HISTORY_SIZE = 32


class RunOutcome(StrEnum):
    """How a pass ended."""

    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass
class RunResult:
    """Result of one engine pass over a job."""

    job_id: str
    outcome: RunOutcome
    batches: int = 0
    records: int = 0
    error: dict[str, Any] | None = None


class ExecutionEngine:
    """
    Walks the canonical entity streams of one job.

    The engine owns checkpoints and the progress columns of a job
    (``current_entity``); it never changes job status.
    """

    def __init__(
        self,
        state_store: StateStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
        entity_order: tuple[EntityType, ...] = ENTITY_ORDER,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.state_store = state_store
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.entity_order = entity_order

    async def run(
        self,
        job_id: str,
        partner_id: str,
        source: SourceReader,
        destination: DestinationWriter,
        cancel_event: asyncio.Event,
    ) -> RunResult:
        """
        Run (or continue) the pass of a job from its checkpoints.

        Fatal errors are captured into the result rather than raised; the
        caller turns them into job status.
        """
        result = RunResult(job_id=job_id, outcome=RunOutcome.COMPLETED)
        retry_manager = RetryManager(max_history=RETRY_HISTORY_SIZE)

        for entity_type in self.entity_order:
            if cancel_event.is_set():
                result.outcome = RunOutcome.PAUSED
                break

            checkpoint = self.state_store.get_checkpoint(job_id, entity_type.value)
            if checkpoint is not None and checkpoint.exhausted:
                continue
            if checkpoint is None:
                checkpoint = Checkpoint(job_id=job_id, entity_type=entity_type.value)

            self.state_store.update_job(job_id, current_entity=entity_type.value)

            try:
                finished = await self._run_entity(
                    partner_id, checkpoint, source, destination, cancel_event, retry_manager, result
                )
            except FatalError as e:
                result.outcome = RunOutcome.FAILED
                result.error = self._error_record(e, checkpoint)
                logger.error(
                    f"Job {job_id} failed on {entity_type.value} at cursor {checkpoint.cursor!r}: {e.message}",
                    exc_info=True,
                )
                return result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Anything not classified as transient ends the job as well
                result.outcome = RunOutcome.FAILED
                result.error = self._error_record(e, checkpoint)
                logger.error(
                    f"Job {job_id} failed on {entity_type.value} at cursor {checkpoint.cursor!r}: {e}",
                    exc_info=True,
                )
                return result

            if not finished:
                result.outcome = RunOutcome.PAUSED
                break

        if result.outcome == RunOutcome.PAUSED:
            logger.info(f"Job {job_id} yielded at a batch boundary after {result.batches} batch(es)")
        else:
            logger.info(f"Job {job_id} finished every entity stream ({result.records} records this run)")
        return result

    async def _run_entity(
        self,
        partner_id: str,
        checkpoint: Checkpoint,
        source: SourceReader,
        destination: DestinationWriter,
        cancel_event: asyncio.Event,
        retry_manager: RetryManager,
        result: RunResult,
    ) -> bool:
        """
        Drain one entity stream from its checkpoint.

        ``checkpoint`` is advanced in place after every committed batch.

        Returns:
            True when the stream is exhausted, False when paused before it
        """
        entity = checkpoint.entity_type

        while True:
            if cancel_event.is_set():
                return False

            cursor = checkpoint.cursor
            try:
                batch = await retry_manager.execute(
                    self._process_batch,
                    partner_id,
                    entity,
                    cursor,
                    source,
                    destination,
                    policy=self.retry_policy,
                    operation=f"{entity} batch {checkpoint.batches + 1}",
                )
            except RetryExhaustedError as e:
                raise RetryExhaustedError(
                    f"Retry budget exhausted for {entity}: {e.__cause__ or e}",
                    attempts=e.attempts,
                    entity_type=entity,
                    cursor=cursor,
                ) from (e.__cause__ or e)

            # Commit only after every record of the batch is written
            committed = self.state_store.save_checkpoint(
                Checkpoint(
                    job_id=checkpoint.job_id,
                    entity_type=entity,
                    cursor=batch.cursor,
                    exhausted=batch.exhausted,
                    batches=checkpoint.batches + 1,
                    records=checkpoint.records + len(batch),
                )
            )
            checkpoint.cursor = committed.cursor
            checkpoint.exhausted = committed.exhausted
            checkpoint.batches = committed.batches
            checkpoint.records = committed.records
            result.batches += 1
            result.records += len(batch)
            logger.debug(
                f"Job {checkpoint.job_id} committed {entity} batch {committed.batches} "
                f"({len(batch)} records, cursor {committed.cursor!r})"
            )

            if batch.exhausted:
                return True

    async def _process_batch(
        self,
        partner_id: str,
        entity: str,
        cursor: str | None,
        source: SourceReader,
        destination: DestinationWriter,
    ) -> EntityBatch:
        """Read one batch after ``cursor`` and upsert all of it."""
        batch = await source.read_batch(partner_id, entity, cursor, self.batch_size)
        if batch.records:
            await destination.upsert_many(entity, batch.records, partner_id=partner_id)
        return batch

    @staticmethod
    def _error_record(error: Exception, checkpoint: Checkpoint) -> dict[str, Any]:
        """Structured ``last_error`` for the job record."""
        cause = error.__cause__ if isinstance(error, RetryExhaustedError) and error.__cause__ else error
        return {
            "entity_type": getattr(error, "entity_type", None) or checkpoint.entity_type,
            "cursor": getattr(error, "cursor", None) or checkpoint.cursor,
            "error_type": type(cause).__name__,
            "message": str(cause),
            "attempts": getattr(error, "attempts", 1),
        }
