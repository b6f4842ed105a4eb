"""
State database for sync jobs and their checkpoints.

Automatically creates the ``sync_jobs`` and ``sync_checkpoints`` tables if
they don't exist. The store is the only durable state of the service:
everything the dispatcher keeps in memory can be rebuilt from it.
"""

import json
from datetime import UTC, datetime
from typing import Any

import ibis
import pandas as pd

from healthsync.connections import BaseConnection, connect_url, execute_sql
from healthsync.core.types import ENTITY_ORDER, Checkpoint, JobStatus, SyncJob, utcnow
from healthsync.exceptions import StateStoreError
from healthsync.utils.logging import get_logger
from healthsync.utils.sql_escape import escape_sql_string, sql_value

logger = get_logger("healthsync.state")

JOBS_TABLE = "sync_jobs"
CHECKPOINTS_TABLE = "sync_checkpoints"

# Columns the dispatcher and engine may change after creation
_UPDATABLE_JOB_COLUMNS = {
    "status",
    "started_at",
    "paused_at",
    "completed_at",
    "last_error",
    "slot",
    "current_entity",
}

_JOB_SELECT = f"""
    SELECT j.job_id, j.partner_id, j.status, j.created_at, j.updated_at,
           j.started_at, j.paused_at, j.completed_at, j.last_error, j.slot,
           j.current_entity, COALESCE(c.records, 0) AS processed_records
    FROM {JOBS_TABLE} j
    LEFT JOIN (
        SELECT job_id, SUM(records) AS records FROM {CHECKPOINTS_TABLE} GROUP BY job_id
    ) c ON c.job_id = j.job_id
"""


def _to_datetime(value: Any) -> datetime | None:
    """Convert a stored (naive UTC) timestamp back to an aware datetime."""
    if value is None or pd.isna(value):
        return None
    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def _to_int(value: Any) -> int | None:
    if value is None or pd.isna(value):
        return None
    return int(value)


def _to_str(value: Any) -> str | None:
    if value is None or pd.isna(value):
        return None
    return str(value)


class StateStore:
    """Manages job and checkpoint storage in an ibis-backed database."""

    def __init__(self, config: dict[str, Any]):
        """
        Initialize state store.

        Args:
            config: Configuration dictionary; the store URL is read from
                ``state.url`` (``duckdb://...`` or ``postgresql://...``)
        """
        self.config = config
        self.url: str | None = config.get("state", {}).get("url")
        self._wrapper: BaseConnection | None = None
        self._connection: ibis.BaseBackend | None = None
        self._initialized = False

    def _get_connection(self) -> ibis.BaseBackend:
        """Get state database connection, creating tables on first use."""
        if self._connection is None:
            if not self.url:
                raise StateStoreError("State store URL is not configured (state.url)")
            try:
                self._wrapper = connect_url(self.url, name="state")
                self._connection = self._wrapper.connection
            except Exception as e:
                raise StateStoreError(f"Failed to open state database: {e}", details={"url": self.url}) from e
        if not self._initialized:
            self._initialize_schema(self._connection)
        return self._connection

    def _initialize_schema(self, conn: ibis.BaseBackend) -> None:
        """Create job and checkpoint tables if they don't exist."""
        try:
            execute_sql(
                conn,
                f"""
                CREATE TABLE IF NOT EXISTS {JOBS_TABLE} (
                    job_id VARCHAR PRIMARY KEY,
                    partner_id VARCHAR NOT NULL,
                    status VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP,
                    started_at TIMESTAMP,
                    paused_at TIMESTAMP,
                    completed_at TIMESTAMP,
                    last_error TEXT,
                    slot INTEGER,
                    current_entity VARCHAR
                )
                """,
            )
            execute_sql(
                conn,
                f"""
                CREATE TABLE IF NOT EXISTS {CHECKPOINTS_TABLE} (
                    job_id VARCHAR NOT NULL,
                    entity_type VARCHAR NOT NULL,
                    last_cursor TEXT,
                    exhausted BOOLEAN NOT NULL DEFAULT FALSE,
                    batches INTEGER NOT NULL DEFAULT 0,
                    records BIGINT NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP,
                    PRIMARY KEY (job_id, entity_type)
                )
                """,
            )
        except Exception as e:
            raise StateStoreError(f"Could not create state tables: {e}") from e

        self._initialized = True
        logger.debug("State database initialized")

    def close(self) -> None:
        if self._wrapper is not None:
            self._wrapper.close()
            self._wrapper = None
        self._connection = None
        self._initialized = False

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _query(self, query: str) -> list[dict[str, Any]]:
        conn = self._get_connection()
        try:
            result = conn.sql(query).execute()
        except Exception as e:
            raise StateStoreError(f"State query failed: {e}") from e
        if result is None or len(result) == 0:
            return []
        return result.to_dict("records")

    def _execute(self, query: str) -> None:
        conn = self._get_connection()
        try:
            execute_sql(conn, query)
        except Exception as e:
            raise StateStoreError(f"State update failed: {e}") from e

    @staticmethod
    def _row_to_job(row: dict[str, Any]) -> SyncJob:
        last_error = _to_str(row.get("last_error"))
        return SyncJob(
            id=row["job_id"],
            partner_id=row["partner_id"],
            status=JobStatus(row["status"]),
            created_at=_to_datetime(row["created_at"]),
            updated_at=_to_datetime(row.get("updated_at")),
            started_at=_to_datetime(row.get("started_at")),
            paused_at=_to_datetime(row.get("paused_at")),
            completed_at=_to_datetime(row.get("completed_at")),
            last_error=json.loads(last_error) if last_error else None,
            slot=_to_int(row.get("slot")),
            processed_records=_to_int(row.get("processed_records")) or 0,
            current_entity=_to_str(row.get("current_entity")),
        )

    @staticmethod
    def _row_to_checkpoint(row: dict[str, Any]) -> Checkpoint:
        return Checkpoint(
            job_id=row["job_id"],
            entity_type=row["entity_type"],
            cursor=_to_str(row.get("last_cursor")),
            exhausted=bool(row.get("exhausted")),
            batches=_to_int(row.get("batches")) or 0,
            records=_to_int(row.get("records")) or 0,
            updated_at=_to_datetime(row.get("updated_at")),
        )

    @staticmethod
    def _where(status: JobStatus | str | None = None, partner_id: str | None = None) -> str:
        clauses = []
        if status is not None:
            clauses.append(f"j.status = {escape_sql_string(JobStatus(status).value)}")
        if partner_id is not None:
            clauses.append(f"j.partner_id = {escape_sql_string(partner_id)}")
        return f" WHERE {' AND '.join(clauses)}" if clauses else ""

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, job: SyncJob) -> SyncJob:
        """Insert a new job record."""
        job.updated_at = job.updated_at or job.created_at
        values = ", ".join(
            sql_value(v)
            for v in (
                job.id,
                job.partner_id,
                job.status.value,
                job.created_at,
                job.updated_at,
                job.started_at,
                job.paused_at,
                job.completed_at,
                json.dumps(job.last_error) if job.last_error else None,
                job.slot,
                job.current_entity,
            )
        )
        self._execute(
            f"INSERT INTO {JOBS_TABLE} (job_id, partner_id, status, created_at, updated_at, started_at, "
            f"paused_at, completed_at, last_error, slot, current_entity) VALUES ({values})"
        )
        return job

    def get_job(self, job_id: str) -> SyncJob | None:
        rows = self._query(f"{_JOB_SELECT} WHERE j.job_id = {escape_sql_string(job_id)}")
        return self._row_to_job(rows[0]) if rows else None

    def find_active_job(self, partner_id: str) -> SyncJob | None:
        """The partner's running or paused job, if any."""
        rows = self._query(
            f"{_JOB_SELECT} WHERE j.partner_id = {escape_sql_string(partner_id)} "
            f"AND j.status IN ('{JobStatus.RUNNING.value}', '{JobStatus.PAUSED.value}') "
            f"ORDER BY j.created_at DESC LIMIT 1"
        )
        return self._row_to_job(rows[0]) if rows else None

    def find_latest_job(self, partner_id: str) -> SyncJob | None:
        rows = self._query(
            f"{_JOB_SELECT} WHERE j.partner_id = {escape_sql_string(partner_id)} ORDER BY j.created_at DESC LIMIT 1"
        )
        return self._row_to_job(rows[0]) if rows else None

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        partner_id: str | None = None,
        limit: int | None = 50,
        offset: int = 0,
    ) -> list[SyncJob]:
        """List jobs newest first, optionally filtered by status and partner."""
        query = f"{_JOB_SELECT}{self._where(status, partner_id)} ORDER BY j.created_at DESC, j.job_id"
        if limit is not None:
            query += f" LIMIT {int(limit)} OFFSET {int(offset)}"
        return [self._row_to_job(row) for row in self._query(query)]

    def count_jobs(self, status: JobStatus | str | None = None, partner_id: str | None = None) -> int:
        rows = self._query(f"SELECT COUNT(*) AS n FROM {JOBS_TABLE} j{self._where(status, partner_id)}")
        return (_to_int(rows[0]["n"]) or 0) if rows else 0

    def count_by_status(self) -> dict[str, int]:
        """Job counts keyed by every status value (zero when absent)."""
        counts = {status.value: 0 for status in JobStatus}
        for row in self._query(f"SELECT status, COUNT(*) AS n FROM {JOBS_TABLE} GROUP BY status"):
            counts[row["status"]] = _to_int(row["n"]) or 0
        return counts

    def update_job(self, job_id: str, **fields: Any) -> None:
        """
        Update job columns.

        ``last_error`` is serialized to JSON; ``status`` accepts the enum.
        ``updated_at`` is always refreshed.
        """
        unknown = set(fields) - _UPDATABLE_JOB_COLUMNS
        if unknown:
            raise StateStoreError(f"Cannot update job columns: {sorted(unknown)}")

        assignments = []
        for column, value in fields.items():
            if column == "last_error" and value is not None:
                value = json.dumps(value)
            elif column == "status":
                value = JobStatus(value).value
            assignments.append(f"{column} = {sql_value(value)}")
        assignments.append(f"updated_at = {sql_value(utcnow())}")

        self._execute(
            f"UPDATE {JOBS_TABLE} SET {', '.join(assignments)} WHERE job_id = {escape_sql_string(job_id)}"
        )

    def clear_slots(self) -> None:
        """Forget slot assignments left behind by a previous process."""
        self._execute(f"UPDATE {JOBS_TABLE} SET slot = NULL WHERE slot IS NOT NULL")

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def get_checkpoint(self, job_id: str, entity_type: str) -> Checkpoint | None:
        rows = self._query(
            f"SELECT * FROM {CHECKPOINTS_TABLE} "
            f"WHERE job_id = {escape_sql_string(job_id)} AND entity_type = {escape_sql_string(str(entity_type))}"
        )
        return self._row_to_checkpoint(rows[0]) if rows else None

    def get_checkpoints(self, job_id: str) -> list[Checkpoint]:
        """All checkpoints of a job, in traversal order."""
        rows = self._query(f"SELECT * FROM {CHECKPOINTS_TABLE} WHERE job_id = {escape_sql_string(job_id)}")
        order = {entity.value: index for index, entity in enumerate(ENTITY_ORDER)}
        checkpoints = [self._row_to_checkpoint(row) for row in rows]
        return sorted(checkpoints, key=lambda cp: order.get(cp.entity_type, len(order)))

    def save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        """
        Commit a checkpoint in a single statement.

        The row only moves forward: a save whose ``batches`` is not greater
        than the stored value, including a second save of the same batch,
        is rejected. The upsert itself carries the same guard, and the row
        read back must hold exactly the cursor that was written.

        Raises:
            StateStoreError: If the stored checkpoint is level with or ahead of this one
        """
        current = self.get_checkpoint(checkpoint.job_id, checkpoint.entity_type)
        if current is not None and current.batches >= checkpoint.batches:
            raise self._not_advanced(checkpoint, current)

        checkpoint.updated_at = utcnow()
        values = ", ".join(
            sql_value(v)
            for v in (
                checkpoint.job_id,
                str(checkpoint.entity_type),
                checkpoint.cursor,
                checkpoint.exhausted,
                checkpoint.batches,
                checkpoint.records,
                checkpoint.updated_at,
            )
        )
        self._execute(
            f"INSERT INTO {CHECKPOINTS_TABLE} "
            f"(job_id, entity_type, last_cursor, exhausted, batches, records, updated_at) VALUES ({values}) "
            f"ON CONFLICT (job_id, entity_type) DO UPDATE SET "
            f"last_cursor = EXCLUDED.last_cursor, exhausted = EXCLUDED.exhausted, batches = EXCLUDED.batches, "
            f"records = EXCLUDED.records, updated_at = EXCLUDED.updated_at "
            f"WHERE {CHECKPOINTS_TABLE}.batches < EXCLUDED.batches"
        )

        stored = self.get_checkpoint(checkpoint.job_id, checkpoint.entity_type)
        if stored is None or stored.batches != checkpoint.batches or stored.cursor != checkpoint.cursor:
            raise self._not_advanced(checkpoint, stored)
        return stored

    @staticmethod
    def _not_advanced(checkpoint: Checkpoint, stored: Checkpoint | None) -> StateStoreError:
        return StateStoreError(
            f"Checkpoint for {checkpoint.entity_type} did not advance",
            details={
                "job_id": checkpoint.job_id,
                "entity_type": str(checkpoint.entity_type),
                "batches": checkpoint.batches,
                "stored_batches": stored.batches if stored else None,
            },
        )

    def clear_checkpoints(self, job_id: str) -> None:
        """Drop every checkpoint of a job (from-zero restart)."""
        self._execute(f"DELETE FROM {CHECKPOINTS_TABLE} WHERE job_id = {escape_sql_string(job_id)}")
