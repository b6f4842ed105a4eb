"""
Dispatcher: job lifecycle and admission control.

Lifecycle calls (init, pause, resume, restart) are serialized per job, and
per partner where the one-active-job-per-partner rule is at stake. Locks
are only held for the status check-and-set; they never wait on a running
job.

Runs execute as asyncio tasks. A run queues for one of ``capacity``
execution slots (FIFO), then hands the job to the ExecutionEngine. Queued
jobs already show status ``running``.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from healthsync.adapters.registry import AdapterRegistry
from healthsync.core.engine import ExecutionEngine, RunOutcome, RunResult
from healthsync.core.retry import RetryPolicy
from healthsync.core.slots import SlotPool
from healthsync.core.state import StateStore
from healthsync.core.types import Checkpoint, JobStatus, SyncJob, utcnow
from healthsync.exceptions import ConflictError, JobNotFoundError, StateStoreError
from healthsync.utils.logging import get_logger

logger = get_logger("healthsync.dispatcher")


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class _Run:
    """In-memory handle of one run of a job."""

    job_id: str
    partner_id: str
    token: int
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    admitted: bool = False
    slot: int | None = None


class Dispatcher:
    """Owns job status, slots and the tasks that run jobs."""

    def __init__(
        self,
        state_store: StateStore,
        registry: AdapterRegistry,
        *,
        max_concurrent_jobs: int = 5,
        batch_size: int = 100,
        retry_policy: RetryPolicy | None = None,
        engine: ExecutionEngine | None = None,
    ):
        self.state_store = state_store
        self.registry = registry
        self.slots = SlotPool(max_concurrent_jobs)
        self.engine = engine or ExecutionEngine(state_store, batch_size=batch_size, retry_policy=retry_policy)
        # Current run per job, and every unfinished task per job
        self._runs: dict[str, _Run] = {}
        self._job_tasks: dict[str, set[asyncio.Task]] = {}
        self._partner_locks = KeyedLock()
        self._job_locks = KeyedLock()
        self._tokens = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, partner_id: str) -> tuple[SyncJob, bool]:
        """
        Start syncing a partner.

        Returns:
            (job, created): ``created`` is False when a paused job was resumed

        Raises:
            ConflictError: The partner already has a running job
            AdapterError: No adapters are configured for the partner
        """
        # Fail fast on unknown partners rather than with a failed job
        self.registry.get_source(partner_id)
        self.registry.get_destination(partner_id)

        async with self._partner_locks.hold(partner_id):
            active = self.state_store.find_active_job(partner_id)
            if active is not None:
                if active.status == JobStatus.RUNNING:
                    raise ConflictError(
                        f"Partner '{partner_id}' already has a running sync job",
                        job_id=active.id,
                        status=active.status.value,
                    )
                async with self._job_locks.hold(active.id):
                    logger.info(f"Init for partner '{partner_id}' resumes paused job {active.id}")
                    return self._resume_locked(active), False

            now = utcnow()
            job = SyncJob(
                id=uuid.uuid4().hex,
                partner_id=partner_id,
                status=JobStatus.RUNNING,
                created_at=now,
                updated_at=now,
                started_at=now,
            )
            self.state_store.create_job(job)
            self._start_run(job)
            logger.info(f"Created sync job {job.id} for partner '{partner_id}'")
            return job, True

    async def pause(self, job_id: str) -> SyncJob:
        """
        Pause a running job.

        The ``paused`` status is written first, at the call, and the run then
        finishes its in-flight batch, commits that batch's checkpoint and
        yields. So a job can read as paused while its last batch is still
        being committed. A resumed run waits for that task to end before it
        queues for a slot, so the two never overlap. A run still waiting for
        a slot is dropped.

        Raises:
            JobNotFoundError, ConflictError
        """
        async with self._job_locks.hold(job_id):
            job = self._require(job_id)
            if job.status != JobStatus.RUNNING:
                raise ConflictError(
                    f"Cannot pause job {job_id}: status is {job.status.value}", job_id=job_id, status=job.status.value
                )

            self.state_store.update_job(job_id, status=JobStatus.PAUSED, paused_at=utcnow())
            run = self._runs.get(job_id)
            if run is not None:
                run.cancel_event.set()
                if not run.admitted and run.task is not None:
                    run.task.cancel()
                    self._forget(run)
            logger.info(f"Paused sync job {job_id}")
            return self._require(job_id)

    async def resume(self, job_id: str) -> SyncJob:
        """
        Resume a paused job from its last committed checkpoints.

        Raises:
            JobNotFoundError, ConflictError
        """
        async with self._job_locks.hold(job_id):
            job = self._require(job_id)
            if job.status != JobStatus.PAUSED:
                raise ConflictError(
                    f"Cannot resume job {job_id}: status is {job.status.value}", job_id=job_id, status=job.status.value
                )
            return self._resume_locked(job)

    async def restart(self, job_id: str) -> SyncJob:
        """
        Restart a job.

        Paused jobs resume. Idle, completed and failed jobs drop their
        checkpoints and start over. A running job is left untouched.

        Raises:
            JobNotFoundError: Unknown job
            ConflictError: Another job of the same partner is active
        """
        partner_id = self._require(job_id).partner_id
        async with self._partner_locks.hold(partner_id):
            async with self._job_locks.hold(job_id):
                job = self._require(job_id)
                if job.status == JobStatus.RUNNING:
                    return job
                if job.status == JobStatus.PAUSED:
                    return self._resume_locked(job)

                active = self.state_store.find_active_job(partner_id)
                if active is not None and active.id != job_id:
                    raise ConflictError(
                        f"Partner '{partner_id}' already has an active sync job {active.id}",
                        job_id=active.id,
                        status=active.status.value,
                    )

                self.state_store.clear_checkpoints(job_id)
                self.state_store.update_job(
                    job_id,
                    status=JobStatus.RUNNING,
                    started_at=utcnow(),
                    paused_at=None,
                    completed_at=None,
                    last_error=None,
                    current_entity=None,
                )
                self._start_run(job)
                logger.info(f"Restarted sync job {job_id} from the beginning")
                return self._require(job_id)

    def _resume_locked(self, job: SyncJob) -> SyncJob:
        """Flip a paused job back to running and queue a run. Caller holds the job lock."""
        self.state_store.update_job(job.id, status=JobStatus.RUNNING, paused_at=None)
        self._start_run(job)
        logger.info(f"Resumed sync job {job.id}")
        return self._require(job.id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> SyncJob:
        job = self.state_store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_job(self, job_id: str) -> SyncJob:
        return self._require(job_id)

    def get_checkpoints(self, job_id: str) -> list[Checkpoint]:
        self._require(job_id)
        return self.state_store.get_checkpoints(job_id)

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        partner_id: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[SyncJob], int]:
        """One page of jobs plus the total count for the filter."""
        jobs = self.state_store.list_jobs(status=status, partner_id=partner_id, limit=limit, offset=(page - 1) * limit)
        return jobs, self.state_store.count_jobs(status=status, partner_id=partner_id)

    def stats(self) -> dict[str, Any]:
        counts = self.state_store.count_by_status()
        return {
            "jobs": counts,
            "total": sum(counts.values()),
            "slots": {
                "capacity": self.slots.capacity,
                "in_use": self.slots.in_use,
                "available": self.slots.available,
                "waiting": self.slots.waiting,
            },
            "active_runs": len(self._runs),
        }

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _start_run(self, job: SyncJob) -> _Run:
        tasks = self._job_tasks.setdefault(job.id, set())
        previous = {task for task in tasks if not task.done()}

        run = _Run(job_id=job.id, partner_id=job.partner_id, token=next(self._tokens))
        self._runs[job.id] = run
        run.task = asyncio.create_task(self._execute(run, previous), name=f"sync-job-{job.id}-{run.token}")
        tasks.add(run.task)
        run.task.add_done_callback(lambda task, job_id=job.id: self._discard_task(job_id, task))
        return run

    def _discard_task(self, job_id: str, task: asyncio.Task) -> None:
        tasks = self._job_tasks.get(job_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._job_tasks[job_id]

    def _is_current(self, run: _Run) -> bool:
        return self._runs.get(run.job_id) is run

    async def _execute(self, run: _Run, previous: set[asyncio.Task]) -> None:
        try:
            if previous:
                # Never overlap an earlier run of this job
                await asyncio.wait(previous)
            if run.cancel_event.is_set():
                self._forget(run)
                return
            run.slot = await self.slots.acquire()
            run.admitted = True
        except asyncio.CancelledError:
            logger.debug(f"Queued run of job {run.job_id} cancelled before admission")
            self._forget(run)
            raise

        try:
            await self._run_admitted(run)
        finally:
            try:
                self.state_store.update_job(run.job_id, slot=None)
            except Exception as e:
                logger.error(f"Could not clear slot of job {run.job_id}: {e}")
            self.slots.release(run.slot)
            logger.debug(f"Job {run.job_id} released slot {run.slot}")
            self._forget(run)

    async def _run_admitted(self, run: _Run) -> None:
        try:
            async with self._job_locks.hold(run.job_id):
                if not self._is_current(run) or run.cancel_event.is_set():
                    return
                self.state_store.update_job(run.job_id, slot=run.slot)
        except StateStoreError as e:
            logger.error(f"Job {run.job_id} could not record slot {run.slot}: {e}")
            await self._finish(run, self._failure(run.job_id, e))
            return
        logger.info(f"Job {run.job_id} admitted on slot {run.slot}/{self.slots.capacity}")

        try:
            source = self.registry.get_source(run.partner_id)
            destination = self.registry.get_destination(run.partner_id)
            await source.connect()
            await destination.connect()
            result = await self.engine.run(run.job_id, run.partner_id, source, destination, run.cancel_event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Job {run.job_id} could not run: {e}", exc_info=True)
            result = self._failure(run.job_id, e)

        await self._finish(run, result)

    @staticmethod
    def _failure(job_id: str, error: Exception) -> RunResult:
        """Result of a run that broke outside any entity stream."""
        return RunResult(
            job_id=job_id,
            outcome=RunOutcome.FAILED,
            error={
                "entity_type": None,
                "cursor": None,
                "error_type": type(error).__name__,
                "message": str(error),
                "attempts": 1,
            },
        )

    async def _finish(self, run: _Run, result: RunResult) -> None:
        """
        Translate a run result into job status, if this run still owns the job.

        A store failure while doing so is logged, never raised: the job is
        then marked failed if the store accepts that write, and otherwise
        stays ``running`` for ``recover`` to pick up in the next process.
        """
        async with self._job_locks.hold(run.job_id):
            if not self._is_current(run):
                logger.debug(f"Superseded run of job {run.job_id} ended ({result.outcome.value})")
                return
            try:
                self._record_outcome(run.job_id, result)
            except StateStoreError as e:
                logger.error(f"Could not record {result.outcome.value} outcome of job {run.job_id}: {e}")
                self._mark_failed(run.job_id, self._failure(run.job_id, e).error)

    def _record_outcome(self, job_id: str, result: RunResult) -> None:
        job = self._require(job_id)
        if result.outcome == RunOutcome.COMPLETED and job.status == JobStatus.RUNNING:
            self.state_store.update_job(job_id, status=JobStatus.COMPLETED, completed_at=utcnow(), last_error=None)
            logger.info(f"Sync job {job_id} completed ({job.processed_records} records)")
        elif result.outcome == RunOutcome.FAILED and job.status.is_active:
            self._mark_failed(job_id, result.error)

    def _mark_failed(self, job_id: str, error: dict[str, Any] | None) -> None:
        try:
            self.state_store.update_job(job_id, status=JobStatus.FAILED, completed_at=utcnow(), last_error=error)
        except StateStoreError as e:
            logger.error(f"Sync job {job_id} could not be marked failed and stays running until recovered: {e}")
            return
        logger.error(f"Sync job {job_id} failed: {(error or {}).get('message')}")

    def _forget(self, run: _Run) -> None:
        if self._is_current(run):
            del self._runs[run.job_id]

    # ------------------------------------------------------------------
    # Service lifecycle
    # ------------------------------------------------------------------

    async def recover(self) -> list[str]:
        """
        Re-admit jobs a previous process left running.

        Slot numbers persisted by that process are meaningless now and are
        cleared first. Paused jobs stay paused.
        """
        self.state_store.clear_slots()
        recovered = []
        for job in self.state_store.list_jobs(status=JobStatus.RUNNING, limit=None):
            if job.id in self._runs:
                continue
            self._start_run(job)
            recovered.append(job.id)
        if recovered:
            logger.info(f"Recovered {len(recovered)} running sync job(s)")
        return recovered

    async def join(self, job_id: str | None = None) -> None:
        """Wait until a job (or every job) has no run in flight."""
        while True:
            if job_id is None:
                tasks = set().union(*self._job_tasks.values())
            else:
                tasks = set(self._job_tasks.get(job_id, set()))
            if not tasks:
                return
            await asyncio.wait(tasks)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """
        Ask every run to yield at its next batch boundary and wait for it.

        Statuses are left as they are, so running jobs are recovered by the
        next process.
        """
        tasks = set().union(*self._job_tasks.values())
        if not tasks:
            return
        logger.info(f"Stopping {len(tasks)} sync run(s)")
        for run in list(self._runs.values()):
            run.cancel_event.set()
            if not run.admitted and run.task is not None:
                run.task.cancel()
                self._forget(run)

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
            logger.warning(f"{len(pending)} sync run(s) cancelled after {timeout}s")
