"""
Durable ingestion job queue.

Jobs live in a SQLite table so they survive process restarts. Dispatch
claims the oldest available waiting job with a conditional UPDATE, failed
attempts are rescheduled with exponential backoff and terminal jobs are
trimmed to a bounded history.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import aiosqlite

from ..errors import JobNotFoundError, JobQueueError, NonRetryableError
from ..models.jobs import (
    BackoffPolicy,
    IngestionJob,
    JobPayload,
    JobResult,
    JobState,
    RetryPolicy,
    payload_adapter,
)

logger = logging.getLogger(__name__)


@dataclass
class QueueMetrics:
    """Counters since the queue was opened"""
    total_enqueued: int = 0
    total_completed: int = 0
    total_failed: int = 0
    total_retried: int = 0
    total_recovered: int = 0


def _row_to_job(row: aiosqlite.Row) -> IngestionJob:
    return IngestionJob(
        id=row["id"],
        name=row["name"],
        payload=payload_adapter.validate_json(row["payload"]),
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        backoff=BackoffPolicy.model_validate_json(row["backoff"]),
        state=JobState(row["state"]),
        progress=row["progress"],
        result=JobResult.model_validate_json(row["result"]) if row["result"] else None,
        failed_reason=row["failed_reason"],
        available_at=row["available_at"],
        created_at=datetime.fromisoformat(row["created_at"]),
        finished_at=datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None,
    )


class JobQueue:
    """
    SQLite-backed queue of ingestion jobs with at-least-once delivery.

    Every claim increments ``attempts``. A failed attempt either reschedules
    the job ``backoff.delay_for(attempts)`` seconds later or, when attempts
    are exhausted or the error is non-retryable, marks it failed.
    """

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        retry_policy: Optional[RetryPolicy] = None,
        remove_on_complete: int = 100,
        remove_on_fail: int = 500,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the job queue.

        Args:
            db_path: SQLite database file, ``:memory:`` for a private queue
            retry_policy: Default attempts and backoff for new jobs
            remove_on_complete: Completed jobs kept for inspection
            remove_on_fail: Failed jobs kept for inspection
            clock: Time source in seconds, injectable for tests
        """
        self.db_path = str(db_path)
        self.retry_policy = retry_policy or RetryPolicy()
        self.remove_on_complete = remove_on_complete
        self.remove_on_fail = remove_on_fail
        self._clock = clock

        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._job_available = asyncio.Event()

        self.metrics = QueueMetrics()

    async def initialize(self) -> None:
        """Open the database and create the jobs table"""
        if self._db is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    backoff TEXT NOT NULL,
                    state TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    result TEXT,
                    failed_reason TEXT,
                    available_at REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    finished_at TEXT
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_dispatch ON jobs(state, available_at, seq)"
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            raise JobQueueError(f"Failed to initialize job queue at {self.db_path}: {e}") from e

        logger.info(f"Job queue ready at {self.db_path}")

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
        # Wake consumers so they notice the queue is gone
        self._job_available.set()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise JobQueueError("Job queue is not initialized")
        return self._db

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def now(self) -> float:
        return self._clock()

    async def _execute(self, sql: str, params: tuple = ()) -> int:
        try:
            cursor = await self.db.execute(sql, params)
            await self.db.commit()
            return cursor.rowcount
        except aiosqlite.Error as e:
            raise JobQueueError(f"Job queue write failed: {e}") from e

    async def _fetchone(self, sql: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        try:
            async with self.db.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise JobQueueError(f"Job queue read failed: {e}") from e

    async def _fetchall(self, sql: str, params: tuple = ()) -> List[aiosqlite.Row]:
        try:
            async with self.db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise JobQueueError(f"Job queue read failed: {e}") from e

    # --- Producer side ---

    async def enqueue(
        self,
        payload: JobPayload,
        policy: Optional[RetryPolicy] = None,
        name: str = "ingest-document"
    ) -> IngestionJob:
        """
        Durably add a job; it becomes available immediately.

        Args:
            payload: Text or file payload
            policy: Retry policy overriding the queue default
            name: Job name recorded for inspection
        """
        policy = policy or self.retry_policy
        job = IngestionJob(
            name=name,
            payload=payload,
            max_attempts=policy.max_attempts,
            backoff=policy.backoff,
            available_at=self.now()
        )

        await self._execute(
            """
            INSERT INTO jobs (id, name, payload, attempts, max_attempts, backoff, state,
                              progress, available_at, created_at)
            VALUES (?, ?, ?, 0, ?, ?, ?, 0, ?, ?)
            """,
            (
                job.id, job.name, job.payload.model_dump_json(), job.max_attempts,
                job.backoff.model_dump_json(), JobState.WAITING.value,
                job.available_at, job.created_at.isoformat(),
            ),
        )

        self.metrics.total_enqueued += 1
        self._job_available.set()
        logger.debug(f"Enqueued job {job.id} ({job.payload.kind})")
        return job

    async def remove(self, job_id: str) -> None:
        """
        Delete a waiting job.

        Raises:
            JobNotFoundError: unknown job
            JobQueueError: job is active or already finished
        """
        affected = await self._execute(
            "DELETE FROM jobs WHERE id = ? AND state = ?",
            (job_id, JobState.WAITING.value),
        )
        if affected == 0:
            job = await self.require_job(job_id)
            raise JobQueueError(f"Job {job_id} is {job.state.value} and cannot be removed")
        logger.info(f"Removed job {job_id}")

    # --- Inspection ---

    async def get_job(self, job_id: str) -> Optional[IngestionJob]:
        row = await self._fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return _row_to_job(row) if row else None

    async def require_job(self, job_id: str) -> IngestionJob:
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, state: Optional[JobState] = None, limit: int = 50) -> List[IngestionJob]:
        if state is None:
            rows = await self._fetchall("SELECT * FROM jobs ORDER BY seq DESC LIMIT ?", (limit,))
        else:
            rows = await self._fetchall(
                "SELECT * FROM jobs WHERE state = ? ORDER BY seq DESC LIMIT ?",
                (state.value, limit),
            )
        return [_row_to_job(row) for row in rows]

    async def counts(self) -> Dict[str, int]:
        rows = await self._fetchall("SELECT state, COUNT(*) AS n FROM jobs GROUP BY state")
        counts = {state.value: 0 for state in JobState}
        for row in rows:
            counts[row["state"]] = row["n"]
        return counts

    async def has_unfinished(self) -> bool:
        row = await self._fetchone(
            "SELECT COUNT(*) AS n FROM jobs WHERE state IN (?, ?)",
            (JobState.WAITING.value, JobState.ACTIVE.value),
        )
        return bool(row and row["n"])

    async def seconds_until_next(self) -> Optional[float]:
        """Delay until the earliest waiting job becomes available, None if none wait"""
        row = await self._fetchone(
            "SELECT MIN(available_at) AS t FROM jobs WHERE state = ?",
            (JobState.WAITING.value,),
        )
        if row is None or row["t"] is None:
            return None
        return max(row["t"] - self.now(), 0.0)

    # --- Consumer side ---

    async def claim_next(self) -> Optional[IngestionJob]:
        """
        Claim the oldest available waiting job.

        The conditional UPDATE guarantees that two consumers never claim the
        same job, even across processes sharing the database.
        """
        async with self._lock:
            while True:
                row = await self._fetchone(
                    """
                    SELECT id FROM jobs
                    WHERE state = ? AND available_at <= ?
                    ORDER BY available_at, seq
                    LIMIT 1
                    """,
                    (JobState.WAITING.value, self.now()),
                )
                if row is None:
                    return None

                claimed = await self._execute(
                    """
                    UPDATE jobs SET state = ?, attempts = attempts + 1
                    WHERE id = ? AND state = ?
                    """,
                    (JobState.ACTIVE.value, row["id"], JobState.WAITING.value),
                )
                if claimed:
                    job = await self.require_job(row["id"])
                    logger.debug(f"Claimed job {job.id} (attempt {job.attempts}/{job.max_attempts})")
                    return job

    async def wait_for_job(self, timeout: float) -> None:
        """Sleep until a job is enqueued or rescheduled, or the timeout passes"""
        try:
            await asyncio.wait_for(self._job_available.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            self._job_available.clear()

    async def update_progress(self, job_id: str, progress: int) -> None:
        """Record progress of an active job; progress never decreases"""
        progress = min(max(int(progress), 0), 100)
        await self._execute(
            "UPDATE jobs SET progress = MAX(progress, ?) WHERE id = ? AND state = ?",
            (progress, job_id, JobState.ACTIVE.value),
        )

    async def complete(self, job_id: str, result: JobResult) -> IngestionJob:
        """Mark an active job completed with its result"""
        job = await self.require_job(job_id)
        finished_at = datetime.now()
        affected = await self._execute(
            """
            UPDATE jobs SET state = ?, progress = 100, result = ?, finished_at = ?, failed_reason = NULL
            WHERE id = ? AND state = ?
            """,
            (
                JobState.COMPLETED.value, result.model_dump_json(), finished_at.isoformat(),
                job_id, JobState.ACTIVE.value,
            ),
        )
        if affected == 0:
            raise JobQueueError(f"Job {job_id} is {job.state.value}, expected active")

        self.metrics.total_completed += 1
        await self._trim(JobState.COMPLETED, self.remove_on_complete)
        return job.model_copy(update={
            "state": JobState.COMPLETED, "progress": 100, "result": result,
            "finished_at": finished_at, "failed_reason": None,
        })

    async def fail(self, job_id: str, error: BaseException) -> IngestionJob:
        """
        Record a failed attempt.

        Returns the job after the decision: WAITING with a later
        ``available_at`` when it will be retried, FAILED when terminal.
        """
        job = await self.require_job(job_id)
        if job.state != JobState.ACTIVE:
            raise JobQueueError(f"Job {job_id} is {job.state.value}, expected active")

        reason = str(error) or error.__class__.__name__
        retryable = not isinstance(error, NonRetryableError)

        if retryable and job.attempts < job.max_attempts:
            delay = job.backoff.delay_for(job.attempts)
            available_at = self.now() + delay
            await self._execute(
                "UPDATE jobs SET state = ?, failed_reason = ?, available_at = ? WHERE id = ? AND state = ?",
                (JobState.WAITING.value, reason, available_at, job_id, JobState.ACTIVE.value),
            )
            self.metrics.total_retried += 1
            self._job_available.set()
            logger.warning(
                f"Job {job_id} attempt {job.attempts}/{job.max_attempts} failed: {reason}; "
                f"retrying in {delay:.1f}s"
            )
            return job.model_copy(update={
                "state": JobState.WAITING, "failed_reason": reason, "available_at": available_at,
            })

        finished_at = datetime.now()
        await self._execute(
            "UPDATE jobs SET state = ?, failed_reason = ?, finished_at = ? WHERE id = ? AND state = ?",
            (JobState.FAILED.value, reason, finished_at.isoformat(), job_id, JobState.ACTIVE.value),
        )
        self.metrics.total_failed += 1
        logger.error(f"Job {job_id} failed after {job.attempts} attempt(s): {reason}")

        failed = job.model_copy(update={
            "state": JobState.FAILED, "failed_reason": reason, "finished_at": finished_at,
        })
        await self._trim(JobState.FAILED, self.remove_on_fail)
        return failed

    async def recover_stalled(self) -> int:
        """
        Return jobs left active by a crashed consumer to the waiting state.

        Only jobs with attempts left are recovered; the ones interrupted on
        their final attempt are handled by ``fail_exhausted_stalled``.
        """
        recovered = await self._execute(
            "UPDATE jobs SET state = ?, available_at = ? WHERE state = ? AND attempts < max_attempts",
            (JobState.WAITING.value, self.now(), JobState.ACTIVE.value),
        )
        if recovered:
            self.metrics.total_recovered += recovered
            self._job_available.set()
            logger.warning(f"Recovered {recovered} stalled job(s)")
        return recovered

    async def fail_exhausted_stalled(self, reason: str = "Interrupted during final attempt") -> List[IngestionJob]:
        """
        Fail jobs left active by a crashed consumer after their last attempt.

        Another claim would exceed ``max_attempts``. Returns the failed jobs
        so the caller can run terminal bookkeeping for them.
        """
        rows = await self._fetchall(
            "SELECT id FROM jobs WHERE state = ? AND attempts >= max_attempts",
            (JobState.ACTIVE.value,),
        )

        failed: List[IngestionJob] = []
        for row in rows:
            finished_at = datetime.now()
            affected = await self._execute(
                "UPDATE jobs SET state = ?, failed_reason = ?, finished_at = ? WHERE id = ? AND state = ?",
                (JobState.FAILED.value, reason, finished_at.isoformat(), row["id"], JobState.ACTIVE.value),
            )
            if affected:
                failed.append(await self.require_job(row["id"]))

        if failed:
            self.metrics.total_failed += len(failed)
            logger.error(f"Failed {len(failed)} stalled job(s) with no attempts left")
            await self._trim(JobState.FAILED, self.remove_on_fail)
        return failed

    async def _trim(self, state: JobState, keep: int) -> None:
        removed = await self._execute(
            """
            DELETE FROM jobs WHERE state = ? AND seq NOT IN (
                SELECT seq FROM jobs WHERE state = ?
                ORDER BY finished_at DESC, seq DESC LIMIT ?
            )
            """,
            (state.value, state.value, keep),
        )
        if removed:
            logger.debug(f"Trimmed {removed} {state.value} job(s)")

    def get_metrics(self) -> Dict[str, int]:
        return {
            "total_enqueued": self.metrics.total_enqueued,
            "total_completed": self.metrics.total_completed,
            "total_failed": self.metrics.total_failed,
            "total_retried": self.metrics.total_retried,
            "total_recovered": self.metrics.total_recovered,
        }
