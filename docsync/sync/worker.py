"""
Worker pool draining the ingestion job queue.

Each lane claims one job at a time and runs it to completion or failure.
Terminal bookkeeping (temp-file cleanup and the tracked file's ERROR write)
happens here, exactly once per terminal outcome and never on an
intermediate retry.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set

import aiofiles.os

from ..errors import ConcurrentUpdateError, DocSyncError, MetadataStoreError, StaleJobError, StalledJobError
from ..models.jobs import FilePayload, IngestionJob, JobState
from ..storage.metadata import MetadataStore
from .processor import IngestionProcessor
from .queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class WorkerStats:
    """Outcome counters of a worker pool"""
    completed: int = 0
    failed: int = 0
    retried: int = 0


class WorkerPool:
    """
    Fixed number of asyncio lanes pulling from one job queue.

    ``stop()`` lets running jobs finish and cancels idle lanes; jobs are
    never interrupted mid-processing.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: IngestionProcessor,
        metadata_store: MetadataStore,
        concurrency: int = 5,
        poll_interval: float = 1.0
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.queue = queue
        self.processor = processor
        self.metadata_store = metadata_store
        self.concurrency = concurrency
        self.poll_interval = poll_interval

        self._lanes: Dict[int, asyncio.Task] = {}
        self._busy: Set[int] = set()
        self._running = False

        self.stats = WorkerStats()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_jobs(self) -> int:
        return len(self._busy)

    async def start(self) -> None:
        """Recover stalled jobs and start the lanes"""
        if self._running:
            return

        for job in await self.queue.fail_exhausted_stalled():
            self.stats.failed += 1
            await self._on_terminal_failure(job, StalledJobError(job.failed_reason or "Stalled"))
        await self.queue.recover_stalled()

        self._running = True
        for index in range(self.concurrency):
            self._lanes[index] = asyncio.create_task(self._lane(index), name=f"docsync-worker-{index}")

        logger.info(f"Started worker pool with {self.concurrency} lanes")

    async def stop(self) -> None:
        """Stop accepting jobs, wait for running ones, cancel idle lanes"""
        if not self._running:
            return

        self._running = False
        for index, task in self._lanes.items():
            if index not in self._busy:
                task.cancel()

        await asyncio.gather(*self._lanes.values(), return_exceptions=True)
        self._lanes.clear()
        self._busy.clear()
        logger.info("Stopped worker pool")

    async def drain(self, check_interval: float = 0.05) -> None:
        """Wait until no job is waiting or active"""
        while await self.queue.has_unfinished():
            await asyncio.sleep(check_interval)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def _lane(self, index: int) -> None:
        while self._running:
            self._busy.add(index)
            try:
                job = await self.queue.claim_next()
                if job is not None:
                    await self._run_job(job)
                    continue
            except DocSyncError as e:
                logger.error(f"Worker lane {index} error: {e}")
            finally:
                self._busy.discard(index)

            if not self._running:
                break
            await self._idle()

    async def _idle(self) -> None:
        try:
            delay = await self.queue.seconds_until_next()
        except DocSyncError as e:
            logger.error(f"Cannot read queue state: {e}")
            delay = None

        timeout = self.poll_interval if delay is None else min(delay, self.poll_interval)
        await self.queue.wait_for_job(max(timeout, 0.01))

    async def _run_job(self, job: IngestionJob) -> None:
        async def report_progress(progress: int) -> None:
            await self.queue.update_progress(job.id, progress)

        try:
            result = await self.processor.process(job, report_progress=report_progress)
        except Exception as e:
            outcome = await self.queue.fail(job.id, e)
            if outcome.state == JobState.FAILED:
                self.stats.failed += 1
                await self._on_terminal_failure(job, e)
            else:
                self.stats.retried += 1
            return

        await self.queue.complete(job.id, result)
        self.stats.completed += 1
        logger.info(f"Job {job.id} completed successfully")
        await self._cleanup(job)

    async def _on_terminal_failure(self, job: IngestionJob, error: Exception) -> None:
        await self._cleanup(job)

        # A stale job's file already moved on; its status belongs to the scan
        if job.file_id and not isinstance(error, StaleJobError):
            try:
                await self.metadata_store.mark_file_as_error(
                    job.file_id, str(error) or error.__class__.__name__, job.claim_token
                )
            except ConcurrentUpdateError:
                logger.info(f"File {job.file_id} was claimed again; not recording failure of job {job.id}")
            except MetadataStoreError as e:
                logger.error(f"Cannot record failure of job {job.id} on file {job.file_id}: {e}")

    async def _cleanup(self, job: IngestionJob) -> None:
        payload = job.payload
        if not isinstance(payload, FilePayload) or not payload.delete_after_processing:
            return

        try:
            await aiofiles.os.remove(payload.file_path)
            logger.debug(f"Removed temporary file {payload.file_path}")
        except FileNotFoundError:
            logger.debug(f"Temporary file already gone: {payload.file_path}")
        except OSError as e:
            logger.warning(f"Cannot remove temporary file {payload.file_path}: {e}")

    def get_stats(self) -> Dict[str, int]:
        return {
            "completed": self.stats.completed,
            "failed": self.stats.failed,
            "retried": self.stats.retried,
            "active": self.active_jobs,
            "lanes": len(self._lanes),
        }
