"""
Ingestion service: the entry point for submitting work to the pipeline.

Requests are validated before they reach the queue. File jobs that target a
tracked file claim it first, so a file never has two jobs in flight.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import FileBusyError, JobQueueError, ValidationError
from ..models.files import TrackedFile
from ..models.jobs import FilePayload, IngestionJob, RetryPolicy, TextPayload
from ..storage.metadata import MetadataStore
from .queue import JobQueue

logger = logging.getLogger(__name__)


class IngestionService:
    """Enqueues ingestion jobs and exposes file and job status"""

    def __init__(
        self,
        queue: JobQueue,
        metadata_store: MetadataStore,
        retry_policy: Optional[RetryPolicy] = None,
        pending_batch_size: int = 50
    ):
        self.queue = queue
        self.metadata_store = metadata_store
        self.retry_policy = retry_policy
        self.pending_batch_size = pending_batch_size

    async def enqueue_text_ingestion(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Queue raw text for ingestion.

        Returns:
            Job id

        Raises:
            ValidationError: text is empty or metadata is not a mapping
        """
        try:
            payload = TextPayload(text=text, metadata=metadata or {})
        except PydanticValidationError as e:
            raise ValidationError("Invalid text ingestion request", e.errors()) from e

        job = await self.queue.enqueue(payload, self.retry_policy)
        logger.info(f"Queued text ingestion job {job.id}")
        return job.id

    async def enqueue_file_ingestion(
        self,
        file_path: str,
        file_type: str,
        filename: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        delete_after_processing: bool = False,
        file_id: Optional[str] = None
    ) -> str:
        """
        Queue a file for parsing and ingestion.

        Args:
            file_path: Path the worker will read
            file_type: Extension without the dot, e.g. ``pdf``
            filename: Original file name, stored as ``originalFilename``
            metadata: Extra metadata stored with the vector
            delete_after_processing: Remove the file once the job is terminal
            file_id: Tracked file to claim and update

        Returns:
            Job id

        Raises:
            ValidationError: malformed request
            FileBusyError: the tracked file is not PENDING or MODIFIED
        """
        try:
            payload = FilePayload(
                file_path=file_path,
                file_type=file_type,
                filename=filename,
                metadata=metadata or {},
                delete_after_processing=delete_after_processing,
                file_id=file_id
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid file ingestion request", e.errors()) from e

        if file_id:
            claimed = await self.metadata_store.claim_for_processing(file_id)
            payload = payload.model_copy(update={"claim_token": claimed.claim_token})

        try:
            job = await self.queue.enqueue(payload, self.retry_policy)
        except JobQueueError as e:
            if file_id:
                await self.metadata_store.mark_file_as_error(
                    file_id, f"Error queuing file: {e}", payload.claim_token
                )
            raise

        logger.info(f"Queued file ingestion job {job.id} for {filename}")
        return job.id

    async def process_pending_files(self, limit: Optional[int] = None) -> int:
        """
        Queue a job for every PENDING or MODIFIED file of an active folder.

        Returns:
            Number of jobs queued
        """
        pending = await self.get_pending_files(limit or self.pending_batch_size)
        queued = 0

        for tracked in pending:
            try:
                await self.enqueue_file_ingestion(
                    tracked.file_path,
                    tracked.file_type,
                    tracked.file_name,
                    {"fileId": tracked.id, "source": "monitored-folder"},
                    file_id=tracked.id
                )
                queued += 1
            except FileBusyError as e:
                logger.debug(f"Skipping {tracked.file_name}: {e}")
            except (JobQueueError, ValidationError) as e:
                logger.error(f"Error queuing file {tracked.file_name}: {e}")

        if pending:
            logger.info(f"Queued {queued}/{len(pending)} pending files")
        return queued

    async def get_pending_files(self, limit: int = 10) -> List[TrackedFile]:
        return await self.metadata_store.get_pending_files(limit)

    async def mark_file_as_processed(
        self,
        file_id: str,
        vector_id: Optional[str] = None,
        claim_token: Optional[str] = None
    ) -> Optional[str]:
        return await self.metadata_store.mark_file_as_processed(file_id, vector_id, claim_token)

    async def mark_file_as_error(
        self,
        file_id: str,
        message: str,
        claim_token: Optional[str] = None
    ) -> TrackedFile:
        return await self.metadata_store.mark_file_as_error(file_id, message, claim_token)

    async def get_job(self, job_id: str) -> Optional[IngestionJob]:
        return await self.queue.get_job(job_id)

    async def get_file_status(self, file_id: str) -> Optional[TrackedFile]:
        return await self.metadata_store.get_file(file_id)

    async def remove_job(self, job_id: str) -> None:
        await self.queue.remove(job_id)
