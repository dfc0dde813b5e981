"""
Ingestion job processor: resolve text, embed, upsert, record.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from ..embeddings.base import BaseEmbedder
from ..errors import (
    ConcurrentUpdateError,
    DocumentParseError,
    InvalidStatusTransition,
    StaleJobError,
    VectorStoreError,
)
from ..models.jobs import FilePayload, IngestionJob, JobResult, TextPayload
from ..models.storage import VectorPoint
from ..parser.registry import ParserRegistry
from ..storage.client import QdrantVectorStore
from ..storage.metadata import MetadataStore
from ..storage.utils import new_point_id
from .synchronizer import VectorStoreSynchronizer

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[int], Awaitable[None]]


async def _no_progress(progress: int) -> None:
    return None


class IngestionProcessor:
    """
    Executes one attempt of an ingestion job.

    Exceptions propagate to the caller unchanged; retry and terminal
    bookkeeping belong to the worker pool.
    """

    def __init__(
        self,
        parser_registry: ParserRegistry,
        embedder: BaseEmbedder,
        vector_store: QdrantVectorStore,
        metadata_store: MetadataStore,
        synchronizer: VectorStoreSynchronizer
    ):
        self.parsers = parser_registry
        self.embedder = embedder
        self.vector_store = vector_store
        self.metadata_store = metadata_store
        self.synchronizer = synchronizer

    async def process(
        self,
        job: IngestionJob,
        report_progress: Optional[ProgressCallback] = None
    ) -> JobResult:
        """
        Run the job steps in order.

        Raises:
            UnsupportedFileType: no parser for the payload's file type
            EmbeddingError: provider failed
            VectorStoreError: upsert rejected
            StaleJobError: file changed or was deleted while the job ran
        """
        report_progress = report_progress or _no_progress
        await report_progress(0)

        text, metadata = await self._resolve_text(job)

        vector = await self.embedder.embed_query(text)

        point_id = new_point_id()
        point = VectorPoint(
            id=point_id,
            vector=vector,
            payload={
                "text": text,
                "metadata": metadata,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

        result = await self.vector_store.upsert([point])
        if not result.success:
            raise VectorStoreError(result.error or f"Upsert of point {point_id} failed")

        if job.file_id:
            await self._record_completion(job.file_id, point_id, job.claim_token)

        await report_progress(100)
        logger.info(f"Job {job.id} stored point {point_id} ({len(text)} chars)")
        return JobResult(id=point_id, success=True)

    async def _resolve_text(self, job: IngestionJob) -> tuple:
        payload = job.payload

        if isinstance(payload, TextPayload):
            return payload.text, dict(payload.metadata)

        if isinstance(payload, FilePayload):
            parsed = await self.parsers.parse_file(payload.file_path, payload.file_type)
            if not parsed.text.strip():
                raise DocumentParseError(f"No extractable text in {payload.filename}")

            metadata: Dict[str, Any] = {
                **parsed.metadata,
                **payload.metadata,
                "originalFilename": payload.filename,
            }
            return parsed.text, metadata

        raise TypeError(f"Unknown payload type: {type(payload).__name__}")

    async def _record_completion(self, file_id: str, point_id: str, claim_token: Optional[str]) -> None:
        try:
            previous = await self.metadata_store.mark_file_as_processed(file_id, point_id, claim_token)
        except (InvalidStatusTransition, ConcurrentUpdateError) as e:
            # The scan moved the file on or a newer job claimed it; this vector describes old content
            await self.synchronizer.discard_orphan(point_id, file_id)
            raise StaleJobError(f"File {file_id} changed during processing: {e}") from e

        await self.synchronizer.discard_superseded(previous, point_id)
