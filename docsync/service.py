"""
Composition root for a docsync deployment.

Builds every component from a ServiceConfig and wires them together. No
component is a module-level singleton; tests pass fakes for any of them.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .embeddings.base import BaseEmbedder
from .embeddings.registry import create_embedder
from .indexer.scan_engine import ScanEngine
from .models.config import ServiceConfig
from .models.files import ScanStats
from .models.storage import SearchHit
from .parser.registry import ParserRegistry
from .storage.client import QdrantVectorStore
from .storage.metadata import MetadataStore
from .sync.ingestion import IngestionService
from .sync.processor import IngestionProcessor
from .sync.queue import JobQueue
from .sync.synchronizer import VectorStoreSynchronizer
from .sync.worker import WorkerPool

logger = logging.getLogger(__name__)


class DocSyncService:
    """Owns the lifecycle of stores, scan engine, queue and worker pool"""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        metadata_store: Optional[MetadataStore] = None,
        queue: Optional[JobQueue] = None,
        vector_store: Optional[QdrantVectorStore] = None,
        embedder: Optional[BaseEmbedder] = None,
        parser_registry: Optional[ParserRegistry] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or ServiceConfig()

        self.metadata_store = metadata_store or MetadataStore(self.config.metadata_db_path)
        self.queue = queue or JobQueue(
            self.config.queue_db_path,
            retry_policy=self.config.queue.retry_policy,
            remove_on_complete=self.config.queue.remove_on_complete,
            remove_on_fail=self.config.queue.remove_on_fail,
            clock=clock
        )
        self.vector_store = vector_store or QdrantVectorStore(self.config.qdrant)
        self.embedder = embedder or create_embedder(self.config.embeddings)
        self.parser_registry = parser_registry or ParserRegistry()

        self.synchronizer = VectorStoreSynchronizer(self.vector_store)
        self.scan_engine = ScanEngine(self.metadata_store, self.synchronizer, self.config.scan)
        self.ingestion = IngestionService(
            self.queue,
            self.metadata_store,
            retry_policy=self.config.queue.retry_policy,
            pending_batch_size=self.config.scan.pending_batch_size
        )
        self.processor = IngestionProcessor(
            self.parser_registry,
            self.embedder,
            self.vector_store,
            self.metadata_store,
            self.synchronizer
        )
        self.workers = WorkerPool(
            self.queue,
            self.processor,
            self.metadata_store,
            concurrency=self.config.queue.concurrency,
            poll_interval=self.config.queue.poll_interval
        )

        self._started = False

    async def start(self, connect_vector_store: bool = True, start_workers: bool = False) -> None:
        """
        Open stores and optionally prepare the vector collection and workers.

        Args:
            connect_vector_store: Connect to Qdrant and create the collection if missing
            start_workers: Start the worker pool lanes
        """
        if not self._started:
            await self.metadata_store.initialize()
            await self.queue.initialize()
            self._started = True

        if connect_vector_store:
            if await self.vector_store.connect():
                result = await self.vector_store.ensure_collection(self.embedder.dimensions)
                if not result.success:
                    logger.warning(f"Vector collection not ready: {result.error}")
            else:
                logger.warning("Vector store unreachable; jobs will retry until it is back")

        if start_workers:
            await self.workers.start()

        logger.info(f"Service '{self.config.name}' started")

    async def stop(self) -> None:
        """Stop workers and release every resource"""
        await self.workers.stop()

        if self._started:
            await self.queue.close()
            await self.metadata_store.close()
            self._started = False

        await self.vector_store.close()
        if self.embedder.is_loaded:
            await self.embedder.unload_model()

        logger.info(f"Service '{self.config.name}' stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def sync_once(self) -> Dict[str, Any]:
        """Scan every active folder, then queue all pending files"""
        scan_results: Dict[str, ScanStats] = await self.scan_engine.scan_all_folders()
        queued = await self.ingestion.process_pending_files()
        return {"scans": scan_results, "queued": queued}

    async def search(self, query: str, limit: int = 5) -> List[SearchHit]:
        """Embed a query and return the nearest stored documents"""
        vector = await self.embedder.embed_query(query)
        return await self.vector_store.query(vector, limit=limit)

    async def get_status(self, include_vectors: bool = False) -> Dict[str, Any]:
        """
        File, job and worker counts.

        With ``include_vectors`` the number of stored points is added under
        ``vectors``; it is None when Qdrant cannot be reached.
        """
        status: Dict[str, Any] = {
            "files": await self.metadata_store.count_by_status(),
            "jobs": await self.queue.counts(),
            "workers": self.workers.get_stats(),
        }
        if include_vectors:
            reachable = await self.vector_store.connect()
            status["vectors"] = await self.vector_store.count() if reachable else None
        return status
