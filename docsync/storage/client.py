"""
Qdrant vector store client for docsync.

Wraps the synchronous QdrantClient with asyncio.to_thread and reports every
write as a StorageResult instead of raising, so callers decide whether a
failed upsert or delete is fatal.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.http.models.models import PointIdsList
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
    VectorParams,
)

from ..models.config import QdrantConfig
from ..models.storage import SearchHit, StorageResult, VectorPoint

logger = logging.getLogger(__name__)


_DISTANCES = {
    "cosine": Distance.COSINE,
    "euclidean": Distance.EUCLID,
    "dot": Distance.DOT,
}


class QdrantVectorStore:
    """
    Document vector store backed by a single Qdrant collection.

    Points carry the payload ``{text, metadata, timestamp}``; ids are UUID
    strings generated by the caller.
    """

    def __init__(self, config: Optional[QdrantConfig] = None, client: Optional[QdrantClient] = None):
        """
        Initialize vector store.

        Args:
            config: Connection and collection settings
            client: Pre-built QdrantClient, mostly for tests
        """
        self.config = config or QdrantConfig()
        self.collection_name = self.config.collection_name
        self._client = client
        self._connection_lock = asyncio.Lock()
        self._connected = False
        self._collection_ready = False

        logger.info(f"Initialized QdrantVectorStore: {self.config.url}/{self.collection_name}")

    @property
    def client(self) -> QdrantClient:
        """Get Qdrant client instance"""
        if self._client is None:
            self._client = QdrantClient(
                url=self.config.url,
                api_key=self.config.api_key,
                timeout=int(self.config.timeout)
            )
        return self._client

    async def connect(self) -> bool:
        """
        Establish connection to Qdrant server.

        Returns:
            True if connection successful, False otherwise
        """
        async with self._connection_lock:
            if self._connected:
                return True

            try:
                start_time = time.time()
                await asyncio.to_thread(self.client.get_collections)
                elapsed = time.time() - start_time

                self._connected = True
                logger.info(f"Connected to Qdrant in {elapsed:.3f}s")
                return True

            except Exception as e:
                logger.error(f"Failed to connect to Qdrant: {e}")
                self._connected = False
                return False

    async def close(self) -> None:
        """Disconnect from Qdrant server"""
        async with self._connection_lock:
            if self._client is not None:
                await asyncio.to_thread(self._client.close)
                self._client = None
            self._connected = False
            self._collection_ready = False
            logger.info("Disconnected from Qdrant")

    async def ensure_collection(self, vector_size: Optional[int] = None) -> StorageResult:
        """
        Create the document collection if it does not exist yet.

        Args:
            vector_size: Embedding dimensionality; defaults to the configured size
        """
        start_time = time.time()
        size = vector_size or self.config.vector_size

        try:
            exists = await asyncio.to_thread(self.client.collection_exists, self.collection_name)
            if exists:
                self._collection_ready = True
                processing_time = (time.time() - start_time) * 1000
                return StorageResult.successful(
                    "create_collection", self.collection_name, 0, processing_time
                )

            await asyncio.to_thread(
                self.client.create_collection,
                collection_name=self.collection_name,
                vectors_config=VectorParams(
                    size=size,
                    distance=_DISTANCES[self.config.distance_metric]
                )
            )
            self._collection_ready = True

            processing_time = (time.time() - start_time) * 1000
            logger.info(
                f"Created collection '{self.collection_name}' "
                f"(size={size}, distance={self.config.distance_metric}) in {processing_time:.2f}ms"
            )
            return StorageResult.successful(
                "create_collection", self.collection_name, 1, processing_time
            )

        except Exception as e:
            processing_time = (time.time() - start_time) * 1000
            error_msg = f"Failed to create collection {self.collection_name}: {e}"
            logger.error(error_msg)
            return StorageResult.failed_operation(
                "create_collection", self.collection_name, error_msg, processing_time
            )

    async def upsert(self, points: List[VectorPoint]) -> StorageResult:
        """
        Upsert points into the collection.

        Returns:
            Storage operation result
        """
        start_time = time.time()

        if not points:
            return StorageResult.successful("upsert", self.collection_name, 0, 0.0)

        try:
            qdrant_points = [
                PointStruct(id=point.id, vector=point.vector, payload=point.payload)
                for point in points
            ]

            await asyncio.to_thread(
                self.client.upsert,
                collection_name=self.collection_name,
                points=qdrant_points,
                wait=True
            )

            processing_time = (time.time() - start_time) * 1000
            logger.debug(
                f"Upserted {len(points)} points to {self.collection_name} "
                f"in {processing_time:.2f}ms"
            )
            return StorageResult.successful(
                "upsert", self.collection_name, len(points), processing_time
            )

        except Exception as e:
            processing_time = (time.time() - start_time) * 1000
            error_msg = f"Failed to upsert points to {self.collection_name}: {e}"
            logger.error(error_msg)
            return StorageResult.failed_operation(
                "upsert", self.collection_name, error_msg, processing_time,
                error_details={"total_points": len(points)}
            )

    async def delete(self, point_ids: List[str]) -> StorageResult:
        """
        Delete points by id. Unknown ids are not an error.

        Returns:
            Storage operation result with deletion count
        """
        start_time = time.time()

        if not point_ids:
            return StorageResult.successful("delete", self.collection_name, 0, 0.0)

        try:
            await asyncio.to_thread(
                self.client.delete,
                collection_name=self.collection_name,
                points_selector=PointIdsList(points=list(point_ids)),
                wait=True
            )

            processing_time = (time.time() - start_time) * 1000
            logger.info(
                f"Deleted {len(point_ids)} points from {self.collection_name} "
                f"in {processing_time:.2f}ms"
            )
            return StorageResult.successful(
                "delete", self.collection_name, len(point_ids), processing_time
            )

        except Exception as e:
            processing_time = (time.time() - start_time) * 1000
            error_msg = f"Failed to delete points from {self.collection_name}: {e}"
            logger.error(error_msg)
            return StorageResult.failed_operation(
                "delete", self.collection_name, error_msg, processing_time,
                error_details={"point_ids": list(point_ids)}
            )

    async def query(
        self,
        vector: List[float],
        limit: int = 10,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SearchHit]:
        """
        Nearest-neighbour search over stored documents.

        Args:
            vector: Query embedding
            limit: Maximum results to return
            filters: Exact-match conditions on payload keys, e.g. ``metadata.fileId``
        """
        start_time = time.time()

        try:
            query_filter = None
            if filters:
                query_filter = Filter(must=[
                    FieldCondition(key=key, match=MatchValue(value=value))
                    for key, value in filters.items()
                ])

            response = await asyncio.to_thread(
                self.client.query_points,
                collection_name=self.collection_name,
                query=vector,
                query_filter=query_filter,
                limit=limit,
                with_payload=True,
                with_vectors=False
            )

            hits = []
            for scored_point in response.points:
                payload = scored_point.payload or {}
                hits.append(SearchHit(
                    id=str(scored_point.id),
                    score=scored_point.score,
                    text=payload.get("text", ""),
                    metadata=payload.get("metadata", {})
                ))

            processing_time = (time.time() - start_time) * 1000
            logger.debug(
                f"Query in {self.collection_name}: {len(hits)} results in {processing_time:.2f}ms"
            )
            return hits

        except Exception as e:
            logger.error(f"Query failed in {self.collection_name}: {e}")
            return []

    async def count(self) -> int:
        """Number of points in the collection, 0 if it cannot be read"""
        try:
            result = await asyncio.to_thread(
                self.client.count,
                collection_name=self.collection_name,
                exact=True
            )
            return result.count if result else 0
        except Exception as e:
            logger.error(f"Failed to count points in {self.collection_name}: {e}")
            return 0

    async def health_check(self) -> Dict[str, Any]:
        """Check Qdrant server health"""
        try:
            start_time = time.time()
            collections = await asyncio.to_thread(self.client.get_collections)
            elapsed = time.time() - start_time

            return {
                "status": "healthy",
                "response_time_ms": elapsed * 1000,
                "collections_count": len(collections.collections),
                "connected": self._connected,
                "url": self.config.url
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "connected": False,
                "url": self.config.url
            }
