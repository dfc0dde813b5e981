"""
Keeps the vector store consistent with tracked file state.

All deletes here are best effort: a missing point or an unreachable vector
store is logged and never blocks the metadata transition that triggered it.
"""

import logging
from typing import Optional

from ..models.files import TrackedFile
from ..storage.client import QdrantVectorStore

logger = logging.getLogger(__name__)


class VectorStoreSynchronizer:
    """Deletes vectors that no longer describe current file content"""

    def __init__(self, vector_store: QdrantVectorStore):
        self.vector_store = vector_store

        self._deleted = 0
        self._failed = 0

    async def delete_vector(self, vector_id: Optional[str], reason: str) -> bool:
        """
        Delete one vector point.

        Returns:
            True if the store acknowledged the delete
        """
        if not vector_id:
            return True

        try:
            result = await self.vector_store.delete([vector_id])
        except Exception as e:
            logger.warning(f"Vector delete for {vector_id} ({reason}) raised: {e}")
            self._failed += 1
            return False

        if not result.success:
            logger.warning(f"Vector delete for {vector_id} ({reason}) failed: {result.error}")
            self._failed += 1
            return False

        logger.debug(f"Deleted vector {vector_id} ({reason})")
        self._deleted += 1
        return True

    async def on_modified(self, tracked: TrackedFile) -> bool:
        """Drop the vector of a file whose content changed"""
        return await self.delete_vector(tracked.vector_id, f"modified: {tracked.file_name}")

    async def on_deleted(self, tracked: TrackedFile) -> bool:
        """Drop the vector of a file that disappeared from disk"""
        return await self.delete_vector(tracked.vector_id, f"deleted: {tracked.file_name}")

    async def discard_orphan(self, point_id: str, file_id: str) -> bool:
        """Drop a vector written by a job whose file changed while it ran"""
        return await self.delete_vector(point_id, f"stale job for file {file_id}")

    async def discard_superseded(self, previous_vector_id: Optional[str], new_vector_id: str) -> bool:
        """Drop the vector replaced by a repeated completion of the same file"""
        if not previous_vector_id or previous_vector_id == new_vector_id:
            return True
        return await self.delete_vector(previous_vector_id, f"superseded by {new_vector_id}")

    def get_stats(self) -> dict:
        return {"deleted": self._deleted, "failed": self._failed}
