"""
Tests for vector store synchronization on file changes.
"""

from datetime import datetime

import pytest

from docsync.models.files import TrackedFile
from docsync.sync.synchronizer import VectorStoreSynchronizer


def tracked(vector_id=None) -> TrackedFile:
    return TrackedFile(
        file_path="/docs/a.txt",
        file_name="a.txt",
        file_extension=".txt",
        content_hash="h",
        last_modified_at=datetime.now(),
        vector_id=vector_id
    )


class ExplodingStore:
    async def delete(self, point_ids):
        raise ConnectionError("qdrant unreachable")


class TestVectorStoreSynchronizer:
    """Test best-effort vector deletes"""

    @pytest.mark.asyncio
    async def test_on_modified_deletes_vector(self, synchronizer, vector_store):
        assert await synchronizer.on_modified(tracked("vec-1")) is True
        assert vector_store.deleted == ["vec-1"]

    @pytest.mark.asyncio
    async def test_on_deleted_deletes_vector(self, synchronizer, vector_store):
        await synchronizer.on_deleted(tracked("vec-1"))
        assert vector_store.deleted == ["vec-1"]

    @pytest.mark.asyncio
    async def test_no_vector_no_call(self, synchronizer, vector_store):
        assert await synchronizer.on_deleted(tracked()) is True
        assert vector_store.deleted == []

    @pytest.mark.asyncio
    async def test_failed_delete_is_reported_not_raised(self, synchronizer, vector_store):
        vector_store.fail_deletes = True

        assert await synchronizer.on_modified(tracked("vec-1")) is False
        assert synchronizer.get_stats() == {"deleted": 0, "failed": 1}

    @pytest.mark.asyncio
    async def test_store_exception_is_swallowed(self):
        synchronizer = VectorStoreSynchronizer(ExplodingStore())

        assert await synchronizer.delete_vector("vec-1", "test") is False

    @pytest.mark.asyncio
    async def test_discard_superseded(self, synchronizer, vector_store):
        assert await synchronizer.discard_superseded(None, "vec-2")
        assert await synchronizer.discard_superseded("vec-2", "vec-2")
        assert vector_store.deleted == []

        await synchronizer.discard_superseded("vec-1", "vec-2")
        assert vector_store.deleted == ["vec-1"]

    @pytest.mark.asyncio
    async def test_discard_orphan(self, synchronizer, vector_store):
        await synchronizer.discard_orphan("vec-9", "file-1")
        assert vector_store.deleted == ["vec-9"]
        assert synchronizer.get_stats()["deleted"] == 1
