"""
End-to-end pipeline tests: scan, queue, workers and vector store together.

Stores are real SQLite files; Qdrant and the embedding provider are fakes.
"""

import asyncio

import pytest
import pytest_asyncio

from docsync.models.config import QueueConfig, ScanConfig, ServiceConfig
from docsync.models.files import FileStatus
from docsync.models.jobs import JobState
from docsync.service import DocSyncService

from tests.conftest import FakeEmbedder, FakeVectorStore, make_pdf


@pytest_asyncio.fixture
async def service(tmp_path, docs_dir):
    config = ServiceConfig(
        data_dir=tmp_path / "data",
        queue=QueueConfig(concurrency=2, backoff_delay_ms=0, poll_interval=0.05),
        scan=ScanConfig(watch_folder=docs_dir, watch_folder_name="Inbox")
    )
    service = DocSyncService(config, vector_store=FakeVectorStore(), embedder=FakeEmbedder())
    await service.start()
    yield service
    await service.stop()


async def sync_and_drain(service: DocSyncService) -> dict:
    summary = await service.sync_once()
    await service.workers.start()
    try:
        await asyncio.wait_for(service.workers.drain(), timeout=5.0)
    finally:
        await service.workers.stop()
    return summary


class TestFolderPipeline:
    """Test files flowing from a monitored folder into the vector store"""

    @pytest.mark.asyncio
    async def test_pdf_ingested(self, service, docs_dir):
        (docs_dir / "doc.pdf").write_bytes(make_pdf(["Annual report", "Financial summary"]))

        summary = await sync_and_drain(service)

        assert summary["scans"]["Inbox"].added == 1
        assert summary["queued"] == 1

        tracked = await service.metadata_store.get_file_by_path(str((docs_dir / "doc.pdf").resolve()))
        assert tracked.status == FileStatus.COMPLETED
        assert tracked.vector_id in service.vector_store.points

        point = service.vector_store.points[tracked.vector_id]
        assert point.metadata["originalFilename"] == "doc.pdf"
        assert point.metadata["fileId"] == tracked.id
        assert point.metadata["source"] == "monitored-folder"
        assert point.metadata["pageCount"] == 2

    @pytest.mark.asyncio
    async def test_unchanged_rescan_queues_nothing(self, service, docs_dir):
        (docs_dir / "notes.txt").write_text("first version")
        await sync_and_drain(service)

        summary = await sync_and_drain(service)

        assert summary["scans"]["Inbox"].unchanged == 1
        assert summary["queued"] == 0
        assert len(service.vector_store.points) == 1

    @pytest.mark.asyncio
    async def test_modified_file_replaces_vector(self, service, docs_dir):
        path = docs_dir / "notes.txt"
        path.write_text("first version")
        await sync_and_drain(service)
        tracked = await service.metadata_store.get_file_by_path(str(path.resolve()))
        old_vector = tracked.vector_id

        path.write_text("second version")
        summary = await sync_and_drain(service)

        assert summary["scans"]["Inbox"].modified == 1
        tracked = await service.metadata_store.get_file(tracked.id)
        assert tracked.status == FileStatus.COMPLETED
        assert tracked.vector_id != old_vector
        assert list(service.vector_store.points) == [tracked.vector_id]
        assert service.vector_store.points[tracked.vector_id].text == "second version"

    @pytest.mark.asyncio
    async def test_deleted_file_removes_vector(self, service, docs_dir):
        path = docs_dir / "notes.txt"
        path.write_text("short lived")
        await sync_and_drain(service)

        path.unlink()
        summary = await sync_and_drain(service)

        assert summary["scans"]["Inbox"].deleted == 1
        assert service.vector_store.points == {}
        status = await service.get_status()
        assert status["files"]["DELETED"] == 1

    @pytest.mark.asyncio
    async def test_unsupported_file_ends_in_error(self, service, docs_dir):
        (docs_dir / "sheet.xlsx").write_bytes(b"PK")

        await sync_and_drain(service)

        tracked = await service.metadata_store.get_file_by_path(str((docs_dir / "sheet.xlsx").resolve()))
        assert tracked.status == FileStatus.ERROR
        assert "Unsupported file type" in tracked.last_error
        counts = await service.queue.counts()
        assert counts["failed"] == 1


class TestDirectIngestion:
    """Test text submitted without a monitored folder"""

    @pytest.mark.asyncio
    async def test_text_then_search(self, service):
        job_id = await service.ingestion.enqueue_text_ingestion("Vector databases store embeddings")
        await sync_and_drain(service)

        job = await service.ingestion.get_job(job_id)
        assert job.state == JobState.COMPLETED

        hits = await service.search("embeddings", limit=3)
        assert [hit.id for hit in hits] == [job.result.id]
        assert hits[0].text == "Vector databases store embeddings"


class TestServiceStatus:
    """Test the status summary"""

    @pytest.mark.asyncio
    async def test_status_counts_vectors(self, service):
        await service.ingestion.enqueue_text_ingestion("Vector databases store embeddings")
        await sync_and_drain(service)

        status = await service.get_status(include_vectors=True)

        assert status["vectors"] == 1
        assert status["jobs"]["completed"] == 1

    @pytest.mark.asyncio
    async def test_status_with_unreachable_vector_store(self, service):
        service.vector_store.reachable = False

        status = await service.get_status(include_vectors=True)

        assert status["vectors"] is None
        assert "vectors" not in await service.get_status()
