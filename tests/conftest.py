"""
Shared fixtures for docsync tests.

Stores run on real SQLite files under tmp_path; the vector store and the
embedding provider are in-process fakes.
"""

import hashlib
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from docsync.embeddings.base import BaseEmbedder
from docsync.errors import EmbeddingError
from docsync.indexer.scan_engine import ScanEngine
from docsync.models.jobs import RetryPolicy, BackoffPolicy
from docsync.models.storage import SearchHit, StorageResult, VectorPoint
from docsync.storage.metadata import MetadataStore
from docsync.sync.queue import JobQueue
from docsync.sync.synchronizer import VectorStoreSynchronizer


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVectorStore:
    """In-memory stand-in for QdrantVectorStore"""

    def __init__(self):
        self.points: Dict[str, VectorPoint] = {}
        self.deleted: List[str] = []
        self.fail_upserts = False
        self.fail_deletes = False
        self.reachable = True
        self.collection_name = "test"

    async def connect(self) -> bool:
        return self.reachable

    async def ensure_collection(self, vector_size: Optional[int] = None) -> StorageResult:
        return StorageResult.successful("create_collection", self.collection_name, 0, 0.0)

    async def upsert(self, points: List[VectorPoint]) -> StorageResult:
        if self.fail_upserts:
            return StorageResult.failed_operation("upsert", self.collection_name, "qdrant down", 0.0)
        for point in points:
            self.points[point.id] = point
        return StorageResult.successful("upsert", self.collection_name, len(points), 0.0)

    async def delete(self, point_ids: List[str]) -> StorageResult:
        if self.fail_deletes:
            return StorageResult.failed_operation("delete", self.collection_name, "qdrant down", 0.0)
        for point_id in point_ids:
            self.deleted.append(point_id)
            self.points.pop(point_id, None)
        return StorageResult.successful("delete", self.collection_name, len(point_ids), 0.0)

    async def query(self, vector, limit: int = 10, filters=None) -> List[SearchHit]:
        hits = [
            SearchHit(id=point.id, score=1.0, text=point.text, metadata=point.metadata)
            for point in self.points.values()
        ]
        return hits[:limit]

    async def count(self) -> int:
        return len(self.points)

    async def close(self) -> None:
        pass


class FakeEmbedder(BaseEmbedder):
    """Deterministic embedder; optionally fails the first N calls"""

    def __init__(self, dimensions: int = 8, fail_times: int = 0):
        super().__init__()
        self._dimensions = dimensions
        self.fail_times = fail_times
        self.calls = 0

    @property
    def model_name(self) -> str:
        return "fake-embedder"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def max_sequence_length(self) -> int:
        return 100_000

    async def load_model(self) -> bool:
        self._model = object()
        self._is_loaded = True
        return True

    async def unload_model(self) -> None:
        self._model = None
        self._is_loaded = False

    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise EmbeddingError("provider unavailable")

        vectors = []
        for text in texts:
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            vectors.append([b / 255 for b in digest[:self._dimensions]])
        return vectors


def make_pdf(pages: List[str]) -> bytes:
    """Build a minimal PDF with one line of Helvetica text per page"""
    objects: List[bytes] = []
    kids = " ".join(f"{4 + 2 * i} 0 R" for i in range(len(pages)))

    objects.append(b"<< /Type /Catalog /Pages 2 0 R >>")
    objects.append(f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode())
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    for i, text in enumerate(pages):
        content = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode()
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {5 + 2 * i} 0 R >>"
            ).encode()
        )
        objects.append(
            f"<< /Length {len(content)} >>\nstream\n".encode() + content + b"\nendstream"
        )

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, backoff=BackoffPolicy(delay_ms=1000))


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def synchronizer(vector_store) -> VectorStoreSynchronizer:
    return VectorStoreSynchronizer(vector_store)


@pytest.fixture
def docs_dir(tmp_path) -> Path:
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def metadata_store(tmp_path):
    store = MetadataStore(tmp_path / "data" / "tracking.db")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def job_queue(tmp_path, clock, fast_retry_policy):
    queue = JobQueue(tmp_path / "data" / "queue.db", retry_policy=fast_retry_policy, clock=clock)
    await queue.initialize()
    yield queue
    await queue.close()


@pytest.fixture
def scan_engine(metadata_store, synchronizer) -> ScanEngine:
    return ScanEngine(metadata_store, synchronizer)
