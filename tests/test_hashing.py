"""
Unit tests for content hashing and folder walking.
"""

import hashlib
import os

import pytest

from docsync.errors import TransientIOError
from docsync.indexer.hashing import CHUNK_SIZE, compute_file_hash, hash_bytes
from docsync.indexer.workspace_scanner import WorkspaceScanner, matches_pattern


class TestComputeFileHash:
    """Test SHA256 file hashing"""

    @pytest.mark.asyncio
    async def test_matches_hashlib(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello world")

        assert await compute_file_hash(path) == hashlib.sha256(b"hello world").hexdigest()

    @pytest.mark.asyncio
    async def test_large_file_spans_chunks(self, tmp_path):
        """Test files larger than one read chunk hash correctly"""
        data = os.urandom(CHUNK_SIZE * 3 + 17)
        path = tmp_path / "big.bin"
        path.write_bytes(data)

        assert await compute_file_hash(path) == hash_bytes(data)

    @pytest.mark.asyncio
    async def test_single_byte_difference(self, tmp_path):
        """Test files differing in one byte get different hashes"""
        data = bytearray(os.urandom(CHUNK_SIZE + 5))
        original = tmp_path / "original.bin"
        original.write_bytes(bytes(data))

        data[CHUNK_SIZE + 2] ^= 0x01
        flipped = tmp_path / "flipped.bin"
        flipped.write_bytes(bytes(data))

        assert await compute_file_hash(original) != await compute_file_hash(flipped)

    @pytest.mark.asyncio
    async def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")

        assert await compute_file_hash(path) == hashlib.sha256(b"").hexdigest()

    @pytest.mark.asyncio
    async def test_missing_file_raises_transient_error(self, tmp_path):
        with pytest.raises(TransientIOError):
            await compute_file_hash(tmp_path / "missing.txt")


class TestWorkspaceScanner:
    """Test folder traversal"""

    def test_matches_pattern(self):
        assert matches_pattern("report.pdf", "*.pdf")
        assert not matches_pattern("notes.txt", "*.pdf")
        assert matches_pattern("notes.txt", None)

    @pytest.mark.asyncio
    async def test_collects_files_recursively(self, docs_dir):
        (docs_dir / "a.txt").write_text("a")
        (docs_dir / "sub").mkdir()
        (docs_dir / "sub" / "b.pdf").write_bytes(b"b")

        files = await WorkspaceScanner().collect_files(docs_dir)

        names = sorted(entry.name for entry in files.values())
        assert names == ["a.txt", "b.pdf"]
        entry = files[str((docs_dir / "sub" / "b.pdf").resolve())]
        assert entry.extension == ".pdf"
        assert entry.size == 1

    @pytest.mark.asyncio
    async def test_non_recursive(self, docs_dir):
        (docs_dir / "a.txt").write_text("a")
        (docs_dir / "sub").mkdir()
        (docs_dir / "sub" / "b.txt").write_text("b")

        files = await WorkspaceScanner().collect_files(docs_dir, recursive=False)

        assert [entry.name for entry in files.values()] == ["a.txt"]

    @pytest.mark.asyncio
    async def test_skips_hidden_and_excluded(self, docs_dir):
        (docs_dir / ".hidden.txt").write_text("x")
        (docs_dir / "node_modules").mkdir()
        (docs_dir / "node_modules" / "dep.txt").write_text("x")
        (docs_dir / "keep.txt").write_text("x")

        files = await WorkspaceScanner().collect_files(docs_dir)

        assert [entry.name for entry in files.values()] == ["keep.txt"]

    @pytest.mark.asyncio
    async def test_pattern_filter(self, docs_dir):
        (docs_dir / "a.pdf").write_bytes(b"a")
        (docs_dir / "b.txt").write_text("b")

        files = await WorkspaceScanner().collect_files(docs_dir, pattern="*.pdf")

        assert [entry.name for entry in files.values()] == ["a.pdf"]

    @pytest.mark.asyncio
    async def test_missing_root(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await WorkspaceScanner().collect_files(tmp_path / "missing")
