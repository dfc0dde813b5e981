"""
Unit tests for tracked file and job models.
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from docsync.models.files import (
    ALLOWED_TRANSITIONS,
    FileStatus,
    ScanStats,
    TrackedFile,
    can_transition,
)
from docsync.models.jobs import FilePayload, IngestionJob, TextPayload, payload_adapter


class TestFileStateMachine:
    """Test allowed status transitions"""

    @pytest.mark.parametrize("current,target", [
        (FileStatus.PENDING, FileStatus.PROCESSING),
        (FileStatus.MODIFIED, FileStatus.PROCESSING),
        (FileStatus.PROCESSING, FileStatus.COMPLETED),
        (FileStatus.PROCESSING, FileStatus.ERROR),
        (FileStatus.PROCESSING, FileStatus.MODIFIED),
        (FileStatus.COMPLETED, FileStatus.COMPLETED),
        (FileStatus.ERROR, FileStatus.ERROR),
        (FileStatus.DELETED, FileStatus.PENDING),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (FileStatus.PENDING, FileStatus.COMPLETED),
        (FileStatus.COMPLETED, FileStatus.PROCESSING),
        (FileStatus.DELETED, FileStatus.MODIFIED),
        (FileStatus.DELETED, FileStatus.COMPLETED),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_every_status_can_be_deleted_or_resurrected(self):
        for status, targets in ALLOWED_TRANSITIONS.items():
            if status == FileStatus.DELETED:
                assert targets == {FileStatus.PENDING}
            else:
                assert FileStatus.DELETED in targets


class TestTrackedFile:
    def test_relative_path_rejected(self):
        with pytest.raises(ValidationError):
            TrackedFile(
                file_path="docs/a.pdf", file_name="a.pdf", file_extension=".pdf",
                content_hash="h", last_modified_at=datetime.now()
            )

    def test_file_type_and_needs_processing(self):
        tracked = TrackedFile(
            file_path="/docs/A.PDF", file_name="A.PDF", file_extension=".PDF",
            content_hash="h", last_modified_at=datetime.now()
        )
        assert tracked.file_type == "pdf"
        assert tracked.needs_processing

    def test_scan_stats_totals(self):
        stats = ScanStats(added=1, modified=2, unchanged=3, errors=1, deleted=4)
        assert stats.total_seen == 7
        assert stats.has_changes


class TestJobPayloads:
    """Test the text/file payload union"""

    def test_discriminated_by_kind(self):
        text = payload_adapter.validate_python({"kind": "text", "text": "hi"})
        upload = payload_adapter.validate_python({
            "kind": "file", "file_path": "/tmp/x", "file_type": "pdf", "filename": "x.pdf"
        })
        assert isinstance(text, TextPayload)
        assert isinstance(upload, FilePayload)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            payload_adapter.validate_python({"kind": "url", "url": "https://example.com"})

    def test_text_job_has_no_file(self):
        job = IngestionJob(payload=TextPayload(text="hi"))
        assert job.file_id is None
        assert not job.is_file_job
        assert job.attempts_left == 3
