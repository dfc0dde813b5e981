"""
Tracked file and monitored folder models.

Holds the per-file status state machine used by the scan engine and the
worker terminal callbacks.
"""

import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FileStatus(Enum):
    """Processing status of a tracked file"""
    PENDING = "PENDING"
    MODIFIED = "MODIFIED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    DELETED = "DELETED"


# Edges of the file state machine. COMPLETED->COMPLETED and ERROR->ERROR keep
# terminal writes idempotent when a job is delivered more than once.
ALLOWED_TRANSITIONS: Dict[FileStatus, FrozenSet[FileStatus]] = {
    FileStatus.PENDING: frozenset({
        FileStatus.PROCESSING, FileStatus.MODIFIED, FileStatus.DELETED,
    }),
    FileStatus.MODIFIED: frozenset({
        FileStatus.PROCESSING, FileStatus.MODIFIED, FileStatus.DELETED,
    }),
    FileStatus.PROCESSING: frozenset({
        FileStatus.COMPLETED, FileStatus.ERROR, FileStatus.MODIFIED, FileStatus.DELETED,
    }),
    FileStatus.COMPLETED: frozenset({
        FileStatus.COMPLETED, FileStatus.MODIFIED, FileStatus.DELETED,
    }),
    FileStatus.ERROR: frozenset({
        FileStatus.ERROR, FileStatus.PROCESSING, FileStatus.MODIFIED, FileStatus.DELETED,
    }),
    FileStatus.DELETED: frozenset({FileStatus.PENDING}),
}

# Statuses a new ingestion job may claim a file from
CLAIMABLE_STATUSES: FrozenSet[FileStatus] = frozenset({
    FileStatus.PENDING, FileStatus.MODIFIED,
})


def can_transition(current: FileStatus, target: FileStatus) -> bool:
    """Check whether the state machine allows current -> target"""
    return target in ALLOWED_TRANSITIONS[current]


def _new_id() -> str:
    return uuid.uuid4().hex


class TrackedFile(BaseModel):
    """Durable record of one monitored filesystem path"""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    file_path: str
    file_name: str
    file_extension: str
    content_hash: str
    file_size_bytes: int = Field(default=0, ge=0)
    last_modified_at: datetime
    last_scanned_at: datetime = Field(default_factory=datetime.now)
    status: FileStatus = FileStatus.PENDING
    last_error: Optional[str] = None
    processing_attempts: int = Field(default=0, ge=0)
    vector_id: Optional[str] = None
    folder_id: Optional[str] = None
    # Set by each claim; terminal writes from an older claim are rejected
    claim_token: Optional[str] = None

    @field_validator('file_path')
    @classmethod
    def validate_file_path(cls, v: str) -> str:
        """Tracked paths are stored absolute"""
        if not Path(v).is_absolute():
            raise ValueError('File path must be absolute')
        return v

    @property
    def file_type(self) -> str:
        """Extension without the leading dot, as the parser expects it"""
        return self.file_extension.lstrip('.').lower()

    @property
    def needs_processing(self) -> bool:
        return self.status in CLAIMABLE_STATUSES


class MonitoredFolder(BaseModel):
    """Root directory whose files are tracked"""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    path: str
    name: str
    recursive: bool = True
    scan_pattern: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    file_count: int = 0

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Folder name cannot be empty')
        return v.strip()


class ScanStats(BaseModel):
    """Outcome counters of one folder scan"""
    added: int = 0
    modified: int = 0
    unchanged: int = 0
    errors: int = 0

    # Informational, not part of the added/modified/unchanged partition
    deleted: int = 0
    resurrected: int = 0

    @property
    def total_seen(self) -> int:
        return self.added + self.modified + self.unchanged + self.errors

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)
