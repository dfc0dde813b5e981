"""
Core data models for docsync

Pydantic models for tracked files, ingestion jobs, storage and configuration.
"""

from .files import (
    ALLOWED_TRANSITIONS,
    CLAIMABLE_STATUSES,
    FileStatus,
    MonitoredFolder,
    ScanStats,
    TrackedFile,
    can_transition,
)
from .jobs import (
    BackoffPolicy,
    FilePayload,
    IngestionJob,
    JobPayload,
    JobResult,
    JobState,
    RetryPolicy,
    TextPayload,
)
from .storage import SearchHit, StorageResult, VectorPoint
from .config import (
    EmbeddingConfig,
    GlobalSettings,
    QdrantConfig,
    QueueConfig,
    ScanConfig,
    ServiceConfig,
)

__all__ = [
    # Files
    "ALLOWED_TRANSITIONS",
    "CLAIMABLE_STATUSES",
    "FileStatus",
    "MonitoredFolder",
    "ScanStats",
    "TrackedFile",
    "can_transition",

    # Jobs
    "BackoffPolicy",
    "FilePayload",
    "IngestionJob",
    "JobPayload",
    "JobResult",
    "JobState",
    "RetryPolicy",
    "TextPayload",

    # Storage
    "SearchHit",
    "StorageResult",
    "VectorPoint",

    # Configuration
    "EmbeddingConfig",
    "GlobalSettings",
    "QdrantConfig",
    "QueueConfig",
    "ScanConfig",
    "ServiceConfig",
]
