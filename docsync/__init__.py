"""
docsync core package

Keeps a vector index of documents in sync with monitored folders: change
detection, a persistent ingestion job queue and embedding workers.
"""

__version__ = "0.1.0"

from .errors import DocSyncError, NonRetryableError
from .service import DocSyncService

__all__ = [
    "DocSyncError",
    "NonRetryableError",
    "DocSyncService",
]
