"""
Exception taxonomy for docsync.

Every error raised by the ingestion pipeline derives from DocSyncError.
Errors that mix in NonRetryableError are failed by the job queue on the
first attempt instead of being retried with backoff.
"""

from typing import Optional


class DocSyncError(Exception):
    """Base class for all docsync errors"""


class NonRetryableError(DocSyncError):
    """Marker for job errors that retrying cannot fix"""


class ValidationError(NonRetryableError):
    """Malformed ingestion request, rejected before it reaches the queue"""

    def __init__(self, message: str, details: Optional[list] = None):
        super().__init__(message)
        self.details = details or []


class UnsupportedFileType(NonRetryableError):
    """Parser has no handler for the requested file type"""

    def __init__(self, file_type: str):
        super().__init__(f"Unsupported file type: {file_type}")
        self.file_type = file_type


class DocumentParseError(NonRetryableError):
    """File has a supported type but its content cannot be read"""


class TransientIOError(DocSyncError):
    """Filesystem or network hiccup during a scan or job step"""


class EmbeddingError(DocSyncError):
    """Embedding provider failed to produce a vector"""


class VectorStoreError(DocSyncError):
    """Vector store rejected an upsert or query"""


class MetadataStoreError(DocSyncError):
    """Metadata store read or write failed"""


class FileNotTrackedError(MetadataStoreError):
    """No tracked file with the given id"""

    def __init__(self, file_id: str):
        super().__init__(f"Tracked file {file_id} not found")
        self.file_id = file_id


class FolderNotFoundError(MetadataStoreError):
    """No monitored folder with the given id"""

    def __init__(self, folder_id: str):
        super().__init__(f"Folder with id {folder_id} not found")
        self.folder_id = folder_id


class FolderInactiveError(MetadataStoreError):
    """Monitored folder exists but is deactivated"""

    def __init__(self, name: str):
        super().__init__(f"Folder {name} is not active")
        self.name = name


class InvalidStatusTransition(MetadataStoreError):
    """Requested status change is not an edge of the file state machine"""

    def __init__(self, file_id: str, current: str, requested: str):
        super().__init__(
            f"Cannot move file {file_id} from {current} to {requested}"
        )
        self.file_id = file_id
        self.current = current
        self.requested = requested


class JobQueueError(DocSyncError):
    """Job queue persistence failed"""


class JobNotFoundError(JobQueueError):
    """No job with the given id"""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class FileBusyError(DocSyncError):
    """File is already claimed by another job or not in a claimable state"""

    def __init__(self, file_id: str, status: Optional[str] = None):
        detail = f" (status: {status})" if status else ""
        super().__init__(f"File {file_id} cannot be claimed for processing{detail}")
        self.file_id = file_id
        self.status = status


class StaleJobError(NonRetryableError):
    """Target file changed or disappeared while its job was running"""


class ConcurrentUpdateError(MetadataStoreError):
    """Row no longer holds the values a conditional write expected"""

    def __init__(self, file_id: str, column: str, expected, actual):
        super().__init__(
            f"File {file_id} changed concurrently: {column} is {actual!r}, expected {expected!r}"
        )
        self.file_id = file_id
        self.column = column
        self.expected = expected
        self.actual = actual


class StalledJobError(NonRetryableError):
    """Job was interrupted by a crash during its final attempt"""
