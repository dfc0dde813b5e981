"""
Job queue, worker pool and vector store synchronization for docsync.
"""

from .ingestion import IngestionService
from .processor import IngestionProcessor
from .queue import JobQueue, QueueMetrics
from .synchronizer import VectorStoreSynchronizer
from .worker import WorkerPool, WorkerStats

__all__ = [
    "IngestionProcessor",
    "IngestionService",
    "JobQueue",
    "QueueMetrics",
    "VectorStoreSynchronizer",
    "WorkerPool",
    "WorkerStats",
]
