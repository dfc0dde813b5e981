"""
Storage package for docsync.

Provides the SQLite metadata store for tracked files and folders and the
Qdrant vector store for document embeddings.
"""

from .client import QdrantVectorStore
from .metadata import MetadataStore
from .utils import new_point_id

__all__ = [
    "MetadataStore",
    "QdrantVectorStore",
    "new_point_id",
]
