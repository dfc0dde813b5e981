"""
Indexer package for docsync.

Folder walking, content hashing and the scan engine that classifies files
as added, modified, unchanged or deleted.
"""

from .hashing import compute_file_hash, hash_bytes
from .scan_engine import ScanEngine
from .workspace_scanner import FileEntry, WorkspaceScanner, matches_pattern

__all__ = [
    "FileEntry",
    "ScanEngine",
    "WorkspaceScanner",
    "compute_file_hash",
    "hash_bytes",
    "matches_pattern",
]
