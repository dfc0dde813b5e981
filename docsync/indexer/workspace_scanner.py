"""
Filesystem traversal for folder scans.

Uses os.scandir for fast directory walking and returns the stat data the
scan engine needs to build tracked file records.
"""

import asyncio
import fnmatch
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


DEFAULT_EXCLUDE_DIRS = frozenset({
    'node_modules', '__pycache__', '.git', '.svn', '.hg',
    '.cache', '.pytest_cache', '.mypy_cache', 'venv', '.venv',
})


@dataclass
class FileEntry:
    """One regular file found during a folder walk"""
    path: str
    name: str
    extension: str
    size: int
    mtime: float
    error: Optional[str] = None

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.mtime)


def matches_pattern(file_name: str, pattern: Optional[str]) -> bool:
    """Glob match against the file name; no pattern matches everything"""
    if not pattern:
        return True
    return fnmatch.fnmatch(file_name, pattern)


class WorkspaceScanner:
    """
    Collects the regular files under a folder.

    Hidden entries and common build/cache directories are skipped. Symlinks
    are not followed.
    """

    def __init__(self, exclude_dirs: Optional[Iterable[str]] = None):
        self.exclude_dirs = frozenset(exclude_dirs) if exclude_dirs is not None else DEFAULT_EXCLUDE_DIRS

    async def collect_files(
        self,
        root: Path,
        recursive: bool = True,
        pattern: Optional[str] = None
    ) -> Dict[str, FileEntry]:
        """
        Walk ``root`` and return matching files keyed by absolute path.

        Args:
            root: Folder to scan
            recursive: Descend into subdirectories
            pattern: Optional fnmatch pattern applied to file names (e.g. ``*.pdf``)

        Raises:
            FileNotFoundError: root does not exist or is not a directory
        """
        root = Path(root).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Folder does not exist: {root}")

        start_time = time.perf_counter()
        files = await asyncio.to_thread(self._walk, root, recursive, pattern)
        scan_time = time.perf_counter() - start_time

        logger.debug(f"Collected {len(files)} files under {root} in {scan_time:.3f}s")
        return files

    def _walk(self, root: Path, recursive: bool, pattern: Optional[str]) -> Dict[str, FileEntry]:
        found: Dict[str, FileEntry] = {}

        def scan_directory(dir_path: Path) -> None:
            try:
                with os.scandir(str(dir_path)) as entries:
                    for entry in entries:
                        try:
                            if entry.name.startswith('.'):
                                continue

                            if entry.is_dir(follow_symlinks=False):
                                if recursive and entry.name not in self.exclude_dirs:
                                    scan_directory(Path(entry.path))

                            elif entry.is_file(follow_symlinks=False):
                                if not matches_pattern(entry.name, pattern):
                                    continue

                                extension = os.path.splitext(entry.name)[1].lower()
                                try:
                                    stat_result = entry.stat(follow_symlinks=False)
                                except OSError as e:
                                    # Still reported so the file is not mistaken for deleted
                                    found[entry.path] = FileEntry(
                                        entry.path, entry.name, extension, 0, 0.0, error=str(e)
                                    )
                                    continue

                                found[entry.path] = FileEntry(
                                    path=entry.path,
                                    name=entry.name,
                                    extension=extension,
                                    size=stat_result.st_size,
                                    mtime=stat_result.st_mtime
                                )

                        except OSError as e:
                            logger.debug(f"Skipping entry {entry.name}: {e}")

            except OSError as e:
                logger.warning(f"Cannot scan directory {dir_path}: {e}")

        scan_directory(root)
        return found
