"""
Folder scan engine.

Walks monitored folders, hashes every file and reconciles the result with the
metadata store: new files become PENDING, changed files MODIFIED, missing
files DELETED and reappearing files are resurrected to PENDING. Vectors of
modified and deleted files are removed before the new status is written.
"""

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from ..errors import (
    ConcurrentUpdateError,
    DocSyncError,
    FolderInactiveError,
    FolderNotFoundError,
    MetadataStoreError,
    TransientIOError,
    ValidationError,
)
from ..models.config import ScanConfig
from ..models.files import FileStatus, MonitoredFolder, ScanStats, TrackedFile
from ..storage.metadata import MetadataStore
from ..sync.synchronizer import VectorStoreSynchronizer
from .hashing import compute_file_hash
from .workspace_scanner import FileEntry, WorkspaceScanner

logger = logging.getLogger(__name__)


Hasher = Callable[[Union[str, Path]], Awaitable[str]]

# Attempts to reconcile one file against concurrent terminal writes
_RECONCILE_RETRIES = 3


class ScanEngine:
    """
    Detects added, modified, unchanged and deleted files per monitored folder.

    A scan runs to completion and is serialized per engine instance. Per-file
    read failures are counted in ``errors``; metadata store failures abort
    the scan.
    """

    def __init__(
        self,
        metadata_store: MetadataStore,
        synchronizer: VectorStoreSynchronizer,
        config: Optional[ScanConfig] = None,
        hasher: Hasher = compute_file_hash
    ):
        self.store = metadata_store
        self.synchronizer = synchronizer
        self.config = config or ScanConfig()
        self.scanner = WorkspaceScanner(exclude_dirs=self.config.exclude_dirs)
        self._hasher = hasher
        self._scan_lock = asyncio.Lock()

    # --- Folder management ---

    async def add_monitored_folder(
        self,
        path: Union[str, Path],
        name: str,
        recursive: bool = True,
        scan_pattern: Optional[str] = None
    ) -> MonitoredFolder:
        """
        Start monitoring a folder.

        Raises:
            ValidationError: path is not a directory, name is empty or the
                folder is already monitored
        """
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_dir():
            raise ValidationError(f"Folder does not exist: {resolved}")

        if await self.store.get_folder_by_path(str(resolved)):
            raise ValidationError(f"Folder already monitored: {resolved}")

        try:
            folder = MonitoredFolder(
                path=str(resolved),
                name=name,
                recursive=recursive,
                scan_pattern=scan_pattern or None
            )
        except ValueError as e:
            raise ValidationError(f"Invalid folder definition: {e}") from e

        return await self.store.create_folder(folder)

    async def list_monitored_folders(self) -> List[MonitoredFolder]:
        return await self.store.list_folders()

    async def activate_folder(self, folder_id: str) -> None:
        await self.store.set_folder_active(folder_id, True)

    async def deactivate_folder(self, folder_id: str) -> None:
        await self.store.set_folder_active(folder_id, False)

    async def ensure_default_folder(self) -> Optional[MonitoredFolder]:
        """Register the configured watch folder on first use"""
        if self.config.watch_folder is None:
            return None

        resolved = Path(self.config.watch_folder).expanduser().resolve()
        existing = await self.store.get_folder_by_path(str(resolved))
        if existing:
            return existing

        if not resolved.exists():
            resolved.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created watch folder {resolved}")

        return await self.add_monitored_folder(
            resolved,
            self.config.watch_folder_name,
            recursive=self.config.recursive,
            scan_pattern=self.config.scan_pattern
        )

    # --- Scanning ---

    async def scan_folder(self, folder_id: Optional[str] = None) -> ScanStats:
        """
        Scan one folder and reconcile it with the metadata store.

        Args:
            folder_id: Folder to scan; None scans the configured default folder

        Raises:
            FolderNotFoundError: unknown folder or no default configured
            FolderInactiveError: folder is deactivated
            TransientIOError: folder root cannot be listed
            MetadataStoreError: metadata read or write failed
        """
        if folder_id is None:
            folder = await self.ensure_default_folder()
            if folder is None:
                raise FolderNotFoundError("default")
        else:
            folder = await self.store.require_folder(folder_id)

        if not folder.is_active:
            raise FolderInactiveError(folder.name)

        async with self._scan_lock:
            return await self._scan(folder)

    async def scan_all_folders(self) -> Dict[str, ScanStats]:
        """Scan every active folder; a failing folder reports errors=1"""
        await self.ensure_default_folder()

        results: Dict[str, ScanStats] = {}
        for folder in await self.store.list_folders(active_only=True):
            try:
                results[folder.name] = await self.scan_folder(folder.id)
            except DocSyncError as e:
                logger.error(f"Scan of folder '{folder.name}' failed: {e}")
                results[folder.name] = ScanStats(errors=1)

        return results

    async def _scan(self, folder: MonitoredFolder) -> ScanStats:
        start_time = time.perf_counter()
        stats = ScanStats()

        try:
            entries = await self.scanner.collect_files(
                Path(folder.path),
                recursive=folder.recursive,
                pattern=folder.scan_pattern
            )
        except OSError as e:
            raise TransientIOError(f"Cannot list folder {folder.path}: {e}") from e

        seen: Set[str] = set()
        for path, entry in entries.items():
            seen.add(path)
            try:
                await self._reconcile_file(folder, entry, stats)
            except TransientIOError as e:
                logger.warning(f"Scan error on {path}: {e}")
                stats.errors += 1

        stats.deleted = await self._mark_deleted_files(folder, seen)

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"Scanned '{folder.name}' in {elapsed:.3f}s: {stats.added} added, "
            f"{stats.modified} modified, {stats.unchanged} unchanged, "
            f"{stats.deleted} deleted, {stats.errors} errors"
        )
        return stats

    async def _reconcile_file(self, folder: MonitoredFolder, entry: FileEntry, stats: ScanStats) -> None:
        if entry.error:
            raise TransientIOError(f"Cannot stat {entry.path}: {entry.error}")

        content_hash = await self._hasher(entry.path)

        # A worker may commit a terminal write between our read and our write;
        # decide again from a fresh read when that happens
        for _ in range(_RECONCILE_RETRIES):
            try:
                await self._apply_scan_result(folder, entry, content_hash, stats)
                return
            except ConcurrentUpdateError as e:
                logger.debug(f"{entry.name} changed during reconcile, re-reading: {e}")

        raise MetadataStoreError(f"Could not reconcile {entry.path}: concurrent updates")

    async def _apply_scan_result(
        self,
        folder: MonitoredFolder,
        entry: FileEntry,
        content_hash: str,
        stats: ScanStats
    ) -> None:
        now = datetime.now()
        existing = await self.store.get_file_by_path(entry.path)

        if existing is None:
            await self.store.create_file(TrackedFile(
                file_path=entry.path,
                file_name=entry.name,
                file_extension=entry.extension,
                content_hash=content_hash,
                file_size_bytes=entry.size,
                last_modified_at=entry.modified_at,
                last_scanned_at=now,
                status=FileStatus.PENDING,
                folder_id=folder.id
            ))
            stats.added += 1
            return

        if existing.status == FileStatus.DELETED:
            await self.store.update_file(
                existing.id,
                expect={"status": FileStatus.DELETED},
                status=FileStatus.PENDING,
                content_hash=content_hash,
                file_size_bytes=entry.size,
                last_modified_at=entry.modified_at,
                last_scanned_at=now,
                processing_attempts=0,
                last_error=None,
                vector_id=None,
                claim_token=None,
                folder_id=folder.id
            )
            logger.info(f"Resurrected {entry.name}")
            stats.added += 1
            stats.resurrected += 1
            return

        if existing.content_hash != content_hash:
            if existing.vector_id:
                await self.synchronizer.on_modified(existing)
            await self.store.update_file(
                existing.id,
                expect=_snapshot(existing),
                status=FileStatus.MODIFIED,
                content_hash=content_hash,
                file_size_bytes=entry.size,
                last_modified_at=entry.modified_at,
                last_scanned_at=now,
                processing_attempts=0,
                last_error=None,
                vector_id=None,
                claim_token=None
            )
            logger.debug(f"Content changed: {entry.name}")
            stats.modified += 1
            return

        await self.store.update_file(existing.id, last_scanned_at=now)
        stats.unchanged += 1

    async def _mark_deleted_files(self, folder: MonitoredFolder, seen: Set[str]) -> int:
        tracked = await self.store.list_files(
            folder_id=folder.id,
            exclude_statuses=[FileStatus.DELETED]
        )
        missing = [f for f in tracked if f.file_path not in seen]

        for tracked_file in missing:
            await self._mark_deleted(tracked_file)
            logger.info(f"File removed from disk: {tracked_file.file_path}")

        return len(missing)

    async def _mark_deleted(self, tracked_file: TrackedFile) -> None:
        for _ in range(_RECONCILE_RETRIES):
            if tracked_file.vector_id:
                await self.synchronizer.on_deleted(tracked_file)
            try:
                await self.store.update_file(
                    tracked_file.id,
                    expect=_snapshot(tracked_file),
                    status=FileStatus.DELETED,
                    vector_id=None,
                    claim_token=None,
                    last_scanned_at=datetime.now()
                )
                return
            except ConcurrentUpdateError as e:
                logger.debug(f"{tracked_file.file_name} changed while marking it deleted: {e}")
                tracked_file = await self.store.require_file(tracked_file.id)

        raise MetadataStoreError(f"Could not mark {tracked_file.file_path} deleted: concurrent updates")


def _snapshot(tracked: TrackedFile) -> Dict[str, object]:
    """Columns a scan decision depends on; the write is rejected if they moved"""
    return {"status": tracked.status, "vector_id": tracked.vector_id}
