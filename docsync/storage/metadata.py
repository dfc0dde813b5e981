"""
SQLite-backed metadata store for tracked files and monitored folders.

Every tracked file row is written by exactly two actors: the scan engine
(hash comparisons) and the worker terminal callback (COMPLETED/ERROR). Status
changes are validated against the file state machine and applied with a
conditional UPDATE on the previously read status, so a concurrent writer can
never silently overwrite a transition it did not see. Terminal writes are
additionally tied to the claim token issued when the job claimed the file.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import aiosqlite

from ..errors import (
    ConcurrentUpdateError,
    FileBusyError,
    FileNotTrackedError,
    FolderNotFoundError,
    InvalidStatusTransition,
    MetadataStoreError,
)
from ..models.files import (
    CLAIMABLE_STATUSES,
    FileStatus,
    MonitoredFolder,
    TrackedFile,
    can_transition,
)

logger = logging.getLogger(__name__)


_FILE_COLUMNS = (
    "id", "file_path", "file_name", "file_extension", "content_hash",
    "file_size_bytes", "last_modified_at", "last_scanned_at", "status",
    "last_error", "processing_attempts", "vector_id", "folder_id", "claim_token",
)

# Columns callers may change through update_file / update_many
_MUTABLE_FILE_COLUMNS = frozenset(_FILE_COLUMNS) - {"id", "file_path"}

# Conditional updates retry this many times when a concurrent writer moved
# the row between our read and our write
_CAS_RETRIES = 3


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, FileStatus):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _row_to_file(row: aiosqlite.Row) -> TrackedFile:
    return TrackedFile(
        id=row["id"],
        file_path=row["file_path"],
        file_name=row["file_name"],
        file_extension=row["file_extension"],
        content_hash=row["content_hash"],
        file_size_bytes=row["file_size_bytes"],
        last_modified_at=datetime.fromisoformat(row["last_modified_at"]),
        last_scanned_at=datetime.fromisoformat(row["last_scanned_at"]),
        status=FileStatus(row["status"]),
        last_error=row["last_error"],
        processing_attempts=row["processing_attempts"],
        vector_id=row["vector_id"],
        folder_id=row["folder_id"],
        claim_token=row["claim_token"],
    )


def _row_to_folder(row: aiosqlite.Row) -> MonitoredFolder:
    keys = row.keys()
    return MonitoredFolder(
        id=row["id"],
        path=row["path"],
        name=row["name"],
        recursive=bool(row["recursive"]),
        scan_pattern=row["scan_pattern"],
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        file_count=row["file_count"] if "file_count" in keys else 0,
    )


class MetadataStore:
    """
    Durable record of every tracked file and monitored folder.

    Wraps a single aiosqlite connection. Database errors surface as
    MetadataStoreError and are never retried here; callers of scan and
    mark_file_* operations decide what to do with them.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def initialize(self) -> None:
        """Open the database and create tables if they do not exist"""
        if self._db is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")

            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS monitored_folders (
                    id TEXT PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    recursive INTEGER NOT NULL DEFAULT 1,
                    scan_pattern TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)

            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS tracked_files (
                    id TEXT PRIMARY KEY,
                    file_path TEXT NOT NULL UNIQUE,
                    file_name TEXT NOT NULL,
                    file_extension TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    file_size_bytes INTEGER NOT NULL DEFAULT 0,
                    last_modified_at TEXT NOT NULL,
                    last_scanned_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    last_error TEXT,
                    processing_attempts INTEGER NOT NULL DEFAULT 0,
                    vector_id TEXT,
                    folder_id TEXT REFERENCES monitored_folders(id),
                    claim_token TEXT
                )
            """)
            await self._add_missing_columns()

            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_files_status ON tracked_files(status)"
            )
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_files_folder ON tracked_files(folder_id)"
            )

            await self._db.commit()
        except aiosqlite.Error as e:
            raise MetadataStoreError(f"Failed to initialize metadata store at {self.db_path}: {e}") from e

        logger.info(f"Metadata store ready at {self.db_path}")

    async def _add_missing_columns(self) -> None:
        """Bring tracked_files created by an older release up to date"""
        async with self._db.execute("PRAGMA table_info(tracked_files)") as cursor:
            existing = {row["name"] for row in await cursor.fetchall()}

        if "claim_token" not in existing:
            await self._db.execute("ALTER TABLE tracked_files ADD COLUMN claim_token TEXT")
            logger.info("Added claim_token column to tracked_files")

    async def close(self) -> None:
        """Close the database connection"""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise MetadataStoreError("Metadata store is not initialized")
        return self._db

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one write statement and commit; returns the affected row count"""
        try:
            cursor = await self.db.execute(sql, tuple(params))
            await self.db.commit()
            return cursor.rowcount
        except aiosqlite.Error as e:
            raise MetadataStoreError(f"Metadata write failed: {e}") from e

    async def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        try:
            async with self.db.execute(sql, tuple(params)) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise MetadataStoreError(f"Metadata read failed: {e}") from e

    async def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        try:
            async with self.db.execute(sql, tuple(params)) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise MetadataStoreError(f"Metadata read failed: {e}") from e

    # --- Monitored folders ---

    async def create_folder(self, folder: MonitoredFolder) -> MonitoredFolder:
        """Persist a new monitored folder"""
        await self._execute(
            """
            INSERT INTO monitored_folders (id, path, name, recursive, scan_pattern, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                folder.id, folder.path, folder.name, int(folder.recursive),
                folder.scan_pattern, int(folder.is_active), folder.created_at.isoformat(),
            ),
        )
        logger.info(f"Added monitored folder '{folder.name}' at {folder.path}")
        return folder

    async def get_folder(self, folder_id: str) -> Optional[MonitoredFolder]:
        row = await self._fetchone("SELECT * FROM monitored_folders WHERE id = ?", (folder_id,))
        return _row_to_folder(row) if row else None

    async def require_folder(self, folder_id: str) -> MonitoredFolder:
        folder = await self.get_folder(folder_id)
        if folder is None:
            raise FolderNotFoundError(folder_id)
        return folder

    async def get_folder_by_path(self, path: str) -> Optional[MonitoredFolder]:
        row = await self._fetchone("SELECT * FROM monitored_folders WHERE path = ?", (path,))
        return _row_to_folder(row) if row else None

    async def list_folders(self, active_only: bool = False) -> List[MonitoredFolder]:
        """List folders together with the number of files tracked under each"""
        sql = """
            SELECT f.*, COUNT(t.id) AS file_count
            FROM monitored_folders f
            LEFT JOIN tracked_files t ON t.folder_id = f.id
        """
        if active_only:
            sql += " WHERE f.is_active = 1"
        sql += " GROUP BY f.id ORDER BY f.created_at"
        rows = await self._fetchall(sql)
        return [_row_to_folder(row) for row in rows]

    async def set_folder_active(self, folder_id: str, active: bool) -> None:
        affected = await self._execute(
            "UPDATE monitored_folders SET is_active = ? WHERE id = ?",
            (int(active), folder_id),
        )
        if affected == 0:
            raise FolderNotFoundError(folder_id)
        logger.info(f"Folder {folder_id} {'activated' if active else 'deactivated'}")

    # --- Tracked files ---

    async def create_file(self, tracked: TrackedFile) -> TrackedFile:
        """Insert a new tracked file; file_path must not be tracked yet"""
        placeholders = ", ".join("?" for _ in _FILE_COLUMNS)
        values = [_to_db(getattr(tracked, column)) for column in _FILE_COLUMNS]
        await self._execute(
            f"INSERT INTO tracked_files ({', '.join(_FILE_COLUMNS)}) VALUES ({placeholders})",
            values,
        )
        logger.debug(f"Tracking new file {tracked.file_path} ({tracked.status.value})")
        return tracked

    async def get_file(self, file_id: str) -> Optional[TrackedFile]:
        row = await self._fetchone("SELECT * FROM tracked_files WHERE id = ?", (file_id,))
        return _row_to_file(row) if row else None

    async def require_file(self, file_id: str) -> TrackedFile:
        tracked = await self.get_file(file_id)
        if tracked is None:
            raise FileNotTrackedError(file_id)
        return tracked

    async def get_file_by_path(self, file_path: str) -> Optional[TrackedFile]:
        row = await self._fetchone("SELECT * FROM tracked_files WHERE file_path = ?", (file_path,))
        return _row_to_file(row) if row else None

    async def list_files(
        self,
        folder_id: Optional[str] = None,
        statuses: Optional[Iterable[FileStatus]] = None,
        exclude_statuses: Optional[Iterable[FileStatus]] = None,
        limit: Optional[int] = None
    ) -> List[TrackedFile]:
        """Read tracked files filtered by folder and status"""
        clauses: List[str] = []
        params: List[Any] = []

        if folder_id is not None:
            clauses.append("folder_id = ?")
            params.append(folder_id)

        if statuses is not None:
            values = [s.value for s in statuses]
            clauses.append(f"status IN ({', '.join('?' for _ in values)})")
            params.extend(values)

        if exclude_statuses is not None:
            values = [s.value for s in exclude_statuses]
            clauses.append(f"status NOT IN ({', '.join('?' for _ in values)})")
            params.extend(values)

        sql = "SELECT * FROM tracked_files"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY file_path"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = await self._fetchall(sql, params)
        return [_row_to_file(row) for row in rows]

    async def get_pending_files(self, limit: int = 10) -> List[TrackedFile]:
        """
        Files waiting for ingestion (PENDING or MODIFIED).

        Files belonging to a deactivated folder are skipped; most recently
        modified files come first.
        """
        rows = await self._fetchall(
            """
            SELECT t.* FROM tracked_files t
            LEFT JOIN monitored_folders f ON t.folder_id = f.id
            WHERE t.status IN (?, ?)
              AND (t.folder_id IS NULL OR f.is_active = 1)
            ORDER BY t.last_modified_at DESC
            LIMIT ?
            """,
            (FileStatus.PENDING.value, FileStatus.MODIFIED.value, limit),
        )
        return [_row_to_file(row) for row in rows]

    async def count_by_status(self, folder_id: Optional[str] = None) -> Dict[str, int]:
        sql = "SELECT status, COUNT(*) AS n FROM tracked_files"
        params: List[Any] = []
        if folder_id is not None:
            sql += " WHERE folder_id = ?"
            params.append(folder_id)
        sql += " GROUP BY status"
        rows = await self._fetchall(sql, params)
        counts = {status.value: 0 for status in FileStatus}
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    async def update_file(
        self,
        file_id: str,
        expect: Optional[Dict[str, Any]] = None,
        **fields: Any
    ) -> TrackedFile:
        """
        Update columns of one tracked file.

        If ``status`` is among the fields the change is validated against the
        state machine and applied only if nobody changed the status since it
        was read.

        Args:
            file_id: Tracked file to update
            expect: Column values the row must still hold, typically taken
                from the snapshot the caller based its decision on
            **fields: Columns to write

        Raises:
            ConcurrentUpdateError: a column in ``expect`` holds another value
            InvalidStatusTransition: the status change is not an allowed edge
        """
        _, updated = await self._guarded_update(file_id, fields, expect)
        return updated

    async def _guarded_update(
        self,
        file_id: str,
        fields: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None
    ) -> Tuple[TrackedFile, TrackedFile]:
        """Conditional write under the store lock; returns (before, after)"""
        self._check_columns(fields)
        expect = expect or {}
        self._check_columns(expect, allow_empty=True)

        async with self._lock:
            for _ in range(_CAS_RETRIES):
                current = await self.require_file(file_id)
                for column, expected in expect.items():
                    actual = getattr(current, column)
                    if actual != expected:
                        raise ConcurrentUpdateError(file_id, column, _to_db(expected), _to_db(actual))

                target = fields.get("status")
                if target is not None and not can_transition(current.status, target):
                    raise InvalidStatusTransition(file_id, current.status.value, target.value)

                affected = await self._conditional_update(file_id, current, fields, expect)
                if affected:
                    return current, current.model_copy(update=fields)

                logger.debug(f"File {file_id} changed concurrently, re-reading")

        raise MetadataStoreError(f"Could not update file {file_id}: concurrent status changes")

    async def update_many(self, file_ids: Sequence[str], **fields: Any) -> int:
        """
        Apply the same column values to several files in one transaction.

        Status changes are validated per file; one invalid edge rejects the
        whole batch.
        """
        if not file_ids:
            return 0
        self._check_columns(fields)

        async with self._lock:
            target = fields.get("status")
            if target is not None:
                for file_id in file_ids:
                    current = await self.require_file(file_id)
                    if not can_transition(current.status, target):
                        raise InvalidStatusTransition(file_id, current.status.value, target.value)

            assignments = ", ".join(f"{column} = ?" for column in fields)
            values = [_to_db(value) for value in fields.values()]
            try:
                await self.db.executemany(
                    f"UPDATE tracked_files SET {assignments} WHERE id = ?",
                    [(*values, file_id) for file_id in file_ids],
                )
                await self.db.commit()
            except aiosqlite.Error as e:
                raise MetadataStoreError(f"Batch update failed: {e}") from e

        logger.debug(f"Updated {len(file_ids)} files: {sorted(fields)}")
        return len(file_ids)

    async def claim_for_processing(self, file_id: str) -> TrackedFile:
        """
        Atomically move a file from PENDING/MODIFIED to PROCESSING.

        This is the compare-and-swap that guarantees at most one active job
        per file. Every claim writes a fresh ``claim_token``; the job carries
        it and its terminal write only lands while the token still matches,
        so a job whose file was claimed again in the meantime cannot
        overwrite the newer job's outcome.

        Raises:
            FileBusyError: the file is not claimable
        """
        claimable = [status.value for status in CLAIMABLE_STATUSES]
        token = uuid.uuid4().hex
        affected = await self._execute(
            f"""
            UPDATE tracked_files SET status = ?, claim_token = ?
            WHERE id = ? AND status IN ({', '.join('?' for _ in claimable)})
            """,
            (FileStatus.PROCESSING.value, token, file_id, *claimable),
        )
        if affected == 0:
            current = await self.require_file(file_id)
            raise FileBusyError(file_id, current.status.value)

        logger.debug(f"Claimed file {file_id} for processing (claim {token})")
        return await self.require_file(file_id)

    async def mark_file_as_processed(
        self,
        file_id: str,
        vector_id: Optional[str] = None,
        claim_token: Optional[str] = None
    ) -> Optional[str]:
        """
        Terminal success write: COMPLETED with the new vector id.

        Returns the vector id the row held before, so a caller completing the
        same file twice can discard the superseded vector.

        Raises:
            ConcurrentUpdateError: ``claim_token`` given and the file was
                claimed again or moved on by a scan
            InvalidStatusTransition: the file is MODIFIED or DELETED
        """
        expect = {"claim_token": claim_token} if claim_token else None
        previous, _ = await self._guarded_update(
            file_id,
            {"status": FileStatus.COMPLETED, "vector_id": vector_id, "last_error": None},
            expect,
        )
        logger.info(f"File {previous.file_name} marked COMPLETED (vector {vector_id})")
        return previous.vector_id

    async def mark_file_as_error(
        self,
        file_id: str,
        message: str,
        claim_token: Optional[str] = None
    ) -> TrackedFile:
        """Terminal failure write: ERROR, last_error, attempts + 1"""
        expect = {"claim_token": claim_token} if claim_token else {}

        async with self._lock:
            for _ in range(_CAS_RETRIES):
                current = await self.require_file(file_id)
                if claim_token and current.claim_token != claim_token:
                    raise ConcurrentUpdateError(file_id, "claim_token", claim_token, current.claim_token)
                if not can_transition(current.status, FileStatus.ERROR):
                    raise InvalidStatusTransition(file_id, current.status.value, FileStatus.ERROR.value)

                fields = {
                    "status": FileStatus.ERROR,
                    "last_error": message,
                    "processing_attempts": current.processing_attempts + 1,
                    "vector_id": None,
                }
                if await self._conditional_update(file_id, current, fields, expect):
                    logger.warning(f"File {current.file_name} marked ERROR: {message}")
                    return current.model_copy(update=fields)

        raise MetadataStoreError(f"Could not mark file {file_id} as error: concurrent status changes")

    async def _conditional_update(
        self,
        file_id: str,
        current: TrackedFile,
        fields: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None
    ) -> int:
        """UPDATE that only matches while status and expected columns are unchanged"""
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [_to_db(value) for value in fields.values()]

        guards = ["status = ?"]
        guard_values: List[Any] = [current.status.value]
        for column, expected in (expect or {}).items():
            guards.append(f"{column} IS ?")
            guard_values.append(_to_db(expected))

        return await self._execute(
            f"UPDATE tracked_files SET {assignments} WHERE id = ? AND {' AND '.join(guards)}",
            (*values, file_id, *guard_values),
        )

    @staticmethod
    def _check_columns(fields: Dict[str, Any], allow_empty: bool = False) -> None:
        if not fields and not allow_empty:
            raise ValueError("No fields to update")
        unknown = set(fields) - _MUTABLE_FILE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
