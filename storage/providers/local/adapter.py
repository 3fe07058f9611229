"""Local versioned store backed by SQLite (aiosqlite).

Single-writer and offline. Version tokens are synthesized from the content,
the write timestamp and the previous token, so writing identical content
twice still yields two different tokens. Every write and delete appends a
row to the ``history`` log in the same transaction as the file change.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import ValidationError

from config.schema import LocalSettings
from storage.bundle import BundleFile, BundleHistoryEntry, LocalBackup, parse_envelope
from storage.contracts import Credentials
from storage.errors import NotConfiguredError, NotFoundError, StorageConfigError, StorageError
from storage.models import HistoryEntry, ListEntry, ModeInfo, StoredFile, WriteResult

logger = logging.getLogger(__name__)

LOCAL_AUTHOR = "local"
IMPORT_MESSAGE = "Imported from backup"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    path          TEXT PRIMARY KEY,
    content       TEXT NOT NULL,
    version_token TEXT NOT NULL,
    kind          TEXT NOT NULL,
    modified      TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS history (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    path             TEXT NOT NULL,
    message          TEXT NOT NULL,
    timestamp        TEXT NOT NULL,
    action           TEXT NOT NULL,
    old_token        TEXT,
    new_token        TEXT NOT NULL,
    content_snapshot TEXT
);
CREATE INDEX IF NOT EXISTS idx_history_path ON history (path, id);
CREATE INDEX IF NOT EXISTS idx_history_timestamp ON history (timestamp);
"""


def classify_path(path: str) -> str:
    if "journal" in path:
        return "journal"
    if path.endswith(".md"):
        return "page"
    if path.endswith(".json"):
        return "config"
    return "file"


def make_version_token(content: str, timestamp: str, previous: str | None) -> str:
    digest = hashlib.sha256(f"{content}\0{timestamp}\0{previous or ''}".encode("utf-8"))
    return digest.hexdigest()[:40]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _normalize(path: str) -> str:
    return path.strip().strip("/")


class LocalStorageAdapter:
    """Offline storage in a local SQLite database."""

    mode = "local"

    def __init__(self) -> None:
        self._settings: LocalSettings | None = None
        self._db_path: Path | None = None
        self._configured = False

    # ==================== Lifecycle ====================

    async def configure(self, settings: Any = None, credentials: Credentials | None = None) -> None:
        try:
            parsed = settings if isinstance(settings, LocalSettings) else LocalSettings.model_validate(settings or {})
        except ValidationError as exc:
            raise StorageConfigError(f"Invalid local settings: {exc}") from exc

        db_path = parsed.resolved_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(db_path)) as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(_SCHEMA)
            await conn.commit()

        self._settings = parsed
        self._db_path = db_path
        self._configured = True
        logger.info("Local storage configured at %s", db_path)

    def is_configured(self) -> bool:
        return self._configured

    # ==================== Contract ====================

    async def get_file(self, path: str) -> StoredFile | None:
        key = _normalize(path)
        async with self._connect() as conn:
            async with conn.execute(
                "SELECT path, content, version_token, modified FROM files WHERE path = ?",
                (key,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return StoredFile(path=row[0], content=row[1], version_token=row[2], modified=row[3])

    async def put_file(
        self,
        path: str,
        content: str,
        message: str,
        expected_version_token: str | None = None,
        *,
        force: bool = False,
    ) -> WriteResult:
        key = _normalize(path)
        if not key:
            raise StorageError("A file path is required", path=path)
        async with self._connect() as conn:
            token = await self._write(conn, key, content, message, expected_version_token)
            await conn.commit()
        return WriteResult(version_token=token, path=key)

    async def delete_file(
        self,
        path: str,
        message: str,
        expected_version_token: str | None = None,
    ) -> None:
        key = _normalize(path)
        async with self._connect() as conn:
            async with conn.execute("SELECT content, version_token FROM files WHERE path = ?", (key,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Cannot delete {path}: file not found", path=path)
            timestamp = _now_iso()
            await conn.execute("DELETE FROM files WHERE path = ?", (key,))
            await conn.execute(
                """
                INSERT INTO history (path, message, timestamp, action, old_token, new_token, content_snapshot)
                VALUES (?, ?, ?, 'delete', ?, ?, ?)
                """,
                (key, message, timestamp, row[1], make_version_token("", timestamp, row[1]), row[0]),
            )
            await conn.commit()

    async def list_files(self, path: str = "") -> list[ListEntry]:
        prefix = _normalize(path)
        if prefix:
            prefix += "/"
        async with self._connect() as conn:
            async with conn.execute(
                "SELECT path, version_token FROM files WHERE substr(path, 1, ?) = ? ORDER BY path",
                (len(prefix), prefix),
            ) as cursor:
                rows = await cursor.fetchall()

        entries: dict[str, ListEntry] = {}
        for file_path, token in rows:
            head, sep, _ = file_path[len(prefix):].partition("/")
            child = prefix + head
            if sep:
                entries.setdefault(child, ListEntry(path=child, type="dir"))
            else:
                entries[child] = ListEntry(path=child, type="file", version_token=token)
        return [entries[key] for key in sorted(entries)]

    async def check_connection(self) -> bool:
        if not self._configured:
            return False
        try:
            async with self._connect() as conn:
                await conn.execute("SELECT 1")
        except aiosqlite.Error as exc:
            logger.warning("Local store probe failed: %s", exc)
            return False
        return True

    def get_mode_info(self) -> ModeInfo:
        return ModeInfo(
            mode=self.mode,
            label="Local (Offline)",
            description="Local storage only, no synchronisation",
            features={
                "sync": False,
                "backup": False,
                "collaboration": False,
                "offline": True,
                "privacy": True,
            },
            storage="SQLite database",
            capabilities=["Per-file change history", "Manual export/import"],
            limitations=[
                "No synchronisation between devices",
                "No automatic backup",
            ],
        )

    # ==================== History ====================

    async def get_history(self, path: str | None = None, limit: int = 20) -> list[HistoryEntry]:
        query = "SELECT id, path, message, timestamp, action, old_token, new_token FROM history"
        params: tuple[Any, ...] = ()
        if path:
            query += " WHERE path = ?"
            params = (_normalize(path),)
        query += " ORDER BY id DESC LIMIT ?"
        async with self._connect() as conn:
            async with conn.execute(query, (*params, limit)) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_entry(row) for row in rows]

    async def cleanup_history(self, days_to_keep: int = 30) -> int:
        cutoff = (datetime.now(UTC) - timedelta(days=days_to_keep)).isoformat()
        async with self._connect() as conn:
            cursor = await conn.execute("DELETE FROM history WHERE timestamp < ?", (cutoff,))
            await conn.commit()
            deleted = int(cursor.rowcount)
        logger.info("Cleaned up %d old history entries", deleted)
        return deleted

    # ==================== Export / import ====================

    async def export_data(self) -> LocalBackup:
        async with self._connect() as conn:
            async with conn.execute("SELECT path, content, version_token FROM files ORDER BY path") as cursor:
                file_rows = await cursor.fetchall()
            async with conn.execute(
                "SELECT id, path, message, timestamp, action, old_token, new_token FROM history ORDER BY id DESC"
            ) as cursor:
                history_rows = await cursor.fetchall()
        settings = self._require_settings()
        return LocalBackup(
            files=[BundleFile(path=p, content=c, version_token=t) for p, c, t in file_rows],
            history=[BundleHistoryEntry.from_entry(_row_to_entry(row), path=row[1]) for row in history_rows],
            config=settings.model_dump(mode="json"),
        )

    async def import_data(self, data: Any) -> int:
        backup: LocalBackup = parse_envelope(data, LocalBackup)
        logger.info("Importing %d files...", len(backup.files))
        async with self._connect() as conn:
            # @@@single-transaction-import - all files land or none do.
            try:
                for item in backup.files:
                    await self._write(conn, _normalize(item.path), item.content, IMPORT_MESSAGE, item.version_token)
            except Exception:
                await conn.rollback()
                raise
            await conn.commit()
        logger.info("Import complete")
        return len(backup.files)

    # ==================== Internals ====================

    async def _write(
        self,
        conn: aiosqlite.Connection,
        key: str,
        content: str,
        message: str,
        parent_token: str | None,
    ) -> str:
        async with conn.execute("SELECT version_token FROM files WHERE path = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        previous = row[0] if row else None
        timestamp = _now_iso()
        token = make_version_token(content, timestamp, previous)
        await conn.execute(
            """
            INSERT INTO files (path, content, version_token, kind, modified)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                content = excluded.content,
                version_token = excluded.version_token,
                kind = excluded.kind,
                modified = excluded.modified
            """,
            (key, content, token, classify_path(key), timestamp),
        )
        await conn.execute(
            """
            INSERT INTO history (path, message, timestamp, action, old_token, new_token, content_snapshot)
            VALUES (?, ?, ?, 'put', ?, ?, ?)
            """,
            (key, message, timestamp, parent_token or previous, token, content),
        )
        return token

    def _connect(self) -> aiosqlite.Connection:
        if not self._configured or self._db_path is None:
            raise NotConfiguredError("Local adapter not configured")
        return aiosqlite.connect(str(self._db_path))

    def _require_settings(self) -> LocalSettings:
        if self._settings is None:
            raise NotConfiguredError("Local adapter not configured")
        return self._settings


def _row_to_entry(row: Any) -> HistoryEntry:
    row_id, _path, message, timestamp, action, old_token, new_token = row
    return HistoryEntry(
        id=new_token or str(row_id),
        message=message,
        author=LOCAL_AUTHOR,
        timestamp=timestamp,
        parent_id=old_token,
        action=action,
    )
