"""
SQLite content store - durable, content-addressed document storage.

Blobs are keyed by content hash (or by the hash of the ciphertext for
encrypted documents) and shared between document records. Document
records are unique per (file_path, content_hash); the unique constraint
makes deduplication a single atomic insert instead of check-then-write.
"""

import asyncio
import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from autoorganize.models.document import (
    DataSourceType,
    Document,
    DocumentListFilter,
    EncryptionInfo,
    StageStatus,
)
from autoorganize.utils.exceptions import DuplicateContentError, StorageFailure
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)

_DOCUMENT_COLUMNS = (
    "id, file_path, content_hash, blob_key, title, source, source_type, content_type, "
    "size_bytes, encrypted, encryption, metadata, stage_status, ingested_at, modified_at"
)


def blob_key_for(data: bytes) -> str:
    """Content address of a stored blob."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class ContentStore:
    """
    SQLite-backed store for document records and their content blobs.

    Features:
    - Content-addressed blobs, removed once no document references them
    - Atomic (file_path, content_hash) deduplication
    - Small key/value settings table (encryption salt lives here)
    """

    def __init__(self, db_path: str = "data/content.db"):
        """
        Initialize content store.

        Args:
            db_path: Path to SQLite database file or ':memory:'
        """
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async def connect(self) -> None:
        """Establish connection to SQLite."""
        if self.connection is None:
            try:
                self.connection = await aiosqlite.connect(self.db_path)
                await self.connection.execute("PRAGMA foreign_keys = ON")
                await self.connection.execute("PRAGMA journal_mode = WAL")
                await self.connection.commit()
            except aiosqlite.Error as e:
                self.connection = None
                raise StorageFailure(
                    f"Failed to open content store: {e}", {"db_path": self.db_path}
                ) from e

    async def initialize(self) -> None:
        """Initialize database schema."""
        await self.connect()

        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS blobs (
                key TEXT PRIMARY KEY,
                data BLOB NOT NULL,
                size INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """
        )

        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                file_path TEXT NOT NULL DEFAULT '',
                content_hash TEXT NOT NULL,
                blob_key TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                source TEXT,
                source_type TEXT NOT NULL,
                content_type TEXT NOT NULL,
                size_bytes INTEGER NOT NULL DEFAULT 0,
                encrypted INTEGER NOT NULL DEFAULT 0,
                encryption TEXT,
                metadata TEXT DEFAULT '{}',
                stage_status TEXT DEFAULT '{}',
                ingested_at TEXT NOT NULL,
                modified_at TEXT NOT NULL,
                UNIQUE (file_path, content_hash),
                FOREIGN KEY (blob_key) REFERENCES blobs(key)
            )
        """
        )

        await self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """
        )

        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(content_hash)"
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_path ON documents(file_path)"
        )
        await self.connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_source ON documents(source)"
        )
        await self.connection.commit()

    # ═══════════════════════════════════════════════════════════
    # DOCUMENT OPERATIONS
    # ═══════════════════════════════════════════════════════════

    async def store_document(self, document: Document, data: bytes) -> Document:
        """
        Persist a document record together with its content blob.

        Args:
            document: Record to store (``content`` is ignored)
            data: Bytes to store (plaintext or ciphertext)

        Returns:
            The stored document with ``blob_key`` set

        Raises:
            DuplicateContentError: If (file_path, content_hash) is already stored
            StorageFailure: If the write fails
        """
        await self.connect()
        blob_key = document.blob_key or blob_key_for(data)
        document = document.model_copy(update={"blob_key": blob_key, "content": None})

        async with self._write_lock:
            try:
                await self.connection.execute(
                    "INSERT OR IGNORE INTO blobs (key, data, size, created_at) VALUES (?, ?, ?, ?)",
                    (blob_key, data, len(data), datetime.now().isoformat()),
                )
                cursor = await self.connection.execute(
                    f"INSERT OR IGNORE INTO documents ({_DOCUMENT_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._document_to_row(document),
                )
                inserted = cursor.rowcount == 1
                if not inserted:
                    # Rolls back the blob insert too when it was new
                    await self.connection.rollback()
                else:
                    await self.connection.commit()
            except aiosqlite.Error as e:
                await self.connection.rollback()
                raise StorageFailure(
                    f"Failed to store document {document.id}: {e}",
                    {"document_id": document.id, "file_path": document.file_path},
                ) from e

        if not inserted:
            existing = await self.find_by_hash(document.file_path, document.content_hash)
            existing_id = existing.id if existing else ""
            raise DuplicateContentError(
                f"Content already stored for path '{document.file_path}'",
                existing_id=existing_id,
                context={"content_hash": document.content_hash},
            )

        logger.debug(
            f"Stored document {document.id}",
            extra={"document_id": document.id, "blob_key": blob_key, "size": len(data)},
        )
        return document

    async def get_document(self, document_id: str) -> Document | None:
        """Get a document record (without content) by ID."""
        await self.connect()
        cursor = await self.connection.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_document(row) if row else None

    async def find_by_hash(self, file_path: str, content_hash: str) -> Document | None:
        """Find the document stored for a (file_path, content_hash) pair."""
        await self.connect()
        cursor = await self.connection.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE file_path = ? AND content_hash = ?",
            (file_path, content_hash),
        )
        row = await cursor.fetchone()
        return self._row_to_document(row) if row else None

    async def find_by_path(self, file_path: str) -> list[Document]:
        """All documents stored for a source path, newest first."""
        await self.connect()
        cursor = await self.connection.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE file_path = ? "
            "ORDER BY ingested_at DESC",
            (file_path,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_document(row) for row in rows]

    async def read_content(self, document: Document) -> bytes:
        """
        Read the stored bytes of a document.

        Raises:
            StorageFailure: If the blob is missing or unreadable
        """
        await self.connect()
        try:
            cursor = await self.connection.execute(
                "SELECT data FROM blobs WHERE key = ?", (document.blob_key,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageFailure(
                f"Failed to read content for {document.id}: {e}", {"document_id": document.id}
            ) from e
        if not row:
            raise StorageFailure(
                f"Content blob missing for document {document.id}",
                {"document_id": document.id, "blob_key": document.blob_key},
            )
        return bytes(row[0])

    async def update_stage_status(
        self, document_id: str, stage_status: dict[str, StageStatus]
    ) -> None:
        """Record enrichment stage outcomes for a document."""
        await self.connect()
        async with self._write_lock:
            await self.connection.execute(
                "UPDATE documents SET stage_status = ? WHERE id = ?",
                (json.dumps({k: v.value for k, v in stage_status.items()}), document_id),
            )
            await self.connection.commit()

    async def list_documents(self, filters: DocumentListFilter) -> tuple[list[Document], int]:
        """
        List documents matching a filter.

        Returns:
            (page of documents, total matching count)
        """
        await self.connect()

        where = " WHERE 1=1"
        params: list[Any] = []

        if filters.source is not None:
            where += " AND source = ?"
            params.append(filters.source)
        if filters.source_type is not None:
            where += " AND source_type = ?"
            params.append(filters.source_type.value)
        if filters.file_path is not None:
            where += " AND file_path = ?"
            params.append(filters.file_path)
        if filters.encrypted is not None:
            where += " AND encrypted = ?"
            params.append(1 if filters.encrypted else 0)

        cursor = await self.connection.execute(f"SELECT COUNT(*) FROM documents{where}", params)
        row = await cursor.fetchone()
        total = row[0] if row else 0

        cursor = await self.connection.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents{where} "
            "ORDER BY ingested_at DESC, id LIMIT ? OFFSET ?",
            [*params, filters.limit, filters.offset],
        )
        rows = await cursor.fetchall()
        return [self._row_to_document(row) for row in rows], total

    async def iter_plaintext(self, limit: int = 10000) -> list[tuple[Document, str]]:
        """Unencrypted documents with their text, for fallback scans."""
        await self.connect()
        cursor = await self.connection.execute(
            f"SELECT {', '.join('d.' + c.strip() for c in _DOCUMENT_COLUMNS.split(','))}, b.data "
            "FROM documents d JOIN blobs b ON d.blob_key = b.key "
            "WHERE d.encrypted = 0 ORDER BY d.ingested_at DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [
            (self._row_to_document(row[:15]), bytes(row[15]).decode("utf-8", errors="replace"))
            for row in rows
        ]

    async def delete_document(self, document_id: str) -> bool:
        """
        Delete a document record and its blob once unreferenced.

        Returns:
            True if a document was deleted
        """
        await self.connect()
        async with self._write_lock:
            cursor = await self.connection.execute(
                "SELECT blob_key FROM documents WHERE id = ?", (document_id,)
            )
            row = await cursor.fetchone()
            if not row:
                return False

            blob_key = row[0]
            await self.connection.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            await self.connection.execute(
                "DELETE FROM blobs WHERE key = ? AND NOT EXISTS "
                "(SELECT 1 FROM documents WHERE blob_key = ?)",
                (blob_key, blob_key),
            )
            await self.connection.commit()

        logger.debug(f"Deleted document {document_id}", extra={"document_id": document_id})
        return True

    # ═══════════════════════════════════════════════════════════
    # SETTINGS
    # ═══════════════════════════════════════════════════════════

    async def get_setting(self, key: str) -> str | None:
        await self.connect()
        cursor = await self.connection.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set_setting_if_absent(self, key: str, value: str) -> str:
        """Store a setting unless present; returns the effective value."""
        await self.connect()
        async with self._write_lock:
            await self.connection.execute(
                "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)", (key, value)
            )
            await self.connection.commit()
        return await self.get_setting(key)

    # ═══════════════════════════════════════════════════════════
    # UTILITY METHODS
    # ═══════════════════════════════════════════════════════════

    async def count_documents(self) -> int:
        await self.connect()
        cursor = await self.connection.execute("SELECT COUNT(*) FROM documents")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def count_blobs(self) -> int:
        await self.connect()
        cursor = await self.connection.execute("SELECT COUNT(*) FROM blobs")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def ping(self) -> bool:
        """True if the database answers a trivial query."""
        try:
            await self.connect()
            await self.connection.execute("SELECT 1")
            return True
        except (aiosqlite.Error, StorageFailure, ValueError):
            return False

    async def close(self) -> None:
        """Close the connection."""
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    def _document_to_row(self, document: Document) -> tuple:
        return (
            document.id,
            document.file_path,
            document.content_hash,
            document.blob_key,
            document.title,
            document.source,
            document.source_type.value,
            document.content_type,
            document.size_bytes,
            1 if document.encrypted else 0,
            document.encryption.model_dump_json() if document.encryption else None,
            json.dumps(document.metadata, default=str),
            json.dumps({k: v.value for k, v in document.stage_status.items()}),
            document.ingested_at.isoformat(),
            document.modified_at.isoformat(),
        )

    def _row_to_document(self, row: tuple) -> Document:
        """Convert database row to Document object."""
        return Document(
            id=row[0],
            file_path=row[1],
            content_hash=row[2],
            blob_key=row[3],
            title=row[4],
            source=row[5],
            source_type=DataSourceType(row[6]),
            content_type=row[7],
            size_bytes=row[8],
            encrypted=bool(row[9]),
            encryption=EncryptionInfo.model_validate_json(row[10]) if row[10] else None,
            metadata=json.loads(row[11]) if row[11] else {},
            stage_status={k: StageStatus(v) for k, v in json.loads(row[12] or "{}").items()},
            ingested_at=datetime.fromisoformat(row[13]),
            modified_at=datetime.fromisoformat(row[14]),
        )
