"""SQLite-backed metadata store.

Persists documents, chunk records and the append-only query log to a local
SQLite database at ``data/knowchat.db``.  Uses ``aiosqlite`` for async I/O
and opens a short-lived connection per operation.

Chunk rows carry an ``AUTOINCREMENT`` ``seq`` column that records
insertion order; replacing an existing chunk keeps its ``seq`` so the
query-time tie-breaker is stable across repairs.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import structlog

from src.interfaces.metadata_store import IMetadataStore
from src.models.rag import Chunk, ChunkStatus, Citation, Document, QueryLog
from src.models.routing import IntentCategory
from src.utils.errors import ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowchat.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    document_id     TEXT PRIMARY KEY,
    source_locator  TEXT NOT NULL UNIQUE,
    title           TEXT NOT NULL,
    project         TEXT,
    tags            TEXT NOT NULL DEFAULT '[]',
    content_hash    TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id     TEXT    NOT NULL UNIQUE,
    document_id  TEXT    NOT NULL REFERENCES documents(document_id),
    position     INTEGER NOT NULL,
    text         TEXT    NOT NULL,
    metadata     TEXT    NOT NULL DEFAULT '{}',
    status       TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS query_logs (
    query_id               TEXT PRIMARY KEY,
    question               TEXT    NOT NULL,
    category               TEXT    NOT NULL,
    provider_requested     TEXT    NOT NULL,
    provider_used          TEXT    NOT NULL,
    answer                 TEXT    NOT NULL,
    citations              TEXT    NOT NULL DEFAULT '[]',
    unsupported_by_corpus  INTEGER NOT NULL DEFAULT 0,
    created_at             TEXT    NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, position);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_status ON chunks(status);",
]

_INSERT_DOCUMENT_SQL = """\
INSERT OR IGNORE INTO documents
    (document_id, source_locator, title, project, tags, content_hash, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPDATE_DOCUMENT_SQL = """\
UPDATE documents
SET title = ?, project = ?, tags = ?, content_hash = ?, updated_at = ?
WHERE document_id = ?;
"""

_SELECT_DOCUMENT_COLUMNS = (
    "SELECT document_id, source_locator, title, project, tags, content_hash, "
    "created_at, updated_at FROM documents"
)

_UPSERT_CHUNK_SQL = """\
INSERT INTO chunks (chunk_id, document_id, position, text, metadata, status)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(chunk_id)
DO UPDATE SET document_id = excluded.document_id,
              position    = excluded.position,
              text        = excluded.text,
              metadata    = excluded.metadata,
              status      = excluded.status;
"""

_SELECT_CHUNK_COLUMNS = (
    "SELECT seq, chunk_id, document_id, position, text, metadata, status FROM chunks"
)

_INSERT_QUERY_LOG_SQL = """\
INSERT OR IGNORE INTO query_logs
    (query_id, question, category, provider_requested, provider_used,
     answer, citations, unsupported_by_corpus, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
"""


class SQLiteMetadataStore(IMetadataStore):
    """SQLite-backed document, chunk and query-log persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection; SQLite failures surface as ProviderUnavailableError."""
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except aiosqlite.Error as exc:
            raise ProviderUnavailableError(
                message=f"SQLite error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("metadata_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        async with self._connect() as db:
            await db.execute(
                _INSERT_DOCUMENT_SQL,
                (
                    document.document_id,
                    document.source_locator,
                    document.title,
                    document.project,
                    json.dumps(document.tags),
                    document.content_hash,
                    document.created_at.isoformat(),
                    document.updated_at.isoformat(),
                ),
            )
            await db.commit()
            cursor = await db.execute(
                f"{_SELECT_DOCUMENT_COLUMNS} WHERE document_id = ?",
                (document.document_id,),
            )
            row = await cursor.fetchone()
        logger.info("document_created", document_id=document.document_id)
        return self._row_to_document(row)

    async def get_document(self, document_id: str) -> Document | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"{_SELECT_DOCUMENT_COLUMNS} WHERE document_id = ?", (document_id,)
            )
            row = await cursor.fetchone()
        return self._row_to_document(row) if row else None

    async def get_documents(self, document_ids: list[str]) -> dict[str, Document]:
        if not document_ids:
            return {}
        ids = list(dict.fromkeys(document_ids))
        placeholders = ",".join("?" for _ in ids)
        async with self._connect() as db:
            cursor = await db.execute(
                f"{_SELECT_DOCUMENT_COLUMNS} WHERE document_id IN ({placeholders})", ids
            )
            rows = await cursor.fetchall()
        return {r["document_id"]: self._row_to_document(r) for r in rows}

    async def get_document_by_source(self, source_locator: str) -> Document | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"{_SELECT_DOCUMENT_COLUMNS} WHERE source_locator = ?", (source_locator,)
            )
            row = await cursor.fetchone()
        return self._row_to_document(row) if row else None

    async def update_document(self, document: Document) -> Document:
        updated_at = datetime.now(tz=timezone.utc)  # noqa: UP017
        async with self._connect() as db:
            await db.execute(
                _UPDATE_DOCUMENT_SQL,
                (
                    document.title,
                    document.project,
                    json.dumps(document.tags),
                    document.content_hash,
                    updated_at.isoformat(),
                    document.document_id,
                ),
            )
            await db.commit()
        return document.model_copy(update={"updated_at": updated_at})

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def upsert_chunk(self, chunk: Chunk) -> Chunk:
        async with self._connect() as db:
            await db.execute(
                _UPSERT_CHUNK_SQL,
                (
                    chunk.chunk_id,
                    chunk.document_id,
                    chunk.position,
                    chunk.text,
                    json.dumps(chunk.metadata),
                    chunk.status.value,
                ),
            )
            await db.commit()
            cursor = await db.execute(
                "SELECT seq FROM chunks WHERE chunk_id = ?", (chunk.chunk_id,)
            )
            row = await cursor.fetchone()
        return chunk.model_copy(update={"sequence": row["seq"]})

    async def set_chunk_status(self, chunk_id: str, status: ChunkStatus) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE chunks SET status = ? WHERE chunk_id = ?",
                (status.value, chunk_id),
            )
            await db.commit()
            changed = cursor.rowcount > 0
        return changed

    async def update_chunk_metadata(
        self, document_id: str, metadata: dict[str, Any]
    ) -> int:
        chunks = await self.get_chunks_for_document(document_id)
        if not chunks:
            return 0
        async with self._connect() as db:
            await db.executemany(
                "UPDATE chunks SET metadata = ? WHERE chunk_id = ?",
                [
                    (json.dumps({**c.metadata, **metadata}), c.chunk_id)
                    for c in chunks
                ],
            )
            await db.commit()
        return len(chunks)

    async def get_chunks(self, chunk_ids: list[str]) -> dict[str, Chunk]:
        if not chunk_ids:
            return {}
        ids = list(dict.fromkeys(chunk_ids))
        placeholders = ",".join("?" for _ in ids)
        async with self._connect() as db:
            cursor = await db.execute(
                f"{_SELECT_CHUNK_COLUMNS} WHERE chunk_id IN ({placeholders})", ids
            )
            rows = await cursor.fetchall()
        return {r["chunk_id"]: self._row_to_chunk(r) for r in rows}

    async def get_chunks_for_document(self, document_id: str) -> list[Chunk]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"{_SELECT_CHUNK_COLUMNS} WHERE document_id = ? ORDER BY position, seq",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_chunk(r) for r in rows]

    async def list_pending_chunks(self, limit: int | None = None) -> list[Chunk]:
        sql = f"{_SELECT_CHUNK_COLUMNS} WHERE status = ? ORDER BY seq"
        params: tuple[Any, ...] = (ChunkStatus.EMBEDDING_PENDING.value,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._row_to_chunk(r) for r in rows]

    async def delete_chunks_for_document(self, document_id: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM chunks WHERE document_id = ?", (document_id,)
            )
            await db.commit()
            deleted = cursor.rowcount
        logger.info("chunks_deleted", document_id=document_id, count=deleted)
        return deleted

    async def list_chunk_ids(self) -> set[str]:
        async with self._connect() as db:
            cursor = await db.execute("SELECT chunk_id FROM chunks")
            rows = await cursor.fetchall()
        return {r["chunk_id"] for r in rows}

    # ------------------------------------------------------------------
    # Query log
    # ------------------------------------------------------------------

    async def append_query_log(self, entry: QueryLog) -> None:
        async with self._connect() as db:
            await db.execute(
                _INSERT_QUERY_LOG_SQL,
                (
                    entry.query_id,
                    entry.question,
                    entry.category.value,
                    entry.provider_requested,
                    entry.provider_used,
                    entry.answer,
                    json.dumps([c.model_dump() for c in entry.citations]),
                    int(entry.unsupported_by_corpus),
                    entry.created_at.isoformat(),
                ),
            )
            await db.commit()
        logger.debug("query_log_appended", query_id=entry.query_id)

    async def get_query_log(self, query_id: str) -> QueryLog | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM query_logs WHERE query_id = ?", (query_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return QueryLog(
            query_id=row["query_id"],
            question=row["question"],
            category=IntentCategory(row["category"]),
            provider_requested=row["provider_requested"],
            provider_used=row["provider_used"],
            answer=row["answer"],
            citations=[Citation(**c) for c in json.loads(row["citations"])],
            unsupported_by_corpus=bool(row["unsupported_by_corpus"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_stats(self) -> dict[str, int]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT "
                "(SELECT COUNT(*) FROM documents) AS documents, "
                "(SELECT COUNT(*) FROM chunks) AS chunks, "
                "(SELECT COUNT(*) FROM chunks WHERE status = ?) AS pending_chunks, "
                "(SELECT COUNT(*) FROM query_logs) AS query_logs",
                (ChunkStatus.EMBEDDING_PENDING.value,),
            )
            row = await cursor.fetchone()
        return dict(row)

    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
        return "sqlite"

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_document(row: aiosqlite.Row) -> Document:
        return Document(
            document_id=row["document_id"],
            source_locator=row["source_locator"],
            title=row["title"],
            project=row["project"],
            tags=json.loads(row["tags"]),
            content_hash=row["content_hash"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_chunk(row: aiosqlite.Row) -> Chunk:
        return Chunk(
            chunk_id=row["chunk_id"],
            document_id=row["document_id"],
            position=row["position"],
            text=row["text"],
            metadata=json.loads(row["metadata"]),
            status=ChunkStatus(row["status"]),
            sequence=row["seq"],
        )
