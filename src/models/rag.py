"""RAG data models for the knowchat corpus and query log.

Defines Pydantic v2 models for documents, chunks, retrieval matches,
citations, ingestion outcomes and the append-only query log.  All models
use frozen config so a value handed between components can never be
mutated behind the caller's back.

Lifecycle overview:

    1. INGESTION: a :class:`DocumentDescriptor` is turned into a
       :class:`Document` plus one :class:`Chunk` per chunker window.
    2. INDEXING: each chunk is embedded and upserted into the vector index
       under its ``chunk_id``.  A chunk whose vector could not be written
       stays ``embedding_pending`` until the repair pass succeeds.
    3. RETRIEVAL: the vector index returns :class:`VectorMatch` ids which
       are joined back to chunk and document records
       (:class:`RetrievedChunk`).
    4. ANSWER: the chunks that fit the context budget become
       :class:`Citation` entries on the :class:`QueryResponse` and the
       persisted :class:`QueryLog`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.models.routing import IntentCategory


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class ChunkStatus(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Indexing state of a chunk record."""

    INDEXED = "indexed"
    EMBEDDING_PENDING = "embedding_pending"


# ---------------------------------------------------------------------------
# Document — one ingested source.
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """An ingested source document.

    The ``document_id`` is derived from ``source_locator`` so re-ingesting
    the same source always addresses the same record.  Only the metadata
    fields and ``content_hash`` change after creation; documents are never
    deleted automatically.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(description="Deterministic identifier derived from the source locator.")
    title: str = Field(description="Human-readable title.")
    source_locator: str = Field(description="Unique URI or path the document was read from.")
    project: str | None = Field(default=None, description="Project the document belongs to.")
    tags: list[str] = Field(default_factory=list, description="Free-form tags.")
    content_hash: str = Field(
        default="",
        description="Hash of the extracted text and chunking parameters.",
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class DocumentDescriptor(BaseModel):
    """Caller-supplied description of a document to ingest.

    Exactly one of ``text`` (already-extracted plain text) or ``content``
    (raw bytes for an extractor) must be supplied.  ``filename`` and
    ``content_type`` select the extractor for ``content``.
    """

    model_config = ConfigDict(frozen=True)

    source_locator: str
    title: str
    project: str | None = None
    tags: list[str] = Field(default_factory=list)
    text: str | None = None
    content: bytes | None = None
    filename: str | None = None
    content_type: str | None = None


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------
class ChunkCandidate(BaseModel):
    """One window produced by the chunker, before it is given an identity.

    ``start_token`` / ``end_token`` are the half-open token span within the
    source text; ``text`` is the exact source slice covering that span.
    """

    model_config = ConfigDict(frozen=True)

    position: int = Field(ge=0, description="Zero-based index within the document.")
    text: str
    token_count: int = Field(ge=0)
    start_token: int = Field(ge=0)
    end_token: int = Field(ge=0)


class Chunk(BaseModel):
    """A persisted chunk record.

    ``sequence`` is the insertion order assigned by the metadata store and
    is used as the tie-breaker between equally similar matches.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    position: int = Field(ge=0)
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: ChunkStatus = ChunkStatus.EMBEDDING_PENDING
    sequence: int = Field(default=0, ge=0)


class ChunkEmbeddingStatus(BaseModel):
    """Per-chunk outcome of an ingestion or repair."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    status: ChunkStatus


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------
class VectorMatch(BaseModel):
    """A raw hit from the vector index: chunk id plus similarity score."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    score: float = Field(description="Cosine similarity, higher is more similar.")


class RetrievedChunk(BaseModel):
    """A vector match joined back to its chunk and document records."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    document: Document
    similarity_score: float
    token_count: int = Field(default=0, ge=0)


class Citation(BaseModel):
    """Attribution for one chunk that was placed into the answer's context."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    document_title: str
    source_locator: str
    project: str | None = None
    tags: list[str] = Field(default_factory=list)
    position: int = Field(ge=0)
    similarity_score: float


# ---------------------------------------------------------------------------
# Query log / response
# ---------------------------------------------------------------------------
class QueryLog(BaseModel):
    """Append-only record of one answered question."""

    model_config = ConfigDict(frozen=True)

    query_id: str
    question: str
    category: IntentCategory
    provider_requested: str
    provider_used: str
    answer: str
    citations: list[Citation] = Field(default_factory=list)
    unsupported_by_corpus: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class QueryResponse(BaseModel):
    """What the query engine hands back to the caller."""

    model_config = ConfigDict(frozen=True)

    query_id: str
    answer: str
    citations: list[Citation] = Field(default_factory=list)
    category: IntentCategory
    provider_requested: str
    provider_used: str
    failed_over: bool = False
    unsupported_by_corpus: bool = False


# ---------------------------------------------------------------------------
# Ingestion / maintenance outcomes
# ---------------------------------------------------------------------------
class IngestionResult(BaseModel):
    """Summary of a single document ingestion run.

    Returned by the ingestion pipeline and rendered by the CLI and the
    ``POST /api/v1/documents`` endpoint.
    """

    model_config = ConfigDict(frozen=True)

    document: Document
    chunks: list[ChunkEmbeddingStatus] = Field(default_factory=list)
    chunks_created: int = Field(default=0, ge=0)
    chunks_pending: int = Field(default=0, ge=0)
    unchanged: bool = Field(
        default=False,
        description="True when the content hash matched and only metadata was refreshed.",
    )
    total_tokens: int = Field(default=0, ge=0)
    ingestion_time: float = Field(default=0.0, ge=0.0, description="Wall-clock seconds.")


class RepairReport(BaseModel):
    """Outcome of a re-embedding pass over pending chunks."""

    model_config = ConfigDict(frozen=True)

    repaired: int = Field(default=0, ge=0)
    still_pending: int = Field(default=0, ge=0)
    documents: int = Field(default=0, ge=0, description="Documents visited.")


class ReconcileReport(BaseModel):
    """Outcome of an orphan-vector reconciliation pass."""

    model_config = ConfigDict(frozen=True)

    vectors_scanned: int = Field(default=0, ge=0)
    orphans_deleted: list[str] = Field(default_factory=list)


class CorpusStats(BaseModel):
    """Aggregate counts across both stores."""

    model_config = ConfigDict(frozen=True)

    documents: int = Field(default=0, ge=0)
    chunks: int = Field(default=0, ge=0)
    pending_chunks: int = Field(default=0, ge=0)
    vectors: int = Field(default=0, ge=0)
    query_logs: int = Field(default=0, ge=0)
