"""Abstract base class for the document / chunk / query-log store.

The metadata store is the system of record for documents and chunk text.
Every chunk id present in the vector index must have a chunk record here,
and every chunk record must either have a vector or be marked
``embedding_pending``.  All mutating calls are idempotent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.models.rag import Chunk, ChunkStatus, Document, QueryLog


# Concrete implementation: SQLiteMetadataStore (src/providers/metadata_store/)
class IMetadataStore(ABC):
    """Contract for persisting documents, chunks and query logs."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables if they do not exist."""

    # -- Documents --------------------------------------------------------

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        """Insert *document* unless its id already exists; return the stored row."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Fetch a document by id."""

    @abstractmethod
    async def get_documents(self, document_ids: list[str]) -> dict[str, Document]:
        """Fetch several documents at once, keyed by id.  Missing ids are omitted."""

    @abstractmethod
    async def get_document_by_source(self, source_locator: str) -> Document | None:
        """Fetch a document by its unique source locator."""

    @abstractmethod
    async def update_document(self, document: Document) -> Document:
        """Overwrite title, project, tags and content hash of an existing document."""

    # -- Chunks -----------------------------------------------------------

    @abstractmethod
    async def upsert_chunk(self, chunk: Chunk) -> Chunk:
        """Insert or replace a chunk record.

        The returned chunk carries the store-assigned ``sequence``, which is
        kept unchanged when an existing record is replaced.
        """

    @abstractmethod
    async def set_chunk_status(self, chunk_id: str, status: ChunkStatus) -> bool:
        """Update a chunk's status.  Returns ``False`` if the chunk does not exist."""

    @abstractmethod
    async def update_chunk_metadata(
        self, document_id: str, metadata: dict[str, Any]
    ) -> int:
        """Merge *metadata* into every chunk of a document; return rows touched."""

    @abstractmethod
    async def get_chunks(self, chunk_ids: list[str]) -> dict[str, Chunk]:
        """Fetch chunk records by id.  Missing ids are omitted from the result."""

    @abstractmethod
    async def get_chunks_for_document(self, document_id: str) -> list[Chunk]:
        """All chunks of a document ordered by position."""

    @abstractmethod
    async def list_pending_chunks(self, limit: int | None = None) -> list[Chunk]:
        """Chunks whose status is ``embedding_pending``, oldest first."""

    @abstractmethod
    async def delete_chunks_for_document(self, document_id: str) -> int:
        """Delete every chunk record of a document; return the number removed."""

    @abstractmethod
    async def list_chunk_ids(self) -> set[str]:
        """Every chunk id in the store."""

    # -- Query log --------------------------------------------------------

    @abstractmethod
    async def append_query_log(self, entry: QueryLog) -> None:
        """Write *entry* once.  A second write with the same id is ignored."""

    @abstractmethod
    async def get_query_log(self, query_id: str) -> QueryLog | None:
        """Fetch a query log entry by id."""

    # -- Stats ------------------------------------------------------------

    @abstractmethod
    async def get_stats(self) -> dict[str, int]:
        """Return ``documents``, ``chunks``, ``pending_chunks`` and ``query_logs`` counts."""
