"""Abstract base class for vector-index service providers.

Defines the contract for storing and searching chunk embeddings keyed by
chunk id.  The index holds vectors only; chunk text and document metadata
live in the metadata store and are joined back by id at query time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.models.rag import VectorMatch


# Concrete implementation: ChromaDBProvider (src/providers/vector_store/)
class IVectorStoreProvider(ABC):
    """Contract for the vector index used by ingestion and retrieval.

    All query and mutation methods are async to support network-backed stores
    without blocking the event loop.  ``upsert_vector`` and
    ``delete_vectors`` are idempotent.
    """

    @abstractmethod
    async def upsert_vector(
        self,
        chunk_id: str,
        vector: list[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Insert or replace the vector stored under *chunk_id*.

        Raises
        ------
        src.utils.errors.InvalidConfigurationError
            If *vector* does not match the index dimension.
        src.utils.errors.ProviderUnavailableError
            If the index cannot be written.
        """

    @abstractmethod
    async def query(self, vector: list[float], k: int) -> list[VectorMatch]:
        """Return up to *k* nearest chunk ids, most similar first."""

    @abstractmethod
    async def delete_vectors(self, chunk_ids: list[str]) -> int:
        """Delete the given ids; unknown ids are ignored.

        Returns
        -------
        int
            Number of ids submitted for deletion.
        """

    @abstractmethod
    async def list_ids(self) -> list[str]:
        """Return every chunk id currently present in the index."""

    @abstractmethod
    async def count(self) -> int:
        """Return the number of vectors in the index."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the index is configured and reachable."""
