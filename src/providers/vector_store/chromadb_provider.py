"""ChromaDB vector index provider adapter.

Wraps `chromadb.PersistentClient` to implement :class:`IVectorStoreProvider`.
Uses cosine distance for similarity search.  Fully local, free, and
Python-native — no external service required.

The collection stores vectors and a small metadata dict only; chunk text
lives in the metadata store.  ChromaDB's client is synchronous, so every
call runs via ``asyncio.to_thread`` to keep the event loop free and to let
callers bound it with ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

# Disable ChromaDB telemetry completely before importing chromadb.
# A version mismatch between ChromaDB's bundled PostHog client and the
# installed version causes "capture() takes 1 positional argument but 3
# were given" errors.  Three layers:
#   1. ANONYMIZED_TELEMETRY env var — respected by some ChromaDB versions
#   2. posthog.disabled = True — disables the PostHog SDK directly
#   3. Settings(anonymized_telemetry=False) — passed to PersistentClient
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.rag import VectorMatch
from src.utils.errors import InvalidConfigurationError, ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_LIST_PAGE_SIZE = 1000


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that prevents ChromaDB from loading a model.

    knowchat always passes pre-computed embeddings, so ChromaDB's built-in
    embedding is never invoked.  Without this, ChromaDB downloads and loads
    the default all-MiniLM-L6-v2 ONNX model on collection creation.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "knowchat uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


class ChromaDBProvider(IVectorStoreProvider):
    """Vector index backed by ChromaDB with local persistence.

    Parameters
    ----------
    dimension:
        Vector length every upsert and query must have.  Checked against
        vectors already stored in the collection at startup.
    persist_directory:
        Directory for ChromaDB's on-disk data.
    collection_name:
        Collection holding chunk vectors.
    client:
        Pre-built ChromaDB client (tests pass an ``EphemeralClient``).
    """

    def __init__(
        self,
        dimension: int,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "knowchat_corpus",
        client: Any | None = None,
    ) -> None:
        self._dimension = dimension
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        # Newer ChromaDB versions refuse an embedding function that differs
        # from the persisted one; fall back to the persisted function since
        # embeddings are always supplied explicitly.
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )

        self._validate_embedding_dimensions()

    # ------------------------------------------------------------------
    # Startup validation
    # ------------------------------------------------------------------

    def _validate_embedding_dimensions(self) -> None:
        """Verify the configured dimension matches vectors already stored.

        Peeks at a single stored vector and compares its length.  A mismatch
        means the embedding model changed without re-embedding the corpus,
        so every query would return garbage; fail at startup instead.
        """
        if self._collection.count() == 0:
            return

        sample = self._collection.peek(limit=1)
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return

        stored_dim = len(embeddings[0])
        if stored_dim != self._dimension:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored_dim,
                expected_dim=self._dimension,
                collection=self._collection_name,
            )
            raise InvalidConfigurationError(
                message=(
                    f"Embedding dimension mismatch: index has {stored_dim}-dim vectors "
                    f"but the embedding provider produces {self._dimension}-dim vectors. "
                    f"Configure the model used to build the corpus or re-embed it."
                ),
                provider_name=self.get_provider_name(),
            )
        logger.info("embedding_dimension_validated", dimension=stored_dim)

    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self._dimension:
            raise InvalidConfigurationError(
                message=f"Vector has {len(vector)} dims, index expects {self._dimension}",
                provider_name=self.get_provider_name(),
            )

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert_vector(
        self,
        chunk_id: str,
        vector: list[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Insert or replace one vector (idempotent on ``chunk_id``)."""
        self._check_dimension(vector)
        kwargs: dict[str, Any] = {"ids": [chunk_id], "embeddings": [vector]}
        clean = self._clean_metadata(metadata or {})
        if clean:
            kwargs["metadatas"] = [clean]
        try:
            await asyncio.to_thread(self._collection.upsert, **kwargs)
        except Exception as exc:  # noqa: BLE001 — chromadb raises many types
            raise ProviderUnavailableError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("chromadb_upsert", chunk_id=chunk_id)

    async def query(self, vector: list[float], k: int) -> list[VectorMatch]:
        """Return up to *k* nearest chunk ids with cosine similarity scores."""
        self._check_dimension(vector)
        try:
            total = await asyncio.to_thread(self._collection.count)
            if total == 0 or k <= 0:
                return []
            results = await asyncio.to_thread(
                self._collection.query,
                query_embeddings=[vector],
                n_results=min(k, total),
                include=["distances"],
            )
        except Exception as exc:  # noqa: BLE001
            raise ProviderUnavailableError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ids = results["ids"][0] if results.get("ids") else []
        distances = results["distances"][0] if results.get("distances") else [0.0] * len(ids)

        # Cosine distance is 1 - cosine similarity.
        matches = [
            VectorMatch(chunk_id=cid, score=1.0 - float(distance))
            for cid, distance in zip(ids, distances, strict=True)
        ]
        logger.info(
            "chromadb_query",
            k=k,
            results_count=len(matches),
            top_score=matches[0].score if matches else 0.0,
        )
        return matches

    async def delete_vectors(self, chunk_ids: list[str]) -> int:
        """Delete vectors by id; ids that are not present are ignored."""
        if not chunk_ids:
            return 0
        try:
            await asyncio.to_thread(self._collection.delete, ids=list(chunk_ids))
        except Exception as exc:  # noqa: BLE001
            raise ProviderUnavailableError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete_vectors", count=len(chunk_ids))
        return len(chunk_ids)

    async def list_ids(self) -> list[str]:
        """Page through the collection and return every stored id."""
        ids: list[str] = []
        offset = 0
        try:
            while True:
                page = await asyncio.to_thread(
                    self._collection.get,
                    include=[],
                    limit=_LIST_PAGE_SIZE,
                    offset=offset,
                )
                batch = page.get("ids") or []
                ids.extend(batch)
                if len(batch) < _LIST_PAGE_SIZE:
                    break
                offset += _LIST_PAGE_SIZE
        except Exception as exc:  # noqa: BLE001
            raise ProviderUnavailableError(
                message=f"ChromaDB list_ids failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return ids

    async def count(self) -> int:
        try:
            return await asyncio.to_thread(self._collection.count)
        except Exception as exc:  # noqa: BLE001
            raise ProviderUnavailableError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the ChromaDB collection is accessible."""
        try:
            self._collection.count()
            return True
        except Exception:  # noqa: BLE001
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _clean_metadata(metadata: dict[str, Any]) -> dict[str, str | int | float | bool]:
        """Coerce metadata to ChromaDB's scalar-only value types.

        Lists are serialized as comma-separated strings; ``None`` values
        are dropped.
        """
        clean: dict[str, str | int | float | bool] = {}
        for key, value in metadata.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple, set)):
                clean[key] = ",".join(str(v) for v in value)
            elif isinstance(value, (str, int, float, bool)):
                clean[key] = value
            else:
                clean[key] = str(value)
        return clean
