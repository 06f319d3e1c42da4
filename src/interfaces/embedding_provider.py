"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations may wrap OpenAI ``text-embedding-3-small``, Nomic
``nomic-embed-text`` (local via Ollama), or any other embedding backend.
One embedding model serves one index: every vector a provider returns must
have exactly :meth:`IEmbeddingProvider.get_dimension` components.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.utils.errors import InvalidConfigurationError


# Concrete implementations:
#   OpenAIEmbeddingProvider  — text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider   — nomic-embed-text via Ollama (local)
# Located in: src/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and query.

    Embeddings are consumed by
    :class:`~src.interfaces.vector_store_provider.IVectorStoreProvider` for
    indexing and query-time similarity search.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations should
            handle batching internally if the underlying API has a per-call
            limit.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        src.utils.errors.ProviderUnavailableError
            If the embedding service cannot be reached.
        src.utils.errors.InvalidConfigurationError
            If the service returns vectors of the wrong dimension.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        Convenience wrapper around :meth:`embed` for the common single-text
        case (e.g. embedding a question).
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        This value must remain constant for the lifetime of the provider
        instance and must match the dimension of the vector index.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider.

        Example return values: ``"openai-text-embedding-3-small"``,
        ``"nomic-embed-text"``.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""


def check_dimensions(
    vectors: list[list[float]],
    expected: int,
    provider_name: str,
) -> list[list[float]]:
    """Reject any vector whose length differs from *expected*.

    Vectors are never truncated or padded; a mismatch means the configured
    model does not match the index.
    """
    for vec in vectors:
        if len(vec) != expected:
            raise InvalidConfigurationError(
                message=(
                    f"Embedding dimension mismatch: expected {expected}, "
                    f"got {len(vec)}"
                ),
                provider_name=provider_name,
            )
    return vectors
