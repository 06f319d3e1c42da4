"""Nomic embedding provider adapter (local/free via Ollama).

Wraps the Ollama OpenAI-compatible endpoint to implement
:class:`IEmbeddingProvider` using ``nomic-embed-text`` (768 dimensions).
Runs locally with no API key required.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider, check_dimensions
from src.utils.errors import ProviderTimeoutError, ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_OLLAMA_BATCH_LIMIT = 512


class NomicEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by ``nomic-embed-text`` served via Ollama.

    Communicates through the OpenAI-compatible ``/v1`` endpoint that Ollama
    exposes.  Handles automatic batching for inputs exceeding 512 texts per
    call.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._client = client or openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",  # Ollama doesn't require a real key
            max_retries=0,
        )
        self._model = "nomic-embed-text"
        self._dimension = settings.embedding_dimension or 768

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts."""
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), _OLLAMA_BATCH_LIMIT):
            batch = texts[start : start + _OLLAMA_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(
                    input=batch,
                    model=self._model,
                )
            except openai.APITimeoutError as exc:
                raise ProviderTimeoutError(
                    message="Nomic/Ollama embedding timed out",
                    provider_name=self.get_provider_name(),
                ) from exc
            except openai.APIError as exc:
                raise ProviderUnavailableError(
                    message=f"Nomic/Ollama embedding API error: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            all_embeddings.extend(item.embedding for item in response.data)
            logger.info(
                "nomic_embedding_batch",
                model=self._model,
                batch_size=len(batch),
            )
        return check_dimensions(all_embeddings, self._dimension, self.get_provider_name())

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "nomic_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama server is reachable."""
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
            return response.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False
