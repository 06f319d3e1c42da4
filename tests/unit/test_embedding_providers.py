"""Unit tests for embedding provider adapters — OpenAI and Nomic/Ollama."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from src.config.settings import Settings
from src.interfaces.embedding_provider import check_dimensions
from src.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.utils.errors import (
    InvalidConfigurationError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

_REQUEST = httpx.Request("POST", "https://api.example.test/v1/embeddings")


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
        "embedding_dimension": 0,
        "ollama_base_url": "http://localhost:11434",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _client(*vectors: list[float]) -> MagicMock:
    response = MagicMock()
    response.data = [MagicMock(embedding=v) for v in vectors]
    response.usage = MagicMock(total_tokens=12)
    client = MagicMock()
    client.embeddings.create = AsyncMock(return_value=response)
    return client


class TestOpenAIEmbeddingProvider:
    def test_default_model_dimension(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(), client=MagicMock())
        assert provider.get_dimension() == 1536
        assert provider.get_provider_name() == "openai_embedding"

    def test_explicit_dimension_wins(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(embedding_dimension=3, openai_base_url="http://compat"), client=MagicMock()
        )
        assert provider.get_dimension() == 3
        assert provider.get_provider_name() == "openai-compatible_embedding"

    @pytest.mark.asyncio
    async def test_embed_returns_vectors_in_order(self) -> None:
        client = _client([1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
        provider = OpenAIEmbeddingProvider(_settings(embedding_dimension=3), client=client)

        vectors = await provider.embed(["a", "b"])

        assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        assert client.embeddings.create.call_args.kwargs["input"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_embed_empty_makes_no_call(self) -> None:
        client = _client()
        provider = OpenAIEmbeddingProvider(_settings(), client=client)
        assert await provider.embed([]) == []
        client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_dimension_is_configuration_error(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(embedding_dimension=4), client=_client([1.0, 0.0, 0.0])
        )
        with pytest.raises(InvalidConfigurationError):
            await provider.embed_single("text")

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        client = _client()
        client.embeddings.create = AsyncMock(side_effect=openai.APITimeoutError(request=_REQUEST))
        provider = OpenAIEmbeddingProvider(_settings(), client=client)
        with pytest.raises(ProviderTimeoutError):
            await provider.embed(["x"])

    @pytest.mark.asyncio
    async def test_api_error_is_unavailable(self) -> None:
        client = _client()
        client.embeddings.create = AsyncMock(
            side_effect=openai.APIConnectionError(request=_REQUEST)
        )
        provider = OpenAIEmbeddingProvider(_settings(), client=client)
        with pytest.raises(ProviderUnavailableError):
            await provider.embed(["x"])


class TestNomicEmbeddingProvider:
    def test_defaults(self) -> None:
        provider = NomicEmbeddingProvider(_settings(), client=MagicMock())
        assert provider.get_dimension() == 768
        assert provider.get_provider_name() == "nomic_embedding"

    @pytest.mark.asyncio
    async def test_embed_single(self) -> None:
        client = _client([0.5, 0.5])
        provider = NomicEmbeddingProvider(_settings(embedding_dimension=2), client=client)

        assert await provider.embed_single("hello") == [0.5, 0.5]
        assert client.embeddings.create.call_args.kwargs["model"] == "nomic-embed-text"

    def test_is_available_probes_ollama(self) -> None:
        provider = NomicEmbeddingProvider(_settings(), client=MagicMock())
        with patch(
            "src.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=MagicMock(status_code=200),
        ):
            assert provider.is_available() is True
        with patch(
            "src.providers.embedding.nomic_embedding_provider.httpx.get",
            side_effect=httpx.ConnectError("refused"),
        ):
            assert provider.is_available() is False


def test_check_dimensions_passes_matching_vectors() -> None:
    vectors = [[0.0, 1.0], [1.0, 0.0]]
    assert check_dimensions(vectors, 2, "p") is vectors
