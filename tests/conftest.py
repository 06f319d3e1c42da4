"""Shared pytest fixtures for the knowchat test suite.

In-memory fakes stand in for the external services so ingestion and
query behaviour can be exercised end to end without network access:

* :class:`MockEmbeddingProvider` -- deterministic hashed bag-of-words
  vectors, so texts sharing words are similar.
* :class:`InMemoryVectorStore` -- cosine similarity over a dict.
* :class:`InMemoryMetadataStore` -- documents, chunks and query logs in
  dicts, with the same sequencing rules as the SQLite store.
* :class:`ScriptedLLMProvider` -- canned replies plus injectable failures.
"""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any

import pytest
from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.pre_tokenizers import WhitespaceSplit

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.metadata_store import IMetadataStore
from src.interfaces.vector_store_provider import IVectorStoreProvider
from src.models.rag import Chunk, ChunkStatus, Document, QueryLog, VectorMatch
from src.models.routing import IntentCategory, RoutingRule, RoutingTable
from src.providers.extraction import default_extraction_service
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.ingestion_service import IngestionService
from src.services.context_assembler import ContextAssembler
from src.services.intent_classifier import IntentClassifier
from src.services.model_router import ModelRouter
from src.services.query_engine import QueryEngine
from src.services.token_counter import TokenCounter
from src.utils.errors import InvalidConfigurationError, ProviderUnavailableError
from src.utils.retry import RetryPolicy

_WORD_RE = re.compile(r"[a-z0-9]+")

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class MockEmbeddingProvider(IEmbeddingProvider):
    """Hashed bag-of-words embedder.

    ``fail_times`` makes the next N ``embed`` calls raise
    :class:`ProviderUnavailableError`; ``fail_always`` makes every call fail.
    """

    def __init__(self, dimension: int = 64) -> None:
        self._dimension = dimension
        self.fail_times = 0
        self.fail_always = False
        self.calls = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self.fail_always or self.fail_times > 0:
            self.fail_times = max(0, self.fail_times - 1)
            raise ProviderUnavailableError(message="embedder down", provider_name="mock")
        return [self.vector_for(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def vector_for(self, text: str) -> list[float]:
        vec = [0.0] * self._dimension
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.sha256(word.encode()).hexdigest(), 16) % self._dimension
            vec[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        return [v / norm for v in vec] if norm else vec

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


class InMemoryVectorStore(IVectorStoreProvider):
    """Cosine-similarity index held in a dict."""

    def __init__(self, dimension: int = 64) -> None:
        self._dimension = dimension
        self.vectors: dict[str, list[float]] = {}
        self.metadata: dict[str, dict[str, Any]] = {}
        self.fail_upserts = 0
        self.fail_queries = False

    async def upsert_vector(
        self,
        chunk_id: str,
        vector: list[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if len(vector) != self._dimension:
            raise InvalidConfigurationError(
                message=f"expected {self._dimension} dims, got {len(vector)}",
                provider_name="memory",
            )
        if self.fail_upserts > 0:
            self.fail_upserts -= 1
            raise ProviderUnavailableError(message="index down", provider_name="memory")
        self.vectors[chunk_id] = list(vector)
        self.metadata[chunk_id] = dict(metadata or {})

    async def query(self, vector: list[float], k: int) -> list[VectorMatch]:
        if self.fail_queries:
            raise ProviderUnavailableError(message="index down", provider_name="memory")
        scored = [
            VectorMatch(chunk_id=cid, score=_cosine(vector, stored))
            for cid, stored in self.vectors.items()
        ]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[:k]

    async def delete_vectors(self, chunk_ids: list[str]) -> int:
        for cid in chunk_ids:
            self.vectors.pop(cid, None)
            self.metadata.pop(cid, None)
        return len(chunk_ids)

    async def list_ids(self) -> list[str]:
        return list(self.vectors)

    async def count(self) -> int:
        return len(self.vectors)

    def get_provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True


class InMemoryMetadataStore(IMetadataStore):
    """Dict-backed metadata store with store-assigned chunk sequences."""

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.chunks: dict[str, Chunk] = {}
        self.query_logs: dict[str, QueryLog] = {}
        self.fail_log_writes = False
        self._seq = 0

    async def initialize(self) -> None:
        return None

    async def create_document(self, document: Document) -> Document:
        return self.documents.setdefault(document.document_id, document)

    async def get_document(self, document_id: str) -> Document | None:
        return self.documents.get(document_id)

    async def get_documents(self, document_ids: list[str]) -> dict[str, Document]:
        return {d: self.documents[d] for d in document_ids if d in self.documents}

    async def get_document_by_source(self, source_locator: str) -> Document | None:
        for doc in self.documents.values():
            if doc.source_locator == source_locator:
                return doc
        return None

    async def update_document(self, document: Document) -> Document:
        self.documents[document.document_id] = document
        return document

    async def upsert_chunk(self, chunk: Chunk) -> Chunk:
        existing = self.chunks.get(chunk.chunk_id)
        if existing is not None:
            seq = existing.sequence
        else:
            self._seq += 1
            seq = self._seq
        stored = chunk.model_copy(update={"sequence": seq})
        self.chunks[chunk.chunk_id] = stored
        return stored

    async def set_chunk_status(self, chunk_id: str, status: ChunkStatus) -> bool:
        chunk = self.chunks.get(chunk_id)
        if chunk is None:
            return False
        self.chunks[chunk_id] = chunk.model_copy(update={"status": status})
        return True

    async def update_chunk_metadata(self, document_id: str, metadata: dict[str, Any]) -> int:
        touched = 0
        for cid, chunk in list(self.chunks.items()):
            if chunk.document_id == document_id:
                merged = {**chunk.metadata, **metadata}
                self.chunks[cid] = chunk.model_copy(update={"metadata": merged})
                touched += 1
        return touched

    async def get_chunks(self, chunk_ids: list[str]) -> dict[str, Chunk]:
        return {c: self.chunks[c] for c in chunk_ids if c in self.chunks}

    async def get_chunks_for_document(self, document_id: str) -> list[Chunk]:
        rows = [c for c in self.chunks.values() if c.document_id == document_id]
        return sorted(rows, key=lambda c: c.position)

    async def list_pending_chunks(self, limit: int | None = None) -> list[Chunk]:
        rows = sorted(
            (c for c in self.chunks.values() if c.status is ChunkStatus.EMBEDDING_PENDING),
            key=lambda c: c.sequence,
        )
        return rows[:limit] if limit is not None else rows

    async def delete_chunks_for_document(self, document_id: str) -> int:
        doomed = [cid for cid, c in self.chunks.items() if c.document_id == document_id]
        for cid in doomed:
            del self.chunks[cid]
        return len(doomed)

    async def list_chunk_ids(self) -> set[str]:
        return set(self.chunks)

    async def append_query_log(self, entry: QueryLog) -> None:
        if self.fail_log_writes:
            raise ProviderUnavailableError(message="log store down", provider_name="memory")
        self.query_logs.setdefault(entry.query_id, entry)

    async def get_query_log(self, query_id: str) -> QueryLog | None:
        return self.query_logs.get(query_id)

    async def get_stats(self) -> dict[str, int]:
        return {
            "documents": len(self.documents),
            "chunks": len(self.chunks),
            "pending_chunks": sum(
                1 for c in self.chunks.values() if c.status is ChunkStatus.EMBEDDING_PENDING
            ),
            "query_logs": len(self.query_logs),
        }


class ScriptedLLMProvider(ILLMProvider):
    """LLM fake that records every call.

    ``replies`` are returned in order, then ``default_reply``.  ``error``
    (an exception instance) is raised on every call when set.
    """

    def __init__(
        self,
        name: str,
        replies: list[str] | None = None,
        default_reply: str | None = None,
        error: Exception | None = None,
        available: bool = True,
    ) -> None:
        self._name = name
        self._replies = list(replies or [])
        self._default = default_reply if default_reply is not None else f"answer from {name}"
        self.error = error
        self.available = available
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.error is not None:
            raise self.error
        if self._replies:
            return self._replies.pop(0)
        return self._default

    def get_provider_name(self) -> str:
        return self._name

    def is_available(self) -> bool:
        return self.available

    async def validate_credentials(self) -> bool:
        return self.available


def whitespace_token_counter(safety_margin: float = 1.0) -> TokenCounter:
    """Offline counter whose model tokens are whitespace-separated words."""
    tokenizer = Tokenizer(WordLevel({"[UNK]": 0}, unk_token="[UNK]"))
    tokenizer.pre_tokenizer = WhitespaceSplit()
    return TokenCounter(tokenizer, safety_margin=safety_margin)


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if not na or not nb:
        return 0.0
    return dot / (na * nb)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Two attempts, no backoff, short timeout."""
    return RetryPolicy(max_attempts=2, timeout_seconds=2.0, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def routing_table() -> RoutingTable:
    """EXPLAIN -> anthropic, ANALYZE/RESEARCH -> openai, default openai mini."""
    return RoutingTable(
        rules={
            IntentCategory.EXPLAIN: RoutingRule(
                provider="anthropic", model="claude-test", max_context_tokens=4000
            ),
            IntentCategory.ANALYZE: RoutingRule(
                provider="openai", model="gpt-test", max_context_tokens=4000
            ),
            IntentCategory.RESEARCH: RoutingRule(
                provider="openai", model="gpt-test", max_context_tokens=4000
            ),
        },
        default=RoutingRule(provider="openai", model="gpt-mini-test", max_context_tokens=4000),
        fallback_category=IntentCategory.EXPLAIN,
    )


@pytest.fixture
def embedder() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def anthropic_llm() -> ScriptedLLMProvider:
    return ScriptedLLMProvider("anthropic")


@pytest.fixture
def openai_llm() -> ScriptedLLMProvider:
    return ScriptedLLMProvider("openai")


@pytest.fixture
def ingestion_service(
    embedder: MockEmbeddingProvider,
    vector_store: InMemoryVectorStore,
    metadata_store: InMemoryMetadataStore,
    fast_retry: RetryPolicy,
) -> IngestionService:
    return IngestionService(
        chunker=TextChunker(max_tokens=1000, overlap_fraction=0.2),
        embedding_provider=embedder,
        vector_store=vector_store,
        metadata_store=metadata_store,
        extraction_service=default_extraction_service(),
        retry_policy=fast_retry,
        concurrency=4,
    )


@pytest.fixture
def model_router(
    routing_table: RoutingTable,
    anthropic_llm: ScriptedLLMProvider,
    openai_llm: ScriptedLLMProvider,
    fast_retry: RetryPolicy,
) -> ModelRouter:
    return ModelRouter(
        routing_table=routing_table,
        providers={"anthropic": anthropic_llm, "openai": openai_llm},
        retry_policy=fast_retry,
    )


@pytest.fixture
def query_engine(
    embedder: MockEmbeddingProvider,
    vector_store: InMemoryVectorStore,
    metadata_store: InMemoryMetadataStore,
    model_router: ModelRouter,
    fast_retry: RetryPolicy,
) -> QueryEngine:
    return QueryEngine(
        embedding_provider=embedder,
        vector_store=vector_store,
        metadata_store=metadata_store,
        classifier=IntentClassifier(fallback_category=IntentCategory.EXPLAIN),
        router=model_router,
        retry_policy=fast_retry,
        top_k=6,
        assembler=ContextAssembler(whitespace_token_counter()),
    )
