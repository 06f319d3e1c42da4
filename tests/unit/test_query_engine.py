"""Unit tests for QueryEngine -- retrieval join, citations, degradation and logging."""

from __future__ import annotations

import asyncio

import pytest

from src.models.rag import Chunk, ChunkStatus, Document, VectorMatch
from src.models.routing import IntentCategory, RoutingRule, RoutingTable
from src.services.context_assembler import ContextAssembler
from src.services.intent_classifier import IntentClassifier
from src.services.model_router import ModelRouter
from src.services.query_engine import QueryEngine
from src.utils.errors import GenerationUnavailableError, InvalidRequestError, LLMError
from tests.conftest import (
    InMemoryMetadataStore,
    InMemoryVectorStore,
    MockEmbeddingProvider,
    ScriptedLLMProvider,
    whitespace_token_counter,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _seed(
    metadata_store: InMemoryMetadataStore,
    vector_store: InMemoryVectorStore,
    embedder: MockEmbeddingProvider,
    document_id: str,
    texts: list[str],
    title: str = "Resume",
) -> list[Chunk]:
    doc = Document(
        document_id=document_id,
        title=title,
        source_locator=f"file:///{document_id}.txt",
        project="hiring",
        tags=["cv"],
        content_hash="h",
    )
    await metadata_store.create_document(doc)
    stored: list[Chunk] = []
    for position, text in enumerate(texts):
        chunk = await metadata_store.upsert_chunk(
            Chunk(
                chunk_id=f"{document_id}-{position}",
                document_id=document_id,
                position=position,
                text=text,
                status=ChunkStatus.INDEXED,
            )
        )
        await vector_store.upsert_vector(chunk.chunk_id, embedder.vector_for(text))
        stored.append(chunk)
    return stored


class _LatestFirstVectorStore(InMemoryVectorStore):
    """Returns equal-score matches newest first, as an ANN index may."""

    def __init__(self) -> None:
        super().__init__()
        self.requested_k: list[int] = []

    async def query(self, vector: list[float], k: int) -> list[VectorMatch]:
        self.requested_k.append(k)
        oldest_first = await super().query(vector, len(self.vectors))
        newest_first = list(reversed(oldest_first))
        newest_first.sort(key=lambda m: m.score, reverse=True)
        return newest_first[:k]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("question", ["", "   ", "\n\t"])
    async def test_rejects_empty_question(self, query_engine: QueryEngine, question: str) -> None:
        with pytest.raises(InvalidRequestError):
            await query_engine.answer(question)

    @pytest.mark.asyncio
    async def test_rejects_overlong_question(
        self, embedder, vector_store, metadata_store, model_router, fast_retry
    ) -> None:
        engine = QueryEngine(
            embedder,
            vector_store,
            metadata_store,
            IntentClassifier(),
            model_router,
            fast_retry,
            max_question_chars=20,
        )
        with pytest.raises(InvalidRequestError):
            await engine.answer("x" * 21)
        assert metadata_store.query_logs == {}


# ---------------------------------------------------------------------------
# Answering
# ---------------------------------------------------------------------------


class TestAnswer:
    @pytest.mark.asyncio
    async def test_cites_retrieved_chunks_and_logs(
        self, query_engine, metadata_store, vector_store, embedder, anthropic_llm
    ) -> None:
        await _seed(
            metadata_store,
            vector_store,
            embedder,
            "resume",
            ["Summary of the resume: ten years of backend engineering."],
        )

        response = await query_engine.answer("Summarize the resume")

        assert response.category is IntentCategory.EXPLAIN
        assert response.provider_requested == "anthropic"
        assert response.provider_used == "anthropic"
        assert response.unsupported_by_corpus is False
        assert [c.chunk_id for c in response.citations] == ["resume-0"]
        citation = response.citations[0]
        assert citation.document_title == "Resume"
        assert citation.project == "hiring"
        assert citation.tags == ["cv"]

        log = metadata_store.query_logs[response.query_id]
        assert log.provider_used == "anthropic"
        assert log.citations == response.citations
        assert "ten years of backend engineering" in anthropic_llm.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_empty_corpus_is_unsupported(self, query_engine, metadata_store) -> None:
        response = await query_engine.answer("Summarize the resume")

        assert response.citations == []
        assert response.unsupported_by_corpus is True
        assert response.answer == "answer from anthropic"
        assert metadata_store.query_logs[response.query_id].unsupported_by_corpus is True

    @pytest.mark.asyncio
    async def test_prior_context_reaches_the_model(self, query_engine, anthropic_llm) -> None:
        await query_engine.answer("Explain that again", prior_context="We talked about caching.")
        assert "We talked about caching." in anthropic_llm.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_failover_is_reported(
        self, embedder, vector_store, metadata_store, routing_table, fast_retry
    ) -> None:
        router = ModelRouter(
            routing_table,
            {
                "anthropic": ScriptedLLMProvider("anthropic", error=LLMError(message="x")),
                "openai": ScriptedLLMProvider("openai"),
            },
            fast_retry,
        )
        engine = QueryEngine(
            embedder, vector_store, metadata_store, IntentClassifier(), router, fast_retry
        )

        response = await engine.answer("Summarize the resume")

        assert response.failed_over is True
        assert response.provider_requested == "anthropic"
        assert response.provider_used == "openai"
        log = metadata_store.query_logs[response.query_id]
        assert (log.provider_requested, log.provider_used) == ("anthropic", "openai")

    @pytest.mark.asyncio
    async def test_generation_unavailable_propagates_without_log(
        self, embedder, vector_store, metadata_store, routing_table, fast_retry
    ) -> None:
        router = ModelRouter(
            routing_table,
            {"openai": ScriptedLLMProvider("openai", error=LLMError(message="x"))},
            fast_retry,
        )
        engine = QueryEngine(
            embedder, vector_store, metadata_store, IntentClassifier(), router, fast_retry
        )

        with pytest.raises(GenerationUnavailableError):
            await engine.answer("Summarize the resume")
        assert metadata_store.query_logs == {}


# ---------------------------------------------------------------------------
# Retrieval join
# ---------------------------------------------------------------------------


class TestRetrieval:
    @pytest.mark.asyncio
    async def test_orphan_vectors_are_skipped(
        self, query_engine, metadata_store, vector_store, embedder
    ) -> None:
        await _seed(metadata_store, vector_store, embedder, "doc", ["resume summary text"])
        await vector_store.upsert_vector("ghost", embedder.vector_for("resume summary text"))

        retrieved = await query_engine.retrieve("resume summary")

        assert [r.chunk.chunk_id for r in retrieved] == ["doc-0"]

    @pytest.mark.asyncio
    async def test_equal_scores_break_ties_by_insertion_order(
        self, query_engine, metadata_store, vector_store, embedder
    ) -> None:
        await _seed(metadata_store, vector_store, embedder, "b-first", ["identical words"])
        await _seed(metadata_store, vector_store, embedder, "a-second", ["identical words"])

        retrieved = await query_engine.retrieve("identical words")

        assert [r.chunk.chunk_id for r in retrieved] == ["b-first-0", "a-second-0"]
        assert retrieved[0].similarity_score == pytest.approx(retrieved[1].similarity_score)

    @pytest.mark.asyncio
    async def test_ties_at_cutoff_use_insertion_order_not_index_order(
        self, embedder, metadata_store, model_router, fast_retry
    ) -> None:
        store = _LatestFirstVectorStore()
        for i in range(30):
            await _seed(metadata_store, store, embedder, f"c{i:02d}", ["identical words"])
        engine = QueryEngine(
            embedder,
            store,
            metadata_store,
            IntentClassifier(),
            model_router,
            fast_retry,
            top_k=3,
        )

        retrieved = await engine.retrieve("identical words")

        assert [r.chunk.document_id for r in retrieved] == ["c00", "c01", "c02"]
        # The fetch widens until the index runs out of tied vectors.
        assert store.requested_k[-1] > 30

    @pytest.mark.asyncio
    async def test_fetch_stops_once_cutoff_score_is_passed(
        self, embedder, metadata_store, fast_retry, model_router
    ) -> None:
        store = _LatestFirstVectorStore()
        for i in range(20):
            await _seed(metadata_store, store, embedder, f"far{i:02d}", [f"unrelated{i} filler"])
        await _seed(metadata_store, store, embedder, "near", ["resume summary"])
        engine = QueryEngine(
            embedder, store, metadata_store, IntentClassifier(), model_router, fast_retry, top_k=1
        )

        retrieved = await engine.retrieve("resume summary")

        assert [r.chunk.document_id for r in retrieved] == ["near"]
        assert len(store.requested_k) == 1

    @pytest.mark.asyncio
    async def test_embedder_failure_degrades_to_unsupported_answer(
        self, query_engine, metadata_store, vector_store, embedder
    ) -> None:
        await _seed(metadata_store, vector_store, embedder, "doc", ["resume summary text"])
        embedder.fail_always = True

        response = await query_engine.answer("Summarize the resume")

        assert response.unsupported_by_corpus is True
        assert response.citations == []
        assert response.answer == "answer from anthropic"

    @pytest.mark.asyncio
    async def test_index_failure_degrades(self, query_engine, vector_store) -> None:
        vector_store.fail_queries = True
        assert await query_engine.retrieve("anything") == []

    @pytest.mark.asyncio
    async def test_citations_limited_to_chunks_in_context(
        self, embedder, vector_store, metadata_store, fast_retry
    ) -> None:
        long_text = "resume " + " ".join(f"skill{i}" for i in range(60))
        await _seed(metadata_store, vector_store, embedder, "big", [long_text])
        await _seed(metadata_store, vector_store, embedder, "small", ["resume resume"])

        table = RoutingTable(
            rules={},
            default=RoutingRule(provider="openai", model="m", max_context_tokens=30),
        )
        router = ModelRouter(table, {"openai": ScriptedLLMProvider("openai")}, fast_retry)
        engine = QueryEngine(
            embedder,
            vector_store,
            metadata_store,
            IntentClassifier(),
            router,
            fast_retry,
            assembler=ContextAssembler(whitespace_token_counter(), system_prompt=""),
        )

        response = await engine.answer("resume")

        # "small" is most similar and fits; "big" exceeds what is left.
        assert [c.chunk_id for c in response.citations] == ["small-0"]


# ---------------------------------------------------------------------------
# Query log
# ---------------------------------------------------------------------------


class TestQueryLog:
    @pytest.mark.asyncio
    async def test_log_failure_does_not_fail_answer(self, query_engine, metadata_store) -> None:
        metadata_store.fail_log_writes = True
        response = await query_engine.answer("Summarize the resume")
        assert response.answer == "answer from anthropic"
        assert metadata_store.query_logs == {}

    @pytest.mark.asyncio
    async def test_cancel_during_dispatch_writes_no_log(
        self, embedder, vector_store, metadata_store, routing_table, fast_retry
    ) -> None:
        started = asyncio.Event()

        class _Hanging(ScriptedLLMProvider):
            async def complete(self, *args, **kwargs):
                started.set()
                await asyncio.sleep(10)
                return "never"

        router = ModelRouter(
            routing_table,
            {"anthropic": _Hanging("anthropic"), "openai": _Hanging("openai")},
            fast_retry,
        )
        engine = QueryEngine(
            embedder, vector_store, metadata_store, IntentClassifier(), router, fast_retry
        )

        task = asyncio.create_task(engine.answer("Summarize the resume"))
        await asyncio.wait_for(started.wait(), timeout=1.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert metadata_store.query_logs == {}

    @pytest.mark.asyncio
    async def test_started_log_write_survives_caller_cancellation(
        self, query_engine, metadata_store
    ) -> None:
        entered = asyncio.Event()
        release = asyncio.Event()
        original = metadata_store.append_query_log

        async def _slow_append(entry):
            entered.set()
            await release.wait()
            await original(entry)

        metadata_store.append_query_log = _slow_append

        task = asyncio.create_task(query_engine.answer("Summarize the resume"))
        await asyncio.wait_for(entered.wait(), timeout=1.0)
        task.cancel()
        release.set()
        with pytest.raises(asyncio.CancelledError):
            await task
        # Let the shielded write finish.
        for _ in range(5):
            await asyncio.sleep(0)
        assert len(metadata_store.query_logs) == 1
