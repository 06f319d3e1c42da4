"""Question answering over the indexed corpus.

The :class:`QueryEngine` ties retrieval, classification, routing and
generation together for a single question:

    validate -> embed -> retrieve + join -> classify -> route
             -> assemble context -> dispatch -> cite -> log

Retrieval is best effort: when the embedder or the vector index is
unreachable after retries the engine answers without context and flags
the response ``unsupported_by_corpus``.  Generation is not best effort;
if neither the routed nor the default provider answers, the
:class:`GenerationUnavailableError` propagates to the caller.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING

import structlog

from src.models.rag import Citation, QueryLog, QueryResponse, RetrievedChunk, VectorMatch
from src.services.context_assembler import ContextAssembler
from src.services.ingestion.chunker import count_tokens
from src.utils.errors import InvalidRequestError, KnowChatError
from src.utils.retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from src.interfaces.embedding_provider import IEmbeddingProvider
    from src.interfaces.metadata_store import IMetadataStore
    from src.interfaces.vector_store_provider import IVectorStoreProvider
    from src.services.intent_classifier import IntentClassifier
    from src.services.model_router import ModelRouter

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TOP_K = 6
DEFAULT_MAX_QUESTION_CHARS = 4000

# Extra candidates fetched beyond top_k so ties at the cut-off can be
# ordered by insertion sequence rather than by the index.
_CANDIDATE_MARGIN = 8


class QueryEngine:
    """Answers questions from the corpus with citations.

    Parameters
    ----------
    embedding_provider:
        Embeds the question; must match the model used at ingestion.
    vector_store:
        Similarity index over chunk vectors.
    metadata_store:
        Source of chunk and document records and sink for the query log.
    classifier:
        Maps the question to an intent category.
    router:
        Selects and calls the LLM for that category.
    retry_policy:
        Timeout and retry limits for the embed and query calls.
    top_k:
        Number of nearest chunks returned.  The index is asked for more
        candidates while the score at the cut-off is still tied.
    max_question_chars:
        Longest accepted question.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        metadata_store: IMetadataStore,
        classifier: IntentClassifier,
        router: ModelRouter,
        retry_policy: RetryPolicy | None = None,
        top_k: int = DEFAULT_TOP_K,
        max_question_chars: int = DEFAULT_MAX_QUESTION_CHARS,
        assembler: ContextAssembler | None = None,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._metadata_store = metadata_store
        self._classifier = classifier
        self._router = router
        self._retry_policy = retry_policy or RetryPolicy()
        self._top_k = max(1, top_k)
        self._max_question_chars = max_question_chars
        self._assembler = assembler or ContextAssembler()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def answer(self, question: str, prior_context: str | None = None) -> QueryResponse:
        """Answer *question*, citing only the chunks placed in the context.

        Raises
        ------
        InvalidRequestError
            If the question is empty or too long.
        GenerationUnavailableError
            If no LLM provider could produce an answer.
        """
        self._validate(question)
        question = question.strip()

        retrieved = await self.retrieve(question)

        classification = await self._classifier.classify(question)
        handle = self._router.route(classification.category)

        assembled = self._assembler.assemble(
            retrieved,
            routed=handle.rule,
            default=self._router.routing_table.default,
            question=question,
            prior_context=prior_context,
        )

        result = await self._router.dispatch(
            handle,
            question=question,
            context=assembled.text,
            prior_context=prior_context,
        )

        citations = [self._citation_for(item) for item in assembled.included]
        unsupported = not citations
        query_id = str(uuid.uuid4())

        entry = QueryLog(
            query_id=query_id,
            question=question,
            category=classification.category,
            provider_requested=result.provider_requested,
            provider_used=result.provider_used,
            answer=result.text,
            citations=citations,
            unsupported_by_corpus=unsupported,
        )
        await self._write_log(entry)

        logger.info(
            "query_answered",
            query_id=query_id,
            category=classification.category.value,
            classification_method=classification.method,
            provider_requested=result.provider_requested,
            provider_used=result.provider_used,
            failed_over=result.failed_over,
            retrieved=len(retrieved),
            cited=len(citations),
            unsupported_by_corpus=unsupported,
        )

        return QueryResponse(
            query_id=query_id,
            answer=result.text,
            citations=citations,
            category=classification.category,
            provider_requested=result.provider_requested,
            provider_used=result.provider_used,
            failed_over=result.failed_over,
            unsupported_by_corpus=unsupported,
        )

    async def retrieve(self, question: str) -> list[RetrievedChunk]:
        """Nearest chunks for *question*, joined to their records.

        Returns an empty list when the embedder or the index is
        unavailable.  Matches without a chunk or document record are
        logged as orphans and skipped.
        """
        try:
            vector = await call_with_retry(
                lambda: self._embedding_provider.embed_single(question),
                policy=self._retry_policy,
                operation="embed_query",
                provider_name=self._embedding_provider.get_provider_name(),
            )
            matches = await self._nearest(vector)
        except KnowChatError as exc:
            logger.warning("retrieval_degraded", error=str(exc), code=exc.code)
            return []

        if not matches:
            return []

        chunks = await self._metadata_store.get_chunks([m.chunk_id for m in matches])
        documents = await self._metadata_store.get_documents(
            sorted({c.document_id for c in chunks.values()})
        )

        retrieved: list[RetrievedChunk] = []
        for match in matches:
            chunk = chunks.get(match.chunk_id)
            document = documents.get(chunk.document_id) if chunk is not None else None
            if chunk is None or document is None:
                logger.warning(
                    "orphan_vector_detected",
                    chunk_id=match.chunk_id,
                    missing="chunk" if chunk is None else "document",
                )
                continue
            retrieved.append(
                RetrievedChunk(
                    chunk=chunk,
                    document=document,
                    similarity_score=match.score,
                    token_count=count_tokens(chunk.text),
                )
            )

        retrieved.sort(key=lambda r: (-r.similarity_score, r.chunk.sequence))
        return retrieved[: self._top_k]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _nearest(self, vector: list[float]) -> list[VectorMatch]:
        """Index matches covering every chunk tied with the top_k-th score.

        Indexes order equal scores arbitrarily, so the fetch grows until
        the last returned score falls below the cut-off score or the index
        runs out of vectors.
        """
        fetch = self._top_k + _CANDIDATE_MARGIN
        while True:
            matches = await call_with_retry(
                lambda: self._vector_store.query(vector, fetch),
                policy=self._retry_policy,
                operation="vector_query",
                provider_name=self._vector_store.get_provider_name(),
            )
            if len(matches) < fetch:
                return matches
            cutoff = matches[self._top_k - 1].score
            if matches[-1].score < cutoff:
                return matches
            logger.debug("vector_query_widened", fetch=fetch, cutoff=cutoff)
            fetch *= 2

    def _validate(self, question: str) -> None:
        if not isinstance(question, str) or not question.strip():
            raise InvalidRequestError(message="Question must not be empty")
        if len(question) > self._max_question_chars:
            raise InvalidRequestError(
                message=(
                    f"Question is {len(question)} characters; "
                    f"the limit is {self._max_question_chars}"
                )
            )

    @staticmethod
    def _citation_for(item: RetrievedChunk) -> Citation:
        return Citation(
            chunk_id=item.chunk.chunk_id,
            document_id=item.document.document_id,
            document_title=item.document.title,
            source_locator=item.document.source_locator,
            project=item.document.project,
            tags=list(item.document.tags),
            position=item.chunk.position,
            similarity_score=item.similarity_score,
        )

    async def _write_log(self, entry: QueryLog) -> None:
        # Shielded so a cancelled caller does not abort a started write.
        try:
            await asyncio.shield(self._metadata_store.append_query_log(entry))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 — the answer stands without its log
            logger.error("query_log_write_failed", query_id=entry.query_id, error=str(exc))
