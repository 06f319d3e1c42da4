"""FastAPI routes for the knowchat service.

Service dependencies are resolved from ``app.state`` via FastAPI's
``Depends`` using the ``Annotated`` pattern.  Application errors raised by
the services propagate to :class:`ErrorHandlingMiddleware`, which turns
them into structured JSON.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                              Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/documents                     POST    Ingest one document
# /api/v1/query                         POST    Answer a question with citations
# /api/v1/maintenance/reembed           POST    Retry embedding_pending chunks
# /api/v1/maintenance/reconcile         POST    Delete orphan vectors
# /api/v1/stats                         GET     Corpus statistics
# /api/v1/health                        GET     Health check + provider status
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import base64
import binascii
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Request

from src.api.schemas import (
    DocumentIngestRequest,
    DocumentIngestResponse,
    ErrorResponse,
    HealthResponse,
    QueryRequest,
    ReembedRequest,
)
from src.models.rag import (
    CorpusStats,
    DocumentDescriptor,
    QueryResponse,
    ReconcileReport,
    RepairReport,
)
from src.services.ingestion.ingestion_service import IngestionService
from src.services.query_engine import QueryEngine
from src.utils.errors import InvalidRequestError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

APP_VERSION = "0.1.0"

router = APIRouter(prefix="/api/v1")

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_ingestion_service(request: Request) -> IngestionService:
    """Return the ingestion service from application state."""
    return request.app.state.ingestion_service


def _get_query_engine(request: Request) -> QueryEngine:
    """Return the query engine from application state."""
    return request.app.state.query_engine


IngestionDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
QueryEngineDep = Annotated[QueryEngine, Depends(_get_query_engine)]


def _decode_content(payload: str | None) -> bytes | None:
    if payload is None:
        return None
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidRequestError(message="content_base64 is not valid base64") from exc


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post(
    "/documents",
    response_model=DocumentIngestResponse,
    responses={**_ERROR_RESPONSES, 422: {"model": ErrorResponse}},
    summary="Ingest a document into the corpus",
)
async def ingest_document(
    body: DocumentIngestRequest, ingestion: IngestionDep
) -> DocumentIngestResponse:
    """Chunk, embed and index one document.

    Re-submitting the same ``source_locator`` replaces the document's
    chunks when its text changed and only refreshes metadata otherwise.
    """
    descriptor = DocumentDescriptor(
        source_locator=body.source_locator,
        title=body.title,
        project=body.project,
        tags=body.tags,
        text=body.text,
        content=_decode_content(body.content_base64),
        filename=body.filename,
        content_type=body.content_type,
    )
    result = await ingestion.ingest(descriptor)
    return DocumentIngestResponse(
        document_id=result.document.document_id,
        title=result.document.title,
        source_locator=result.document.source_locator,
        chunks_created=result.chunks_created,
        chunks_pending=result.chunks_pending,
        unchanged=result.unchanged,
        total_tokens=result.total_tokens,
        ingestion_time=result.ingestion_time,
        chunks=result.chunks,
    )


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


@router.post(
    "/query",
    response_model=QueryResponse,
    responses=_ERROR_RESPONSES,
    summary="Answer a question from the corpus",
)
async def query(body: QueryRequest, engine: QueryEngineDep) -> QueryResponse:
    """Classify, retrieve, route and answer; citations list only the
    chunks that were placed in the model's context."""
    return await engine.answer(body.question, prior_context=body.prior_context)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@router.post(
    "/maintenance/reembed",
    response_model=RepairReport,
    summary="Retry indexing of embedding_pending chunks",
)
async def reembed_pending(
    ingestion: IngestionDep, body: ReembedRequest | None = None
) -> RepairReport:
    limit = body.limit if body is not None else None
    return await ingestion.reembed_pending(limit=limit)


@router.post(
    "/maintenance/reconcile",
    response_model=ReconcileReport,
    summary="Delete vectors with no chunk record",
)
async def reconcile(ingestion: IngestionDep) -> ReconcileReport:
    return await ingestion.reconcile_orphans()


# ---------------------------------------------------------------------------
# Stats / health
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=CorpusStats, summary="Corpus statistics")
async def corpus_stats(ingestion: IngestionDep) -> CorpusStats:
    """Return document, chunk, pending, vector and query-log counts."""
    return await ingestion.get_corpus_stats()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability.

    ``healthy`` when the embedder, the vector index and at least one LLM
    are available; ``degraded`` when retrieval works but no LLM does;
    ``unhealthy`` otherwise.
    """
    state = request.app.state
    providers: dict[str, Any] = {}

    llm_providers = getattr(state, "llm_providers", {}) or {}
    for name, provider in sorted(llm_providers.items()):
        providers[f"llm:{name}"] = provider.is_available()

    embedding = getattr(state, "embedding_provider", None)
    providers["embedding"] = embedding is not None and embedding.is_available()

    vector_store = getattr(state, "vector_store", None)
    providers["vector_store"] = vector_store is not None and vector_store.is_available()

    llm_ok = any(v for k, v in providers.items() if k.startswith("llm:"))
    retrieval_ok = providers["embedding"] and providers["vector_store"]

    if retrieval_ok and llm_ok:
        status = "healthy"
    elif retrieval_ok:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(status=status, version=APP_VERSION, providers=providers)
