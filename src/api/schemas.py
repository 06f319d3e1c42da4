"""Pydantic request/response schemas for the knowchat API.

Defines the public contract for the REST endpoints: document ingestion,
question answering, maintenance passes, corpus statistics and health.

# ─── HOW SCHEMAS WORK ─────────────────────────────────────────────────
#
# FastAPI validates incoming JSON against the Request models and
# serializes outgoing objects through the Response models.  Domain
# models from src/models/rag.py (QueryResponse, RepairReport, ...) are
# already frozen Pydantic models, so routes return them directly where
# the wire shape is the same.
#
# Convention: request schemas end with "Request", response schemas end
# with "Response".
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.models.rag import ChunkEmbeddingStatus


class DocumentIngestRequest(BaseModel):
    """A document to ingest.

    Supply either ``text`` (already-extracted plain text) or
    ``content_base64`` (raw file bytes, base64-encoded) together with a
    ``filename`` or ``content_type`` that selects the extractor.
    """

    source_locator: str = Field(..., min_length=1, description="Unique URI or path of the source.")
    title: str = Field(..., min_length=1)
    project: str | None = None
    tags: list[str] = Field(default_factory=list)
    text: str | None = None
    content_base64: str | None = None
    filename: str | None = None
    content_type: str | None = None


class DocumentIngestResponse(BaseModel):
    """Outcome of one ingestion."""

    document_id: str
    title: str
    source_locator: str
    chunks_created: int = 0
    chunks_pending: int = 0
    unchanged: bool = False
    total_tokens: int = 0
    ingestion_time: float = 0.0
    chunks: list[ChunkEmbeddingStatus] = Field(default_factory=list)


class QueryRequest(BaseModel):
    """A question, optionally with the previous conversational turn."""

    question: str
    prior_context: str | None = None


class ReembedRequest(BaseModel):
    """Parameters for the pending-chunk repair pass."""

    limit: int | None = Field(default=None, ge=1, description="Maximum chunks to retry.")


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    code: str
    detail: str | None = None
