"""knowchat domain models — re-exports all public model classes.

The models are organized across two submodules:
    - rag.py     — documents, chunks, citations, query log, ingestion outcomes
    - routing.py — intent categories, routing table, generation results
"""

from __future__ import annotations

from src.models.rag import (
    Chunk,
    ChunkCandidate,
    ChunkEmbeddingStatus,
    ChunkStatus,
    Citation,
    CorpusStats,
    Document,
    DocumentDescriptor,
    IngestionResult,
    QueryLog,
    QueryResponse,
    ReconcileReport,
    RepairReport,
    RetrievedChunk,
    VectorMatch,
)
from src.models.routing import (
    Classification,
    GenerationResult,
    IntentCategory,
    ProviderHandle,
    RoutingRule,
    RoutingTable,
)

__all__ = [
    "Chunk",
    "ChunkCandidate",
    "ChunkEmbeddingStatus",
    "ChunkStatus",
    "Citation",
    "Classification",
    "CorpusStats",
    "Document",
    "DocumentDescriptor",
    "GenerationResult",
    "IngestionResult",
    "IntentCategory",
    "ProviderHandle",
    "QueryLog",
    "QueryResponse",
    "ReconcileReport",
    "RepairReport",
    "RetrievedChunk",
    "RoutingRule",
    "RoutingTable",
    "VectorMatch",
]
