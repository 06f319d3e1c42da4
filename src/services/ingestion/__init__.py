"""Document ingestion pipeline for the knowchat corpus.

Orchestrates: **extract -> chunk -> persist -> embed -> index**.

1. **Extract** (src/providers/extraction/) -- format-specific extractors
   turn raw bytes (PDF, HTML, plain text) into text.

2. **Chunk** (chunker.py / TextChunker) -- splits text into fixed-size
   token windows with exact overlap.

3. **Persist** (via IMetadataStore) -- each chunk record is written as
   ``embedding_pending`` before anything touches the index.

4. **Embed** (via IEmbeddingProvider) -- dense vectors per chunk.

5. **Index** (via IVectorStoreProvider) -- vectors are upserted under the
   chunk id and the record is marked ``indexed``.
"""

from src.services.ingestion.chunker import TextChunker, chunk_text, count_tokens
from src.services.ingestion.ingestion_service import (
    IngestionService,
    chunk_id_for,
    document_id_for,
)

__all__ = [
    "IngestionService",
    "TextChunker",
    "chunk_id_for",
    "chunk_text",
    "count_tokens",
    "document_id_for",
]
