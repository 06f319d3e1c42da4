"""Embedding provider implementations.

Embeddings convert text into numeric vectors that capture semantic meaning.
These vectors are stored in ChromaDB and used for similarity search.

Two implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider — text-embedding-3-small (1536 dims).
       High quality but requires API key and incurs cost per token.
    2. NomicEmbeddingProvider  — nomic-embed-text via Ollama (768 dims).
       Free and local, but requires running Ollama server.

Only one is active per deployment: the index holds vectors of a single
dimension, so switching models means re-embedding the corpus.
"""

from src.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider", "NomicEmbeddingProvider"]
