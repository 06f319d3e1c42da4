"""Vector store provider implementations.

ChromaDB is the sole vector store implementation. It stores one embedding
per indexed chunk on disk (persistent) and answers cosine-similarity
nearest-neighbour queries. Only vectors are kept here; document and chunk
metadata live in the metadata store. Data persists at CHROMADB_PERSIST_DIR
(default: ./data/chromadb).

To swap ChromaDB for another vector database (Qdrant, Pinecone, Weaviate),
create a new class implementing IVectorStoreProvider and register it in main.py.
"""

from src.providers.vector_store.chromadb_provider import ChromaDBProvider

__all__ = ["ChromaDBProvider"]
