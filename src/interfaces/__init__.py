"""Public interface definitions for all external service providers.

Every external API or store used by knowchat is accessed exclusively
through the abstract base classes defined in this package.  Concrete
adapters implement these interfaces and are injected at runtime from
``src/main.py``, so services never import a vendor SDK directly and unit
tests can substitute in-memory fakes.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    ILLMProvider               →  OpenAILLMProvider, AnthropicLLMProvider,
                                  OllamaLLMProvider
    IEmbeddingProvider         →  OpenAIEmbeddingProvider,
                                  NomicEmbeddingProvider
    IVectorStoreProvider       →  ChromaDBProvider
    IMetadataStore             →  SQLiteMetadataStore
    ITextExtractor             →  PlainTextExtractor, HTMLExtractor,
                                  PDFExtractor
"""

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import GenerationParameters, ILLMProvider
from src.interfaces.metadata_store import IMetadataStore
from src.interfaces.text_extractor import ITextExtractor
from src.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "GenerationParameters",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IMetadataStore",
    "ITextExtractor",
    "IVectorStoreProvider",
]
