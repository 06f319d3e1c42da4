"""knowchat FastAPI application entry point.

Wires together all providers and services via dependency injection.
Loads configuration from ``.env`` (Settings) and the routing table from
``config/routing.yaml``, configures structured logging, and mounts the
API routes.

:func:`build_components` is also used by the CLI so both entry points
construct the same graph from the same settings.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
    register_exception_handlers,
)
from src.api.routes import APP_VERSION
from src.api.routes import router as api_router
from src.config.loader import load_routing_table
from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.models.routing import RoutingTable
from src.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.extraction import default_extraction_service
from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.ollama_provider import OllamaLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.providers.metadata_store.sqlite_metadata_store import SQLiteMetadataStore
from src.providers.vector_store.chromadb_provider import ChromaDBProvider
from src.services.context_assembler import ContextAssembler
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.ingestion_service import IngestionService
from src.services.intent_classifier import IntentClassifier
from src.services.model_router import ModelRouter
from src.services.query_engine import QueryEngine
from src.services.token_counter import TokenCounter
from src.utils.errors import InvalidConfigurationError
from src.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings
# ---------------------------------------------------------------------------

settings = Settings()

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


_LLM_PROVIDER_CLASSES: dict[str, type[ILLMProvider]] = {
    "openai": OpenAILLMProvider,
    "anthropic": AnthropicLLMProvider,
    "ollama": OllamaLLMProvider,
}


def _build_llm_providers(app_settings: Settings) -> dict[str, ILLMProvider]:
    """Register every LLM provider that has credentials, keyed by routing id.

    Ollama needs no key and is registered whenever a base URL is set.
    """
    return {
        name: _LLM_PROVIDER_CLASSES[name](settings=app_settings)
        for name in app_settings.get_available_llm_providers()
    }


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Select the embedding provider.

    ``EMBEDDING_PROVIDER`` picks explicitly; when empty, OpenAI is used if
    a key is configured and Nomic (via Ollama) otherwise.  The choice must
    stay fixed for the life of an index.
    """
    choice = app_settings.embedding_provider.strip().lower()
    if not choice:
        choice = "openai" if app_settings.openai_api_key else "nomic"

    if choice == "openai":
        if not app_settings.openai_api_key:
            raise InvalidConfigurationError(
                message="EMBEDDING_PROVIDER=openai requires OPENAI_API_KEY",
                provider_name="openai",
            )
        return OpenAIEmbeddingProvider(settings=app_settings)
    if choice == "nomic":
        return NomicEmbeddingProvider(settings=app_settings)

    raise InvalidConfigurationError(
        message=f"Unknown embedding provider {app_settings.embedding_provider!r}"
    )


def _classifier_llm(
    table: RoutingTable, providers: dict[str, ILLMProvider], app_settings: Settings
) -> tuple[ILLMProvider | None, str | None]:
    """The default rule's provider doubles as the classifier tie-breaker."""
    if not app_settings.classifier_llm_enabled:
        return None, None
    provider = providers.get(table.default.provider)
    if provider is None:
        return None, None
    return provider, table.default.model


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(app_settings: Settings) -> dict[str, Any]:
    """Construct every provider and service instance.

    Returns a flat dict of named components; the web app stores them on
    ``app.state`` and the CLI uses them directly.

    Raises
    ------
    InvalidConfigurationError
        If the routing table, chunking policy or embedding setup is invalid,
        or the index holds vectors of a different dimension.
    """
    routing_table = load_routing_table(app_settings.routing_config_path)
    retry_policy = app_settings.retry_policy()

    llm_providers = _build_llm_providers(app_settings)
    missing = sorted(routing_table.providers() - set(llm_providers))
    if missing:
        _logger.warning("routed_providers_not_configured", providers=missing)

    embedding_provider = _build_embedding_provider(app_settings)
    vector_store = ChromaDBProvider(
        dimension=embedding_provider.get_dimension(),
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
    )
    metadata_store = SQLiteMetadataStore(db_path=app_settings.metadata_db_path)

    chunker = TextChunker(
        max_tokens=app_settings.chunk_max_tokens,
        overlap_fraction=app_settings.chunk_overlap_fraction,
    )
    ingestion_service = IngestionService(
        chunker=chunker,
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        metadata_store=metadata_store,
        extraction_service=default_extraction_service(),
        retry_policy=retry_policy,
        concurrency=app_settings.ingest_concurrency,
    )

    classifier_llm, classifier_model = _classifier_llm(routing_table, llm_providers, app_settings)
    classifier = IntentClassifier(
        fallback_category=routing_table.fallback_category,
        min_confidence=app_settings.classifier_min_confidence,
        llm_provider=classifier_llm,
        llm_model=classifier_model,
        llm_timeout=app_settings.classifier_timeout_seconds,
    )
    model_router = ModelRouter(
        routing_table=routing_table,
        providers=llm_providers,
        retry_policy=retry_policy,
    )
    query_engine = QueryEngine(
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        metadata_store=metadata_store,
        classifier=classifier,
        router=model_router,
        retry_policy=retry_policy,
        top_k=app_settings.retrieval_top_k,
        max_question_chars=app_settings.max_question_chars,
        assembler=ContextAssembler(
            TokenCounter.from_pretrained(
                app_settings.context_tokenizer,
                safety_margin=app_settings.context_token_margin,
            )
        ),
    )

    _logger.info(
        "components_built",
        llm_providers=sorted(llm_providers),
        embedding_provider=embedding_provider.get_provider_name(),
        embedding_dimension=embedding_provider.get_dimension(),
        vector_store=vector_store.get_provider_name(),
        metadata_db=app_settings.metadata_db_path,
    )

    return {
        "settings": app_settings,
        "routing_table": routing_table,
        "llm_providers": llm_providers,
        "embedding_provider": embedding_provider,
        "vector_store": vector_store,
        "metadata_store": metadata_store,
        "ingestion_service": ingestion_service,
        "model_router": model_router,
        "query_engine": query_engine,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Build components on startup unless they were injected beforehand."""
    configure_logging(
        log_level=settings.log_level,
        json_output=(settings.app_env == "production"),
    )
    if getattr(application.state, "query_engine", None) is None:
        components = build_components(settings)
        for key, value in components.items():
            setattr(application.state, key, value)

    await application.state.metadata_store.initialize()

    _logger.info(
        "app_startup",
        version=APP_VERSION,
        environment=settings.app_env,
        llm_providers=sorted(getattr(application.state, "llm_providers", {}) or {}),
    )
    yield
    _logger.info("app_shutdown")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(components: dict[str, Any] | None = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    components:
        Pre-built components to place on ``app.state`` (tests inject
        in-memory stores here); built from :data:`settings` at startup
        when omitted.
    """
    application = FastAPI(
        title="knowchat API",
        version=APP_VERSION,
        description=(
            "Ingest documents into a searchable corpus and ask questions "
            "answered by the model routed for each question's intent, "
            "with citations to the passages used."
        ),
        lifespan=_lifespan,
    )
    for key, value in (components or {}).items():
        setattr(application.state, key, value)

    # -- Middleware (last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    extra_origins = [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()]
    configure_cors(application, allowed_origins=extra_origins or None)
    register_exception_handlers(application)

    application.include_router(api_router)
    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
