"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ─────────────────────────────────────────────────
#
# pydantic-settings reads configuration from TWO sources (in priority order):
#
#   1. **Environment variables** — e.g., OPENAI_API_KEY=sk-abc123
#   2. **.env file** — key=value lines in the project root .env file
#
# Field `openai_api_key` maps to env var `OPENAI_API_KEY`.  Defaults apply
# when neither source sets a value.  The instance is frozen: settings are
# read once at startup and passed explicitly to the components that need
# them.
#
# Routing (category -> provider/model) is NOT configured here; it lives in
# the YAML file named by `routing_config_path` and is loaded by
# src/config/loader.py.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from src.utils.retry import RetryPolicy


class Settings(BaseSettings):
    """knowchat application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", frozen=True)

    # === LLM Providers ===
    # Empty string = "not configured" → main.py skips providers with empty keys.
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_text_model: str = ""
    anthropic_api_key: str = ""
    anthropic_model: str = ""
    ollama_base_url: str = "http://localhost:11434"  # Ollama always has a default URL
    ollama_model: str = ""

    # === Embeddings ===
    # "openai" or "nomic"; empty picks openai when a key is set, else nomic.
    embedding_provider: str = ""
    openai_embedding_model: str = ""
    embedding_dimension: int = 0  # 0 = provider default

    # === Stores ===
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "knowchat_corpus"
    metadata_db_path: str = "data/knowchat.db"

    # === Routing ===
    routing_config_path: str = "config/routing.yaml"

    # === Chunking ===
    chunk_max_tokens: int = 1000
    chunk_overlap_fraction: float = 0.20

    # === Retrieval / query ===
    retrieval_top_k: int = 6
    max_question_chars: int = 4000
    classifier_min_confidence: float = 0.5
    classifier_llm_enabled: bool = True
    classifier_timeout_seconds: float = 5.0
    # HuggingFace Hub tokenizer for context budgets; empty = char estimate.
    context_tokenizer: str = "Xenova/gpt-4o"
    context_token_margin: float = 0.95

    # === External call limits ===
    provider_max_attempts: int = 3
    provider_timeout_seconds: float = 30.0
    provider_backoff_base_seconds: float = 0.5
    provider_backoff_max_seconds: float = 8.0
    ingest_concurrency: int = 4

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"
    cors_allowed_origins: str = ""  # comma-separated extra origins

    def get_available_llm_providers(self) -> list[str]:
        """Return a list of LLM provider names that have non-empty credentials configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.ollama_base_url:
            providers.append("ollama")
        return providers

    def retry_policy(self) -> RetryPolicy:
        """Build the :class:`RetryPolicy` shared by every external call site."""
        return RetryPolicy(
            max_attempts=self.provider_max_attempts,
            timeout_seconds=self.provider_timeout_seconds,
            base_delay=self.provider_backoff_base_seconds,
            max_delay=self.provider_backoff_max_seconds,
        )
