"""Utility modules for knowchat.

Available utility modules (re-exported here for convenience):

- **errors** -- Exception hierarchy rooted at KnowChatError; every error
  carries a stable ``code`` that the API and CLI surface to callers.
- **retry** -- Per-attempt timeouts plus exponential-backoff retries of
  transient provider failures (tenacity).
- **concurrency** -- asyncio semaphore throttling for per-chunk fan-out and
  per-document locks that serialize ingest and repair of one document.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
"""

# -- Exception hierarchy ---------------------------------------------------
from src.utils.errors import (
    EmbeddingPendingError,
    ExtractionError,
    GenerationUnavailableError,
    InvalidConfigurationError,
    InvalidRequestError,
    KnowChatError,
    LLMError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

# -- Async concurrency helpers ---------------------------------------------
from src.utils.concurrency import KeyedLock, throttled_gather

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import configure_logging, get_logger

# -- Retry of transient provider failures ----------------------------------
from src.utils.retry import TRANSIENT_ERRORS, RetryPolicy, call_with_retry

__all__ = [
    "EmbeddingPendingError",
    "ExtractionError",
    "GenerationUnavailableError",
    "InvalidConfigurationError",
    "InvalidRequestError",
    "KeyedLock",
    "KnowChatError",
    "LLMError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "RetryPolicy",
    "TRANSIENT_ERRORS",
    "call_with_retry",
    "configure_logging",
    "get_logger",
    "throttled_gather",
]
