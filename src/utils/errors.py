"""Custom exception hierarchy for knowchat.

All application exceptions inherit from :class:`KnowChatError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "chromadb", "sqlite") caused the failure,
plus a stable ``code`` that the HTTP boundary returns to clients.

The hierarchy is organized by how callers are expected to react:

    KnowChatError  (base -- catch-all for any knowchat error)
    +-- InvalidRequestError         (bad caller input, never retried)
    +-- InvalidConfigurationError   (misconfigured policy, fatal at startup)
    +-- ProviderTimeoutError        (external call exceeded its timeout)
    +-- ProviderUnavailableError    (external service down / unreachable)
    +-- LLMError                    (LLM returned an unusable response)
    +-- GenerationUnavailableError  (every LLM provider exhausted)
    +-- EmbeddingPendingError       (chunk stored but not yet indexed)
    +-- ExtractionError             (document text could not be extracted)

Only :class:`InvalidRequestError` and :class:`GenerationUnavailableError`
are user-visible; transient provider errors are retried locally and turned
into one of those (or a degraded answer) before they reach the boundary.
"""

from __future__ import annotations


class KnowChatError(Exception):
    """Base exception for all knowchat errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    code = "internal_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller / configuration errors
# ---------------------------------------------------------------------------

class InvalidRequestError(KnowChatError):
    """Raised when a request is malformed (empty question, missing content)."""

    code = "invalid_request"

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidConfigurationError(KnowChatError):
    """Raised when configuration is invalid: bad chunking policy, unknown
    routing provider, or an embedding dimension that does not match the index.
    """

    code = "invalid_configuration"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------

class ProviderTimeoutError(KnowChatError):
    """Raised when an external call does not complete within its timeout.

    Transient: retried with backoff by :func:`src.utils.retry.call_with_retry`.
    """

    code = "provider_timeout"

    def __init__(
        self,
        message: str = "External service timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(KnowChatError):
    """Raised when an external service or provider is unreachable.

    Transient: retried with backoff, then escalated to the component-specific
    outcome (failover, ``embedding_pending``, or degraded retrieval).
    """

    code = "provider_unavailable"

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(KnowChatError):
    """Raised when an LLM API call fails or returns an unusable response."""

    code = "llm_error"

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class GenerationUnavailableError(KnowChatError):
    """Raised when every candidate LLM provider failed for a query."""

    code = "generation_unavailable"

    def __init__(
        self,
        message: str = "No language model is currently able to answer",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class EmbeddingPendingError(KnowChatError):
    """Marks a chunk whose text is stored but whose vector is not indexed.

    Never surfaced to callers; the repair pass clears it.
    """

    code = "embedding_pending"

    def __init__(
        self,
        message: str = "Chunk embedding is pending",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ExtractionError(KnowChatError):
    """Raised when plain text cannot be extracted from a document."""

    code = "extraction_failed"

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
