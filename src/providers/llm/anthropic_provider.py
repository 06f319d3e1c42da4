"""Anthropic LLM provider adapter.

Wraps the ``anthropic`` async client to implement :class:`ILLMProvider`
via the Claude Messages API.

Key differences from the OpenAI adapter:
    - System prompt is a separate parameter, not a message in the list
    - Response content is a list of blocks, so we filter for text blocks
      and join them
    - HTTP 529 "overloaded" arrives as a generic APIStatusError and is
      treated as transient
"""

from __future__ import annotations

import anthropic
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.utils.errors import (
    KnowChatError,
    LLMError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "claude-sonnet-4-20250514"


def _map_anthropic_error(exc: anthropic.APIError) -> KnowChatError:
    if isinstance(exc, anthropic.APITimeoutError):
        return ProviderTimeoutError(message="Anthropic request timed out", provider_name="anthropic")
    if isinstance(
        exc,
        (anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError),
    ):
        return ProviderUnavailableError(
            message=f"Anthropic unavailable: {exc}", provider_name="anthropic"
        )
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code == 529:
        return ProviderUnavailableError(message="Anthropic overloaded", provider_name="anthropic")
    return LLMError(message=f"Anthropic API error: {exc}", provider_name="anthropic")


class AnthropicLLMProvider(ILLMProvider):
    """LLM provider backed by the Anthropic Claude API.

    Uses ``claude-sonnet-4-20250514`` unless ``ANTHROPIC_MODEL`` or the
    routing rule names another model.
    """

    def __init__(
        self, settings: Settings, client: anthropic.AsyncAnthropic | None = None
    ) -> None:
        self._api_key = settings.anthropic_api_key
        self._client = client or anthropic.AsyncAnthropic(
            api_key=self._api_key,
            timeout=settings.provider_timeout_seconds + 5.0,
            max_retries=0,
        )
        self._model = settings.anthropic_model or _DEFAULT_MODEL

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a text completion via the Anthropic Messages API."""
        model_name = model or self._model
        try:
            response = await self._client.messages.create(
                model=model_name,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=temperature,
            )
        except anthropic.APIError as exc:
            raise _map_anthropic_error(exc) from exc

        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks:
            raise LLMError(
                message="Anthropic returned no text content",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "anthropic_completion",
            model=model_name,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return "\n".join(text_blocks)

    def is_available(self) -> bool:
        """Return ``True`` if an Anthropic API key is configured."""
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """Try a minimal completion to verify the API key works."""
        if not self.is_available():
            return False
        try:
            await self._client.messages.create(
                model=self._model,
                max_tokens=10,
                messages=[{"role": "user", "content": "hi"}],
            )
            return True
        except anthropic.APIError:
            return False

    def get_provider_name(self) -> str:
        return "anthropic"
