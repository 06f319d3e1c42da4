"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When a custom ``openai_base_url`` is configured (e.g. TogetherAI, Groq,
Fireworks), the client points at that URL instead of the default OpenAI
endpoint, so this single adapter can talk to any OpenAI-compatible API.

SDK errors are translated into the knowchat hierarchy so the model router
can tell transient failures (worth a retry) from hard rejections:

    openai.APITimeoutError              -> ProviderTimeoutError
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError          -> ProviderUnavailableError
    any other openai.APIError           -> LLMError
"""

from __future__ import annotations

import openai
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


def map_openai_error(exc: openai.APIError, label: str, provider_name: str) -> KnowChatError:
    """Translate an ``openai`` SDK exception into a knowchat error."""
    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, openai.APITimeoutError):
        return ProviderTimeoutError(
            message=f"{label} request timed out", provider_name=provider_name
        )
    if isinstance(
        exc, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)
    ):
        return ProviderUnavailableError(
            message=f"{label} unavailable: {exc}", provider_name=provider_name
        )
    return LLMError(message=f"{label} API error: {exc}", provider_name=provider_name)


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible API.

    Uses ``gpt-4o-mini`` by default; the routing table normally names the
    model per category, and ``OPENAI_TEXT_MODEL`` overrides the fallback
    for OpenAI-compatible hosts with different model names.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._api_key = settings.openai_api_key

        # Client-side timeout sits just above the router's per-attempt
        # timeout so the router's wait_for fires first.
        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.provider_timeout_seconds + 5.0, connect=5.0),
            "max_retries": 0,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = client or openai.AsyncOpenAI(**client_kwargs)
        self._text_model = settings.openai_text_model or "gpt-4o-mini"
        # Label used in logs and error messages to identify the actual host.
        self._provider_label = (
            "openai-compatible" if settings.openai_base_url else "openai"
        )

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
        """Generate a text completion via the OpenAI-compatible chat API."""
        model_name = model or self._text_model
        try:
            response = await self._client.chat.completions.create(
                model=model_name,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as exc:
            raise map_openai_error(
                exc, self._provider_label, self.get_provider_name()
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=model_name,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """Try listing models to verify the API key works.

        Lightweight call that confirms the key is accepted without incurring
        inference costs.
        """
        if not self.is_available():
            return False
        try:
            await self._client.models.list()
            return True
        except openai.APIError:
            return False

    def get_provider_name(self) -> str:
        return "openai"
