"""Ollama LLM provider adapter.

Wraps a local Ollama server via its OpenAI-compatible API endpoint, using
the ``openai`` client library pointed at the Ollama base URL.  Lets the
engine answer fully offline with no API costs, at the price of smaller
local models.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.providers.llm.openai_provider import map_openai_error
from src.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class OllamaLLMProvider(ILLMProvider):
    """LLM provider backed by a local Ollama server (``llama3.1`` by default)."""

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        # OLLAMA_BASE_URL env var, typically "http://localhost:11434".
        self._base_url = settings.ollama_base_url
        self._client = client or openai.AsyncOpenAI(
            base_url=f"{self._base_url.rstrip('/')}/v1",
            # Ollama ignores the key but the SDK requires a non-empty value.
            api_key="ollama",
            timeout=settings.provider_timeout_seconds + 5.0,
            max_retries=0,
        )
        self._text_model = settings.ollama_model or "llama3.1"

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
        """Generate a text completion via Ollama's OpenAI-compatible API."""
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
            raise map_openai_error(exc, "Ollama", self.get_provider_name()) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError(
                message="Ollama returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info("ollama_completion", model=model_name)
        return content

    def is_available(self) -> bool:
        """Return ``True`` if a base URL is configured."""
        return bool(self._base_url)

    async def validate_credentials(self) -> bool:
        """Check that the Ollama server responds on ``/api/tags``."""
        if not self.is_available():
            return False
        try:
            # Ollama's native endpoint, not the /v1 compatibility layer.
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self._base_url.rstrip('/')}/api/tags")
                return resp.status_code == 200
        except httpx.HTTPError:
            return False

    def get_provider_name(self) -> str:
        return "ollama"
