"""Abstract base class for LLM service providers.

Defines the contract for any large-language-model backend used for answer
generation and intent tie-breaking.  Implementations may wrap the
Anthropic API (Claude), OpenAI, or a local Ollama server.  Backends only
implement :meth:`ILLMProvider.complete`; the uniform
:meth:`ILLMProvider.generate` entry point used by the model router is
built on top of it here so every backend formats prompts identically.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

DEFAULT_SYSTEM_PROMPT = (
    "You answer questions using only the numbered context passages provided. "
    "Cite passages by their number in square brackets, e.g. [1]. "
    "If the context does not contain the answer, say so plainly instead of guessing."
)


@dataclass(frozen=True)
class GenerationParameters:
    """Model name and sampling parameters for one generation call."""

    model: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1024
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


PROMPT_DIVIDER = "\n\n---\n\n"


def frame_user_prompt(prompt: str, context: str) -> str:
    """User message sent by :meth:`ILLMProvider.generate`.

    Context budgeting counts this exact text, so the framing is always
    part of the budget.
    """
    if context.strip():
        return f"Context passages:\n\n{context}{PROMPT_DIVIDER}{prompt}"
    return f"Context passages: (none found){PROMPT_DIVIDER}{prompt}"


# Concrete implementations: AnthropicLLMProvider, OpenAILLMProvider, OllamaLLMProvider
# Located in: src/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used by the router and the intent classifier."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the actual request.
        model:
            Model override; the provider's configured model when ``None``.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        src.utils.errors.ProviderTimeoutError
            If the backend timed out.
        src.utils.errors.ProviderUnavailableError
            If the backend is unreachable, overloaded or rate limited.
        src.utils.errors.LLMError
            If the backend rejected the request or returned nothing usable.
        """

    async def generate(
        self,
        prompt: str,
        context: str,
        parameters: GenerationParameters,
    ) -> str:
        """Answer *prompt* grounded in *context*.

        The context block is placed ahead of the prompt in the user message;
        an empty context is stated explicitly so the model does not invent
        sources.
        """
        user_prompt = frame_user_prompt(prompt, context)
        return await self.complete(
            system_prompt=parameters.system_prompt,
            user_prompt=user_prompt,
            model=parameters.model,
            temperature=parameters.temperature,
            max_tokens=parameters.max_tokens,
        )

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the routing identifier for this provider.

        Example return values: ``"anthropic"``, ``"openai"``, ``"ollama"``.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations should verify that credentials are present without
        making a full inference call.
        """

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Perform a lightweight API call to confirm credentials are valid.

        Unlike :meth:`is_available`, this method actively contacts the
        remote service.
        """
