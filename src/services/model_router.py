"""Category-based LLM routing with retry and failover.

The router holds the immutable :class:`RoutingTable` and a registry of
LLM providers keyed by routing id (``"openai"``, ``"anthropic"``,
``"ollama"``).  Routing is a static lookup; dispatch walks a short
candidate chain:

    routed rule  ->  default rule

Each candidate call runs under :func:`call_with_retry` (per-attempt
timeout, exponential backoff on transient errors).  A candidate that is
not registered, reports itself unavailable, or still fails after retries
is skipped with a ``provider_failover`` log event.  When the chain is
exhausted the router raises :class:`GenerationUnavailableError`.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

import structlog

from src.interfaces.llm_provider import GenerationParameters
from src.models.routing import (
    GenerationResult,
    IntentCategory,
    ProviderHandle,
    RoutingRule,
    RoutingTable,
)
from src.utils.errors import GenerationUnavailableError, KnowChatError
from src.utils.retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from src.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)


def build_prompt(question: str, prior_context: str | None = None) -> str:
    """User-facing prompt text: optional prior turn followed by the question."""
    if prior_context and prior_context.strip():
        return f"Previous conversation:\n{prior_context.strip()}\n\nQuestion: {question.strip()}"
    return f"Question: {question.strip()}"


class ModelRouter:
    """Selects and calls an LLM provider per intent category.

    Parameters
    ----------
    routing_table:
        Frozen category -> rule mapping plus the default rule.
    providers:
        Registered LLM providers keyed by routing id.
    retry_policy:
        Per-call timeout and retry limits.  A rule's ``timeout_seconds``
        overrides the policy timeout for that rule.
    """

    def __init__(
        self,
        routing_table: RoutingTable,
        providers: dict[str, ILLMProvider],
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._table = routing_table
        self._providers = dict(providers)
        self._retry_policy = retry_policy or RetryPolicy()

    @property
    def routing_table(self) -> RoutingTable:
        return self._table

    def registered_providers(self) -> list[str]:
        return sorted(self._providers)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def route(self, category: IntentCategory) -> ProviderHandle:
        """Static lookup of the rule for *category* (default rule if unmapped)."""
        rule = self._table.rule_for(category)
        return ProviderHandle(category=category, rule=rule, provider_id=rule.provider)

    async def dispatch(
        self,
        handle: ProviderHandle,
        question: str,
        context: str,
        prior_context: str | None = None,
    ) -> GenerationResult:
        """Generate an answer, failing over to the default rule if needed.

        Raises
        ------
        GenerationUnavailableError
            If the routed provider and the default provider both failed.
        """
        prompt = build_prompt(question, prior_context)
        last_error: Exception | None = None

        for rule in self._candidates(handle.rule):
            provider = self._providers.get(rule.provider)
            if provider is None or not provider.is_available():
                logger.warning(
                    "provider_not_available",
                    provider=rule.provider,
                    registered=provider is not None,
                    category=handle.category.value,
                )
                continue

            params = GenerationParameters(
                model=rule.model,
                temperature=rule.temperature,
                max_tokens=rule.max_tokens,
            )
            try:
                text = await call_with_retry(
                    lambda p=provider, pr=params: p.generate(prompt, context, pr),
                    policy=self._policy_for(rule),
                    operation="generate",
                    provider_name=rule.provider,
                )
            except KnowChatError as exc:
                last_error = exc
                logger.warning(
                    "provider_dispatch_failed",
                    provider=rule.provider,
                    model=rule.model,
                    category=handle.category.value,
                    error=str(exc),
                )
                continue

            failed_over = rule.provider != handle.provider_id or rule.model != handle.rule.model
            if failed_over:
                logger.warning(
                    "provider_failover",
                    provider_requested=handle.provider_id,
                    provider_used=rule.provider,
                    category=handle.category.value,
                )
            logger.info(
                "generation_complete",
                provider=rule.provider,
                model=rule.model,
                category=handle.category.value,
                answer_chars=len(text),
            )
            return GenerationResult(
                text=text,
                provider_requested=handle.provider_id,
                provider_used=rule.provider,
                model=rule.model,
                failed_over=failed_over,
            )

        logger.error(
            "generation_unavailable",
            provider_requested=handle.provider_id,
            category=handle.category.value,
            error=str(last_error) if last_error else None,
        )
        raise GenerationUnavailableError(
            message=f"No provider could answer (requested {handle.provider_id})",
            provider_name=handle.provider_id,
        ) from last_error

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _candidates(self, routed: RoutingRule) -> list[RoutingRule]:
        default = self._table.default
        if routed == default:
            return [routed]
        return [routed, default]

    def _policy_for(self, rule: RoutingRule) -> RetryPolicy:
        if rule.timeout_seconds is None:
            return self._retry_policy
        return replace(self._retry_policy, timeout_seconds=rule.timeout_seconds)
