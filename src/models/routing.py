"""Intent categories and the static model routing table.

The :class:`RoutingTable` is loaded once at startup from
``config/routing.yaml`` (see :mod:`src.config.loader`) and injected into
the model router and the query engine.  It is frozen; there is no code
path that edits routing at runtime.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class IntentCategory(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Closed set of question intents used for model routing.

    EXPLAIN  -- explain / summarize / describe
    ANALYZE  -- analyze / compare / evaluate
    RESEARCH -- research / fact-check / verify / find sources
    """

    EXPLAIN = "EXPLAIN"
    ANALYZE = "ANALYZE"
    RESEARCH = "RESEARCH"


class Classification(BaseModel):
    """Result of classifying a question.

    ``method`` records how the category was decided: ``"keyword"``,
    ``"llm"`` or ``"fallback"``.
    """

    model_config = ConfigDict(frozen=True)

    category: IntentCategory
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    method: str = "keyword"


class RoutingRule(BaseModel):
    """Which provider and generation parameters serve one category."""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(description="Registered LLM provider id, e.g. 'anthropic'.")
    model: str = Field(description="Model name passed to the provider.")
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1)
    max_context_tokens: int = Field(
        default=4000,
        ge=1,
        description="Token budget for question, prior context and retrieved chunks.",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Per-call timeout override; falls back to the global retry policy.",
    )


class RoutingTable(BaseModel):
    """Immutable category -> rule mapping plus the default (failover) rule."""

    model_config = ConfigDict(frozen=True)

    rules: dict[IntentCategory, RoutingRule] = Field(default_factory=dict)
    default: RoutingRule
    fallback_category: IntentCategory = IntentCategory.EXPLAIN

    def rule_for(self, category: IntentCategory) -> RoutingRule:
        """Return the rule for *category*, or the default rule if none is set."""
        return self.rules.get(category, self.default)

    def providers(self) -> set[str]:
        """Every provider id referenced by the table."""
        return {rule.provider for rule in self.rules.values()} | {self.default.provider}


class ProviderHandle(BaseModel):
    """The router's decision for one question: category, rule and provider id."""

    model_config = ConfigDict(frozen=True)

    category: IntentCategory
    rule: RoutingRule
    provider_id: str


class GenerationResult(BaseModel):
    """Text produced by the router along with which provider actually served it."""

    model_config = ConfigDict(frozen=True)

    text: str
    provider_requested: str
    provider_used: str
    model: str
    failed_over: bool = False
