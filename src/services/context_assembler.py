"""Token-budgeted context assembly for answer generation.

Takes retrieval results already ordered by descending similarity and
packs them into a numbered passage block that fits the routed model's
context budget.  The included set is always a prefix of the input, so
the lowest-similarity chunks are the ones dropped when space runs out.

The budget covers the whole model input: system prompt, prompt framing,
question, prior turn, passages and the separators between them.  Each
candidate block is counted as the exact user message the provider will
receive, in model tokens (see :class:`~src.services.token_counter.TokenCounter`).
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from src.interfaces.llm_provider import DEFAULT_SYSTEM_PROMPT, frame_user_prompt
from src.models.rag import RetrievedChunk
from src.models.routing import RoutingRule
from src.services.model_router import build_prompt
from src.services.token_counter import TokenCounter

logger = structlog.get_logger(logger_name=__name__)

PASSAGE_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class AssembledContext:
    """Context block handed to the LLM plus the chunks it contains.

    ``budget`` is the usable input size in model tokens; ``tokens_used``
    is the size of the full model input built from this context.
    """

    text: str = ""
    included: list[RetrievedChunk] = field(default_factory=list)
    budget: int = 0
    tokens_used: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.included


def context_budget(routed: RoutingRule, default: RoutingRule, counter: TokenCounter) -> int:
    """Model-input tokens available to one generation call.

    The smaller of the two rules' limits applies, so a failover to the
    default provider never receives a context that is too large for it.
    """
    return counter.usable(min(routed.max_context_tokens, default.max_context_tokens))


def format_passage(index: int, item: RetrievedChunk) -> str:
    doc = item.document
    return f"[{index}] {doc.title} ({doc.source_locator})\n{item.chunk.text}"


class ContextAssembler:
    """Packs retrieved chunks into a context block within a token budget.

    Parameters
    ----------
    token_counter:
        Counts model tokens; the character-based estimate when omitted.
    system_prompt:
        System message sent alongside the context, counted against the budget.
    """

    def __init__(
        self,
        token_counter: TokenCounter | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self._counter = token_counter or TokenCounter()
        self._system_prompt = system_prompt

    def input_tokens(self, prompt: str, context: str) -> int:
        """Tokens of the full model input for *prompt* with *context*."""
        return self._counter.count(self._system_prompt) + self._counter.count(
            frame_user_prompt(prompt, context)
        )

    def assemble(
        self,
        retrieved: list[RetrievedChunk],
        routed: RoutingRule,
        default: RoutingRule,
        question: str,
        prior_context: str | None = None,
    ) -> AssembledContext:
        """Build the numbered passage block.

        Parameters
        ----------
        retrieved:
            Joined retrieval results, most similar first.
        routed, default:
            Routing rules whose ``max_context_tokens`` bound the input.
        question, prior_context:
            Part of the prompt, counted before any passage.
        """
        budget = context_budget(routed, default, self._counter)
        prompt = build_prompt(question, prior_context)
        passages: list[str] = []
        included: list[RetrievedChunk] = []
        used = self.input_tokens(prompt, "")

        for item in retrieved:
            candidate = passages + [format_passage(len(included) + 1, item)]
            cost = self.input_tokens(prompt, PASSAGE_SEPARATOR.join(candidate))
            if cost > budget:
                break
            passages = candidate
            included.append(item)
            used = cost

        dropped = len(retrieved) - len(included)
        if dropped:
            logger.debug(
                "context_truncated",
                budget=budget,
                tokens_used=used,
                included=len(included),
                dropped=dropped,
                exact_tokens=self._counter.is_exact,
            )

        return AssembledContext(
            text=PASSAGE_SEPARATOR.join(passages),
            included=included,
            budget=budget,
            tokens_used=used,
        )
