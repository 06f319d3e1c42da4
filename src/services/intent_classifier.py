"""Question intent classification for model routing.

Maps a free-text question onto exactly one :class:`IntentCategory`.
Classification is tiered:

    1. **Keyword rules** -- a weighted regex table scores every category.
       ``confidence = top_score / total_score``.
    2. **LLM tie-break** -- when no rule matched, the top two categories
       tie, or confidence is below ``min_confidence``, a lightweight LLM
       call is asked for a single label (bounded by a timeout).
    3. **Fallback** -- if the LLM is disabled, times out, fails, or answers
       with something that is not a label, the configured fallback
       category is used.

:meth:`IntentClassifier.classify` never raises (cancellation aside); every
failure is logged and mapped to the fallback.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING

import structlog

from src.models.routing import Classification, IntentCategory

if TYPE_CHECKING:
    from src.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

# (pattern, weight) per category.  Weights favour explicit verbs over
# generic question shapes like "what is".
_RULES: dict[IntentCategory, list[tuple[re.Pattern[str], int]]] = {
    IntentCategory.EXPLAIN: [
        (re.compile(r"\bsummar(?:y|ies|ize|ise|izing|ising)\b"), 3),
        (re.compile(r"\bexplain\w*"), 3),
        (re.compile(r"\bdescrib\w*"), 2),
        (re.compile(r"\boverview\b"), 2),
        (re.compile(r"\btl;?dr\b"), 3),
        (re.compile(r"\bdefin(?:e|ition)\b"), 2),
        (re.compile(r"\bwhat (?:is|are|does)\b"), 1),
        (re.compile(r"\bhow does\b"), 1),
    ],
    IntentCategory.ANALYZE: [
        (re.compile(r"\banaly[sz]\w*"), 3),
        (re.compile(r"\bcompar\w*"), 3),
        (re.compile(r"\bevaluat\w*"), 3),
        (re.compile(r"\bassess\w*"), 2),
        (re.compile(r"\b(?:pros and cons|trade-?offs?)\b"), 2),
        (re.compile(r"\b(?:versus|vs\.?)\s"), 2),
        (re.compile(r"\b(?:strengths?|weakness(?:es)?)\b"), 2),
        (re.compile(r"\bdifferen(?:ce|ces|t)\b"), 1),
    ],
    IntentCategory.RESEARCH: [
        (re.compile(r"\bresearch\w*"), 3),
        (re.compile(r"\bfact[- ]?check\w*"), 3),
        (re.compile(r"\bverif(?:y|ied|ication)\b"), 3),
        (re.compile(r"\bis (?:it|this|that) true\b"), 3),
        (re.compile(r"\bsources?\b"), 2),
        (re.compile(r"\b(?:citations?|cite)\b"), 2),
        (re.compile(r"\bevidence\b"), 2),
        (re.compile(r"\bfind (?:me )?(?:papers|studies|articles|references)\b"), 2),
    ],
}

_CLASSIFIER_SYSTEM_PROMPT = (
    "Classify the user's question into exactly one category.\n"
    "EXPLAIN: explain, summarize or describe something.\n"
    "ANALYZE: analyze, compare or evaluate things.\n"
    "RESEARCH: research, fact-check, verify claims or find sources.\n"
    "Answer with the single category name only."
)

_LABEL_RE = re.compile(r"\b(EXPLAIN|ANALYZE|RESEARCH)\b")


class IntentClassifier:
    """Tiered keyword / LLM intent classifier.

    Parameters
    ----------
    fallback_category:
        Category returned when nothing else decides.
    min_confidence:
        Keyword confidence below which the LLM tie-break is consulted.
    llm_provider:
        Optional LLM used for tie-breaks.  ``None`` disables the tier.
    llm_model:
        Model name passed to *llm_provider*.
    llm_timeout:
        Seconds to wait for the tie-break before falling back.
    """

    def __init__(
        self,
        fallback_category: IntentCategory = IntentCategory.EXPLAIN,
        min_confidence: float = 0.5,
        llm_provider: ILLMProvider | None = None,
        llm_model: str | None = None,
        llm_timeout: float = 5.0,
    ) -> None:
        self._fallback = fallback_category
        self._min_confidence = min_confidence
        self._llm = llm_provider
        self._llm_model = llm_model
        self._llm_timeout = llm_timeout

    async def classify(self, question: str) -> Classification:
        """Return the category for *question*.

        ``confidence`` is always the keyword-rule confidence; ``method``
        records which tier made the decision.
        """
        try:
            scores = self.score(question)
        except Exception as exc:  # noqa: BLE001 — classification must not fail
            logger.warning("intent_scoring_failed", error=str(exc))
            scores = {}

        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
        total = sum(scores.values())
        top_category, top_score = ranked[0] if ranked else (self._fallback, 0)
        confidence = top_score / total if total else 0.0
        tied = len(ranked) > 1 and ranked[1][1] == top_score

        if top_score > 0 and not tied and confidence >= self._min_confidence:
            logger.debug(
                "intent_classified",
                category=top_category.value,
                confidence=round(confidence, 3),
                method="keyword",
            )
            return Classification(category=top_category, confidence=confidence, method="keyword")

        llm_category = await self._ask_llm(question)
        if llm_category is not None:
            logger.info(
                "intent_classified",
                category=llm_category.value,
                confidence=round(confidence, 3),
                method="llm",
            )
            return Classification(category=llm_category, confidence=confidence, method="llm")

        logger.info(
            "intent_fallback",
            category=self._fallback.value,
            confidence=round(confidence, 3),
            tied=tied,
        )
        return Classification(category=self._fallback, confidence=confidence, method="fallback")

    @staticmethod
    def score(question: str) -> dict[IntentCategory, int]:
        """Keyword scores per category (categories with zero score omitted)."""
        text = question.lower()
        scores: dict[IntentCategory, int] = {}
        for category, rules in _RULES.items():
            total = sum(weight for pattern, weight in rules if pattern.search(text))
            if total:
                scores[category] = total
        return scores

    async def _ask_llm(self, question: str) -> IntentCategory | None:
        if self._llm is None:
            return None
        try:
            reply = await asyncio.wait_for(
                self._llm.complete(
                    system_prompt=_CLASSIFIER_SYSTEM_PROMPT,
                    user_prompt=question,
                    model=self._llm_model,
                    temperature=0.0,
                    max_tokens=5,
                ),
                timeout=self._llm_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("intent_llm_timeout", timeout=self._llm_timeout)
            return None
        except Exception as exc:  # noqa: BLE001 — classification must not fail
            logger.warning("intent_llm_failed", error=str(exc))
            return None

        match = _LABEL_RE.search((reply or "").upper())
        if match is None:
            logger.warning("intent_llm_unparseable", reply=(reply or "")[:50])
            return None
        return IntentCategory(match.group(1))
