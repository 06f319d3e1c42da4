"""Model-token counting for context budgets.

Routing rules express ``max_context_tokens`` in model tokens, which a BPE
tokenizer produces noticeably more of than there are whitespace words.
:class:`TokenCounter` counts with a HuggingFace ``tokenizers`` vocabulary
loaded from the Hub.  When the vocabulary cannot be downloaded it falls
back to a deliberately high character-based estimate, so budgets shrink
rather than overflow.

Vendor tokenizers differ slightly from any public vocabulary, so only a
fraction (``safety_margin``) of each limit is handed out.
"""

from __future__ import annotations

import math

import structlog
from tokenizers import Tokenizer

from src.utils.errors import InvalidConfigurationError

logger = structlog.get_logger(logger_name=__name__)

# o200k-style BPE vocabulary; close to the hosted models' tokenizers.
DEFAULT_TOKENIZER = "Xenova/gpt-4o"
DEFAULT_SAFETY_MARGIN = 0.95

# 1.5 chars/token over-counts dense text (names, numbers, punctuation).
_FALLBACK_CHARS_PER_TOKEN = 1.5


class TokenCounter:
    """Counts model tokens in prompt text.

    Parameters
    ----------
    tokenizer:
        Loaded ``tokenizers.Tokenizer``; ``None`` selects the
        character-based estimate.
    safety_margin:
        Fraction of a token limit that :meth:`usable` hands out.
    """

    def __init__(
        self,
        tokenizer: Tokenizer | None = None,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
    ) -> None:
        if not 0.0 < safety_margin <= 1.0:
            raise InvalidConfigurationError(
                message=f"Token safety margin must be in (0, 1], got {safety_margin}"
            )
        self._tokenizer = tokenizer
        self._safety_margin = safety_margin

    @classmethod
    def from_pretrained(
        cls, name: str, safety_margin: float = DEFAULT_SAFETY_MARGIN
    ) -> TokenCounter:
        """Load *name* from the HuggingFace Hub; an empty name skips the download."""
        tokenizer: Tokenizer | None = None
        if name:
            try:
                tokenizer = Tokenizer.from_pretrained(name)
            except Exception as exc:  # noqa: BLE001 — Hub download fails offline
                logger.warning(
                    "context_tokenizer_unavailable",
                    tokenizer=name,
                    error=str(exc),
                    fallback_chars_per_token=_FALLBACK_CHARS_PER_TOKEN,
                )
        return cls(tokenizer, safety_margin=safety_margin)

    @property
    def is_exact(self) -> bool:
        return self._tokenizer is not None

    def count(self, text: str) -> int:
        if not text:
            return 0
        if self._tokenizer is not None:
            return len(self._tokenizer.encode(text, add_special_tokens=False).ids)
        return math.ceil(len(text) / _FALLBACK_CHARS_PER_TOKEN)

    def usable(self, limit: int) -> int:
        """Part of a *limit* that may be filled after the safety margin."""
        return max(0, int(limit * self._safety_margin))
