"""Token-window chunking with exact overlap.

Splits source text into :class:`~src.models.rag.ChunkCandidate` windows
sized for embedding models (1000 tokens with 20% overlap by default).

A *token* here is a maximal run of non-whitespace characters.  The
tokenizer is deterministic and cheap, and it lets each chunk's text be the
exact slice of the source that spans its tokens, so original spacing and
line breaks survive inside a chunk.

Windows start at ``0, stride, 2*stride, ...`` where
``stride = max_tokens - floor(max_tokens * overlap_fraction)``.  Generation
stops as soon as a window reaches the last token, which means consecutive
chunks share exactly ``overlap_tokens`` tokens and the final chunk may be
shorter than ``max_tokens``.

Example: 2400 tokens at 1000/0.2 gives spans ``[0,1000)``, ``[800,1800)``
and ``[1600,2400)``.
"""

from __future__ import annotations

import math
import re

import structlog

from src.models.rag import ChunkCandidate
from src.utils.errors import InvalidConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_TOKEN_RE = re.compile(r"\S+")

DEFAULT_MAX_TOKENS = 1000
DEFAULT_OVERLAP_FRACTION = 0.20


def count_tokens(text: str) -> int:
    """Return the number of whitespace-delimited tokens in *text*."""
    return sum(1 for _ in _TOKEN_RE.finditer(text))


class TextChunker:
    """Splits text into fixed-size, overlapping token windows.

    Parameters
    ----------
    max_tokens:
        Maximum token count per chunk.  Must be at least 1.
    overlap_fraction:
        Fraction of ``max_tokens`` shared between consecutive chunks.
        Must lie in ``[0, 1)``.

    Raises
    ------
    InvalidConfigurationError
        If either parameter is out of range.
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        overlap_fraction: float = DEFAULT_OVERLAP_FRACTION,
    ) -> None:
        if max_tokens < 1:
            raise InvalidConfigurationError(
                message=f"max_tokens must be >= 1, got {max_tokens}"
            )
        if not 0.0 <= overlap_fraction < 1.0:
            raise InvalidConfigurationError(
                message=f"overlap_fraction must be in [0, 1), got {overlap_fraction}"
            )
        self._max_tokens = max_tokens
        self._overlap_fraction = overlap_fraction
        self._overlap_tokens = math.floor(max_tokens * overlap_fraction)
        self._stride = max_tokens - self._overlap_tokens

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def overlap_fraction(self) -> float:
        return self._overlap_fraction

    @property
    def overlap_tokens(self) -> int:
        return self._overlap_tokens

    @property
    def stride(self) -> int:
        return self._stride

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[ChunkCandidate]:
        """Split *text* into overlapping :class:`ChunkCandidate` windows.

        Returns
        -------
        list[ChunkCandidate]
            One candidate per window in document order.  Empty or
            whitespace-only input returns an empty list.
        """
        spans = [m.span() for m in _TOKEN_RE.finditer(text or "")]
        total = len(spans)
        if total == 0:
            return []

        candidates: list[ChunkCandidate] = []
        start = 0
        while True:
            end = min(start + self._max_tokens, total)
            candidates.append(
                ChunkCandidate(
                    position=len(candidates),
                    text=text[spans[start][0]:spans[end - 1][1]],
                    token_count=end - start,
                    start_token=start,
                    end_token=end,
                )
            )
            if end >= total:
                break
            start += self._stride

        logger.debug(
            "chunking_complete",
            num_chunks=len(candidates),
            total_tokens=total,
            max_tokens=self._max_tokens,
            overlap_tokens=self._overlap_tokens,
        )
        return candidates


def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_fraction: float = DEFAULT_OVERLAP_FRACTION,
) -> list[ChunkCandidate]:
    """Functional shorthand for ``TextChunker(max_tokens, overlap_fraction).chunk(text)``."""
    return TextChunker(max_tokens, overlap_fraction).chunk(text)
