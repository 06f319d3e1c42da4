"""Abstract base class for document text extractors.

An extractor turns the raw bytes of one document format into plain text
for the chunker.  Extractors are selected by filename suffix or content
type; see :class:`src.providers.extraction.ExtractionService`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: PlainTextExtractor, HTMLExtractor, PDFExtractor
# Located in: src/providers/extraction/
class ITextExtractor(ABC):
    """Contract for format-specific text extraction."""

    @abstractmethod
    def supports(self, filename: str | None, content_type: str | None) -> bool:
        """Return ``True`` if this extractor handles the given file."""

    @abstractmethod
    async def extract(
        self,
        content: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> str:
        """Return the plain text of *content*.

        Raises
        ------
        src.utils.errors.ExtractionError
            If the content is corrupt or not in the expected format.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"pdf"``."""
