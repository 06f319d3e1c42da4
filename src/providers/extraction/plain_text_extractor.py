"""Plain-text and Markdown extractor.

Decodes UTF-8 (with BOM tolerance) and falls back to Latin-1 so that a
stray byte never rejects an otherwise readable file.
"""

from __future__ import annotations

import structlog

from src.interfaces.text_extractor import ITextExtractor

logger = structlog.get_logger(logger_name=__name__)

_SUFFIXES = (".txt", ".md", ".markdown", ".rst", ".text")
_CONTENT_TYPES = ("text/plain", "text/markdown", "text/x-rst")


class PlainTextExtractor(ITextExtractor):
    """Extractor for plain text files."""

    def supports(self, filename: str | None, content_type: str | None) -> bool:
        if content_type and content_type.split(";")[0].strip().lower() in _CONTENT_TYPES:
            return True
        return bool(filename) and filename.lower().endswith(_SUFFIXES)

    async def extract(
        self,
        content: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> str:
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("plain_text_not_utf8", filename=filename)
            return content.decode("latin-1")

    def get_provider_name(self) -> str:
        return "text"
