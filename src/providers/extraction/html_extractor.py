"""HTML extractor using BeautifulSoup.

Drops script/style/navigation elements, then flattens the remaining
markup to text with one line per block element and collapsed blank runs.
"""

from __future__ import annotations

import re

import structlog
from bs4 import BeautifulSoup

from src.interfaces.text_extractor import ITextExtractor

logger = structlog.get_logger(logger_name=__name__)

_MULTI_SPACE = re.compile(r"[ \t]+")
_MULTI_NEWLINE = re.compile(r"\n\s*\n+")

_STRIP_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside")
_SUFFIXES = (".html", ".htm", ".xhtml")


class HTMLExtractor(ITextExtractor):
    """Extractor for HTML pages."""

    def supports(self, filename: str | None, content_type: str | None) -> bool:
        if content_type and "html" in content_type.lower():
            return True
        return bool(filename) and filename.lower().endswith(_SUFFIXES)

    async def extract(
        self,
        content: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> str:
        html_content = content.decode("utf-8", errors="replace")
        soup = BeautifulSoup(html_content, "html.parser")
        for tag in soup(_STRIP_TAGS):
            tag.decompose()

        text = soup.get_text(separator="\n")
        text = _MULTI_SPACE.sub(" ", text)
        text = _MULTI_NEWLINE.sub("\n\n", text)
        text = text.strip()
        logger.debug("html_extracted", filename=filename, chars=len(text))
        return text

    def get_provider_name(self) -> str:
        return "html"
