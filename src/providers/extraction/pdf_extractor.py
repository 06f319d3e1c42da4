"""PDF extractor using PyMuPDF (fitz).

Extracts text page-by-page and joins non-empty pages with blank lines.
Scanned PDFs without a text layer produce an empty string, which the
ingestion pipeline treats as an empty document.
"""

from __future__ import annotations

import asyncio

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from src.interfaces.text_extractor import ITextExtractor
from src.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)


class PDFExtractor(ITextExtractor):
    """Extractor for PDF documents."""

    def supports(self, filename: str | None, content_type: str | None) -> bool:
        if content_type and content_type.split(";")[0].strip().lower() == "application/pdf":
            return True
        return bool(filename) and filename.lower().endswith(".pdf")

    async def extract(
        self,
        content: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> str:
        # PyMuPDF is synchronous and CPU-bound on large files.
        return await asyncio.to_thread(self._extract_sync, content, filename)

    def _extract_sync(self, content: bytes, filename: str | None) -> str:
        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as exc:  # noqa: BLE001 — fitz raises several types
            logger.error("pdf_open_failed", filename=filename, error=str(exc))
            raise ExtractionError(
                message=f"Could not open PDF {filename or ''}: {exc}".strip(),
                provider_name=self.get_provider_name(),
            ) from exc

        pages: list[str] = []
        try:
            for page in doc:
                text = page.get_text("text").strip()
                if text:
                    pages.append(text)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", filename=filename)
        return "\n\n".join(pages)

    def get_provider_name(self) -> str:
        return "pdf"
