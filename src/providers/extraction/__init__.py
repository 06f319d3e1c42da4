"""Text extractors for ingestion.

Three concrete implementations of ITextExtractor:
    - PlainTextExtractor — .txt / .md / text/plain
    - HTMLExtractor      — .html / text/html (BeautifulSoup)
    - PDFExtractor       — .pdf / application/pdf (PyMuPDF)

ExtractionService picks the first extractor that supports a file.
"""

from src.providers.extraction.extraction_service import ExtractionService
from src.providers.extraction.html_extractor import HTMLExtractor
from src.providers.extraction.pdf_extractor import PDFExtractor
from src.providers.extraction.plain_text_extractor import PlainTextExtractor

__all__ = ["ExtractionService", "HTMLExtractor", "PDFExtractor", "PlainTextExtractor"]


def default_extraction_service() -> ExtractionService:
    """Service with every built-in extractor, most specific first."""
    return ExtractionService([PDFExtractor(), HTMLExtractor(), PlainTextExtractor()])
