"""Selects a text extractor for a document and runs it."""

from __future__ import annotations

import structlog

from src.interfaces.text_extractor import ITextExtractor
from src.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)


class ExtractionService:
    """Dispatches raw document bytes to the first extractor that supports them.

    Parameters
    ----------
    extractors:
        Extractors in priority order.  The first whose
        :meth:`~ITextExtractor.supports` returns ``True`` wins.
    """

    def __init__(self, extractors: list[ITextExtractor]) -> None:
        self._extractors = list(extractors)

    def select(self, filename: str | None, content_type: str | None) -> ITextExtractor:
        for extractor in self._extractors:
            if extractor.supports(filename, content_type):
                return extractor
        raise ExtractionError(
            message=(
                f"No extractor for filename={filename!r} content_type={content_type!r}"
            )
        )

    async def extract(
        self,
        content: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> str:
        """Return plain text for *content*.

        Raises
        ------
        ExtractionError
            If no extractor matches or the matching extractor fails.
        """
        extractor = self.select(filename, content_type)
        try:
            text = await extractor.extract(content, filename=filename, content_type=content_type)
        except ExtractionError:
            raise
        except (UnicodeError, ValueError) as exc:
            raise ExtractionError(
                message=f"Extraction failed: {exc}",
                provider_name=extractor.get_provider_name(),
            ) from exc
        logger.info(
            "text_extracted",
            extractor=extractor.get_provider_name(),
            filename=filename,
            chars=len(text),
        )
        return text
