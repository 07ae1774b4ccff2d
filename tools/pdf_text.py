"""Text extraction from PDF attachments."""

import io
import logging

import structlog
from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = structlog.get_logger(__name__)

# pypdf is noisy about malformed but readable files.
logging.getLogger("pypdf").setLevel(logging.ERROR)

MAX_PAGES = 30


def extract_pdf_text(data: bytes, filename: str = "", max_pages: int = MAX_PAGES) -> str:
    """Concatenated text of the first *max_pages* pages; empty string if unreadable."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = []
        for index, page in enumerate(reader.pages):
            if index >= max_pages:
                break
            pages.append(page.extract_text() or "")
    except (PdfReadError, ValueError, OSError) as e:
        logger.warning("pdf_text.unreadable", filename=filename, error=str(e))
        return ""

    text = "\n\n".join(p.strip() for p in pages if p.strip())
    logger.debug("pdf_text.extracted", filename=filename, pages=len(pages), chars=len(text))
    return text
