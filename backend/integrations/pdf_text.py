"""
PDF text extraction.

Parser settings travel with each call in a PdfParserConfig instead of living
in module globals, so concurrent extractions never share mutable state.
"""

import io
import re
from dataclasses import dataclass

import pdfplumber
from pdfminer.pdfparser import PDFSyntaxError
from pdfplumber.utils.exceptions import PdfminerException

from .logging_config import get_logger

logger = get_logger(__name__)

PRO_FORMA_PATTERN = re.compile(r"\bpro[\s\-]?forma\b", re.IGNORECASE)
INVOICE_PATTERN = re.compile(r"invoice", re.IGNORECASE)


@dataclass(frozen=True)
class PdfParserConfig:
    """Options handed to pdfplumber for one extraction."""

    max_pages: int | None = None
    x_tolerance: float = 3
    y_tolerance: float = 3
    password: str = ""


DEFAULT_PARSER_CONFIG = PdfParserConfig()
FIRST_PAGE_CONFIG = PdfParserConfig(max_pages=1)


def extract_text(
    pdf_bytes: bytes, config: PdfParserConfig = DEFAULT_PARSER_CONFIG
) -> str | None:
    """
    Extract text content from a PDF file.

    Args:
        pdf_bytes: Raw PDF file content
        config: Parser settings for this call

    Returns:
        Extracted text (possibly empty for scanned documents), or None if
        the document could not be parsed at all
    """
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes), password=config.password) as pdf:
            pages = pdf.pages
            if config.max_pages is not None:
                pages = pages[: config.max_pages]

            text_parts = []
            for page in pages:
                page_text = page.extract_text(
                    x_tolerance=config.x_tolerance, y_tolerance=config.y_tolerance
                )
                if page_text:
                    text_parts.append(page_text)
            return "\n".join(text_parts)
    except (PdfminerException, PDFSyntaxError, ValueError, KeyError, TypeError) as e:
        logger.warning(f"PDF extraction error: {e}")
        return None


def validate_invoice_content(
    pdf_bytes: bytes, config: PdfParserConfig = FIRST_PAGE_CONFIG
) -> tuple[bool, str]:
    """
    Decide whether a document looks like a real invoice.

    Only page 1 is read. A document with no extractable text is accepted,
    since scanned images cannot be checked cheaply.

    Returns:
        (is_valid, reason)
    """
    text = extract_text(pdf_bytes, config)
    if not text or not text.strip():
        return True, "no_text"

    if PRO_FORMA_PATTERN.search(text):
        return False, "pro_forma"

    if not INVOICE_PATTERN.search(text):
        return False, "missing_invoice_token"

    return True, "ok"
