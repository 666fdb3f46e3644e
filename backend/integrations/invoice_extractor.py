"""
Invoice Extraction Client

Sends invoice text (PDF) or a data URL (image) to an OpenAI-compatible chat
completions endpoint with a forced ``extract_invoice_data`` tool call, then
normalizes the reply. The service is treated as unreliable: string "null"
values are dropped, invalid dates are discarded, and a label-aware regex pass
over the document text supplies the invoice date when the service omits it.
"""

import base64
import json
import re
from dataclasses import dataclass, field
from datetime import date

from openai import APIConnectionError, APIError, APITimeoutError, OpenAI

from config.extraction_config import ExtractionConfig

from .errors import ExtractionUnavailable
from .logging_config import get_logger
from .pdf_text import DEFAULT_PARSER_CONFIG, PdfParserConfig, extract_text

logger = get_logger(__name__)

EXTRACT_TOOL = {
    "type": "function",
    "function": {
        "name": "extract_invoice_data",
        "description": "Extract structured data from an invoice",
        "parameters": {
            "type": "object",
            "properties": {
                "invoice_number": {"type": "string", "description": "Invoice number"},
                "invoice_date": {
                    "type": "string",
                    "description": (
                        "Invoice date in YYYY-MM-DD format, taken from a label such "
                        "as 'Invoice Date' or 'Date'. Never a Due Date or Ship Date."
                    ),
                },
                "vendor": {"type": "string", "description": "Vendor or company name"},
                "line_items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "description": {"type": "string"},
                            "quantity": {"type": "string"},
                            "unit_price": {"type": "string"},
                            "total": {"type": "string"},
                        },
                        "required": ["description"],
                    },
                },
            },
            "required": ["invoice_number", "invoice_date", "vendor", "line_items"],
        },
    },
}

SYSTEM_PROMPT = (
    "You are an invoice analysis assistant. Extract structured data from invoices."
)

DATE_RULES = """CRITICAL DATE EXTRACTION RULES:
- Search the ENTIRE document for date fields
- Accept formats: MM/DD/YYYY, MM/DD/YY, DD/MM/YYYY, DD/MM/YY, YYYY-MM-DD, Month DD, YYYY
- Two-digit years: 00-29 => 2000-2029, 30-99 => 1930-1999
- Convert to YYYY-MM-DD
- Prefer labels: "Invoice Date" or "Date"
- NEVER use "Due Date" or "Ship Date\""""

MONTHS = {
    "jan": 1, "january": 1, "feb": 2, "february": 2, "mar": 3, "march": 3,
    "apr": 4, "april": 4, "may": 5, "jun": 6, "june": 6, "jul": 7, "july": 7,
    "aug": 8, "august": 8, "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10, "nov": 11, "november": 11, "dec": 12, "december": 12,
}

_LABEL = re.compile(r"\b(?:(\w+)\s+)?date\b", re.IGNORECASE)
_EXCLUDED_LABEL_WORDS = {"due", "ship", "shipped", "shipping", "delivery"}
_NUMERIC_DATE = re.compile(r"\b([0-1]?\d)/([0-3]?\d)/(\d{2,4})\b")
_MONTH_DAY_YEAR = re.compile(r"\b([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s*(\d{4})\b")
_DAY_MONTH_YEAR = re.compile(r"\b(\d{1,2})\s+([A-Za-z]{3,9})\.?,?\s+(\d{4})\b")
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")


@dataclass
class ExtractedInvoice:
    invoice_number: str | None = None
    invoice_date: date | None = None
    vendor: str | None = None
    line_items: list = field(default_factory=list)


def _normalize_year(year: int) -> int:
    if year < 100:
        return 2000 + year if year <= 29 else 1900 + year
    return year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(_normalize_year(year), month, day)
    except ValueError:
        return None


def _first_date(fragment: str) -> date | None:
    """First recognizable date at the start of a text fragment."""
    candidates = []

    match = _NUMERIC_DATE.search(fragment)
    if match:
        m, d, y = (int(v) for v in match.groups())
        candidates.append((match.start(), _safe_date(y, m, d)))

    match = _MONTH_DAY_YEAR.search(fragment)
    if match and match.group(1).lower() in MONTHS:
        candidates.append(
            (
                match.start(),
                _safe_date(
                    int(match.group(3)), MONTHS[match.group(1).lower()], int(match.group(2))
                ),
            )
        )

    match = _DAY_MONTH_YEAR.search(fragment)
    if match and match.group(2).lower() in MONTHS:
        candidates.append(
            (
                match.start(),
                _safe_date(
                    int(match.group(3)), MONTHS[match.group(2).lower()], int(match.group(1))
                ),
            )
        )

    match = _ISO_DATE.search(fragment)
    if match:
        y, m, d = (int(v) for v in match.groups())
        candidates.append((match.start(), _safe_date(y, m, d)))

    candidates = [(pos, value) for pos, value in candidates if value is not None]
    if not candidates:
        return None
    return min(candidates, key=lambda c: c[0])[1]


def find_invoice_date(text: str | None) -> date | None:
    """
    Regex fallback for the invoice date.

    Looks for a date right after an "Invoice Date"/"Date" label, then on the
    line following such a label, then any ISO date on a line that carries no
    excluded label. Due and ship dates are never returned.
    """
    if not text:
        return None

    lines = text.splitlines()
    for index, line in enumerate(lines):
        for label in _LABEL.finditer(line):
            qualifier = (label.group(1) or "").lower()
            if qualifier in _EXCLUDED_LABEL_WORDS:
                continue

            # Only the text before the next label belongs to this one
            rest = line[label.end():]
            next_label = _LABEL.search(rest)
            if next_label:
                rest = rest[: next_label.start()]

            found = _first_date(rest[:40])
            if found:
                return found

            if not rest.strip() and index + 1 < len(lines):
                found = _first_date(lines[index + 1][:40])
                if found:
                    return found

    for line in lines:
        qualifiers = {(m.group(1) or "").lower() for m in _LABEL.finditer(line)}
        if qualifiers & _EXCLUDED_LABEL_WORDS:
            continue
        match = _ISO_DATE.search(line)
        if match:
            y, m, d = (int(v) for v in match.groups())
            found = _safe_date(y, m, d)
            if found:
                return found

    return None


def _clean(value):
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() == "null":
        return None
    return value


def _parse_iso(value) -> date | None:
    value = _clean(value)
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def normalize_extraction(arguments: dict, document_text: str | None = None) -> ExtractedInvoice:
    """Turn raw tool-call arguments into an ExtractedInvoice."""
    line_items = arguments.get("line_items")
    if not isinstance(line_items, list):
        line_items = []

    invoice_date = _parse_iso(arguments.get("invoice_date"))
    if invoice_date is None:
        invoice_date = find_invoice_date(document_text)
        if invoice_date:
            logger.debug("Invoice date recovered by regex fallback")

    return ExtractedInvoice(
        invoice_number=_clean(arguments.get("invoice_number")),
        invoice_date=invoice_date,
        vendor=_clean(arguments.get("vendor")),
        line_items=[item for item in line_items if isinstance(item, dict)],
    )


class InvoiceExtractor:
    """Structured-extraction service client."""

    def __init__(self, config: ExtractionConfig, client: OpenAI | None = None):
        self.config = config
        self.client = client or OpenAI(
            api_key=config.api_key,
            base_url=config.api_base_url,
            timeout=config.timeout,
        )

    def _build_messages(self, text: str | None, image_data_url: str | None) -> list:
        if image_data_url:
            return [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": f"{DATE_RULES}\nReturn ONLY JSON with fields "
                            "invoice_number, invoice_date, vendor, line_items.",
                        },
                        {"type": "image_url", "image_url": {"url": image_data_url}},
                    ],
                },
            ]

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": "Analyze this invoice text carefully and extract required "
                f"fields.\n{DATE_RULES}\n\nInvoice text:\n{text or ''}\n\n"
                "Return ONLY the JSON object.",
            },
        ]

    def extract(
        self,
        document: bytes,
        mime_type: str | None,
        parser_config: PdfParserConfig = DEFAULT_PARSER_CONFIG,
    ) -> ExtractedInvoice:
        """
        Extract invoice fields from a stored document.

        Args:
            document: Raw document bytes
            mime_type: Document MIME type
            parser_config: PDF parser settings for this call

        Returns:
            ExtractedInvoice (fields may be None)

        Raises:
            ExtractionUnavailable: Service unreachable or reply unusable
        """
        mime_type = (mime_type or "").lower()
        text = None
        image_data_url = None

        if mime_type.startswith("image/"):
            encoded = base64.b64encode(document).decode("ascii")
            image_data_url = f"data:{mime_type};base64,{encoded}"
        elif mime_type == "application/pdf":
            text = (extract_text(document, parser_config) or "")[: self.config.max_text_chars]
        else:
            logger.info(f"Unsupported document type for analysis: {mime_type}")
            return ExtractedInvoice()

        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=self._build_messages(text, image_data_url),
                tools=[EXTRACT_TOOL],
                tool_choice={
                    "type": "function",
                    "function": {"name": "extract_invoice_data"},
                },
                timeout=self.config.timeout,
            )
        except (APIConnectionError, APITimeoutError) as e:
            raise ExtractionUnavailable(f"Extraction service unreachable: {e}") from e
        except APIError as e:
            raise ExtractionUnavailable(f"Extraction service error: {e}") from e

        arguments = _tool_arguments(response)
        if self.config.debug:
            logger.debug(f"Extraction arguments: {arguments}")

        return normalize_extraction(arguments, text)


def _tool_arguments(response) -> dict:
    try:
        tool_calls = response.choices[0].message.tool_calls or []
    except (AttributeError, IndexError) as e:
        raise ExtractionUnavailable("Extraction reply had no choices") from e

    if not tool_calls:
        raise ExtractionUnavailable("Extraction reply had no tool call")

    try:
        arguments = json.loads(tool_calls[0].function.arguments)
    except (TypeError, ValueError) as e:
        raise ExtractionUnavailable("Extraction tool arguments were not JSON") from e

    if not isinstance(arguments, dict):
        raise ExtractionUnavailable("Extraction tool arguments were not an object")
    return arguments
