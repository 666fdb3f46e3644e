"""
Extraction & Duplicate Resolver

Runs extraction on a stored ``pending`` invoice, then either removes it as a
true duplicate or writes the extracted fields:

- duplicate: same owner, invoice_date, vendor, original file name and
  identical line items as an existing invoice -> row and blob deleted
- completed: an invoice date was found
- needs_review: no invoice date
- pending: extraction service unavailable, retried later
"""

import json
from dataclasses import dataclass

import database

from . import document_store
from .errors import ExtractionUnavailable, StorageError
from .invoice_extractor import ExtractedInvoice, InvoiceExtractor
from .logging_config import get_logger
from .pdf_text import DEFAULT_PARSER_CONFIG, PdfParserConfig

logger = get_logger(__name__)

STATUS_COMPLETED = "completed"
STATUS_NEEDS_REVIEW = "needs_review"
STATUS_PENDING = "pending"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_MISSING = "missing"


@dataclass
class AnalysisOutcome:
    invoice_id: int
    status: str
    duplicate_of: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "invoice_id": self.invoice_id,
            "status": self.status,
            "duplicate_of": self.duplicate_of,
            "error": self.error,
        }


def canonical_line_items(line_items) -> str:
    """Stable serialization used to compare line items for equality."""
    return json.dumps(line_items or [], sort_keys=True, separators=(",", ":"), default=str)


def find_duplicate(invoice: dict, extracted: ExtractedInvoice) -> dict | None:
    """Existing invoice that the freshly extracted one duplicates, if any.

    Without an invoice date there is no (date, vendor) match to make; such
    invoices go to needs_review and are never removed as duplicates.
    """
    if extracted.invoice_date is None:
        return None

    candidates = database.find_invoices_by_date_vendor(
        invoice["owner_id"],
        extracted.invoice_date,
        extracted.vendor,
        exclude_id=invoice["id"],
    )
    line_items = canonical_line_items(extracted.line_items)

    for candidate in candidates:
        if candidate["original_file_name"] != invoice["original_file_name"]:
            continue
        if canonical_line_items(candidate["line_items"]) == line_items:
            return candidate
    return None


def analyze_invoice(
    invoice_id: int,
    extractor: InvoiceExtractor,
    parser_config: PdfParserConfig = DEFAULT_PARSER_CONFIG,
) -> AnalysisOutcome:
    """
    Extract fields for one invoice and resolve duplicates.

    Args:
        invoice_id: Invoice to analyze
        extractor: Extraction service client
        parser_config: PDF parser settings for this call

    Returns:
        AnalysisOutcome
    """
    invoice = database.get_invoice(invoice_id)
    if not invoice:
        return AnalysisOutcome(invoice_id=invoice_id, status=OUTCOME_MISSING)

    log_context = {"owner_id": invoice["owner_id"]}

    try:
        document = document_store.get_document(invoice["storage_path"])
        extracted = extractor.extract(document, invoice["mime_type"], parser_config)
    except (ExtractionUnavailable, StorageError) as e:
        logger.warning(f"Analysis deferred for invoice {invoice_id}: {e}", extra=log_context)
        database.set_invoice_analysis_error(invoice_id, str(e))
        return AnalysisOutcome(invoice_id=invoice_id, status=STATUS_PENDING, error=str(e))

    duplicate = find_duplicate(invoice, extracted)
    if duplicate:
        document_store.delete_document(invoice["storage_path"])
        database.delete_invoice(invoice_id)
        logger.info(
            f"Invoice {invoice_id} duplicates invoice {duplicate['id']}, removed",
            extra=log_context,
        )
        return AnalysisOutcome(
            invoice_id=invoice_id, status=OUTCOME_DUPLICATE, duplicate_of=duplicate["id"]
        )

    status = STATUS_COMPLETED if extracted.invoice_date else STATUS_NEEDS_REVIEW
    database.update_invoice_analysis(
        invoice_id,
        invoice_number=extracted.invoice_number,
        invoice_date=extracted.invoice_date,
        vendor=extracted.vendor,
        line_items=extracted.line_items,
        status=status,
    )
    logger.info(f"Invoice {invoice_id} analyzed: {status}", extra=log_context)
    return AnalysisOutcome(invoice_id=invoice_id, status=status)


def retry_pending_invoices(owner_id: str | None = None, dispatch=None, limit: int = 100) -> dict:
    """
    Re-dispatch extraction for invoices still ``pending``.

    Args:
        owner_id: Limit to one owner (all owners when None)
        dispatch: Callable taking an invoice id
        limit: Max invoices per call

    Returns:
        {"dispatched": int, "errors": [...]}
    """
    pending = database.get_pending_invoices(owner_id=owner_id, limit=limit)
    dispatched = 0
    errors = []

    for invoice in pending:
        try:
            dispatch(invoice["id"])
            dispatched += 1
        except Exception as e:
            logger.error(f"Failed to re-dispatch invoice {invoice['id']}: {e}")
            errors.append({"item": invoice["id"], "code": "dispatch_failed", "message": str(e)})

    return {"dispatched": dispatched, "errors": errors}
