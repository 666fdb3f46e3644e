"""
Invoice Service - Business Logic

Invoice listing, manual uploads, and extraction dispatch.
"""

import database
from config.extraction_config import load_extraction_config
from integrations import document_store
from integrations.invoice_extractor import InvoiceExtractor
from integrations.invoice_ingestion import ingest_document
from integrations.invoice_resolver import analyze_invoice, retry_pending_invoices
from tasks.invoice_tasks import analyze_invoice_task, dispatch_invoice_analysis

ALLOWED_UPLOAD_TYPES = ("application/pdf", "image/png", "image/jpeg", "image/webp")


def get_invoices(owner_id: str, status: str = None) -> list:
    return database.get_invoices(owner_id, status=status)


def get_invoice(owner_id: str, invoice_id: int) -> dict | None:
    invoice = database.get_invoice(invoice_id)
    if not invoice or invoice["owner_id"] != owner_id:
        return None
    return invoice


def upload_invoice(owner_id: str, file_name: str, data: bytes, mime_type: str) -> dict:
    """
    Register a user-uploaded document and queue its extraction.

    Raises:
        ValueError: Empty file or unsupported type
        ValidationRejected: PDF failed content checks
    """
    if not data:
        raise ValueError("Uploaded file is empty")
    if mime_type not in ALLOWED_UPLOAD_TYPES:
        raise ValueError(f"Unsupported file type: {mime_type}")

    invoice_id = ingest_document(
        owner_id,
        file_name,
        data,
        mime_type=mime_type,
        dispatch_analysis=dispatch_invoice_analysis,
    )
    return database.get_invoice(invoice_id)


def start_analysis(owner_id: str, invoice_id: int) -> dict:
    """
    Queue extraction for one invoice.

    Raises:
        ValueError: If the invoice is not found
    """
    if not get_invoice(owner_id, invoice_id):
        raise ValueError(f"Invoice {invoice_id} not found")

    task = analyze_invoice_task.delay(invoice_id)
    return {"task_id": task.id, "status": "queued", "invoice_id": invoice_id}


def run_analysis(owner_id: str, invoice_id: int) -> dict:
    """Run extraction in-process and return the outcome."""
    if not get_invoice(owner_id, invoice_id):
        raise ValueError(f"Invoice {invoice_id} not found")

    extractor = InvoiceExtractor(load_extraction_config())
    return analyze_invoice(invoice_id, extractor).to_dict()


def retry_pending(owner_id: str, limit: int = 100) -> dict:
    return retry_pending_invoices(owner_id, dispatch=dispatch_invoice_analysis, limit=limit)


def delete_invoice(owner_id: str, invoice_id: int):
    invoice = get_invoice(owner_id, invoice_id)
    if not invoice:
        raise ValueError(f"Invoice {invoice_id} not found")

    document_store.delete_document(invoice["storage_path"])
    database.delete_invoice(invoice_id)
