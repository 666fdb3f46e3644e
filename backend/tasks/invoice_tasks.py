"""Celery tasks for invoice extraction."""

from celery_app import celery_app
from config.extraction_config import load_extraction_config
from integrations.invoice_extractor import InvoiceExtractor
from integrations.invoice_resolver import analyze_invoice, retry_pending_invoices
from integrations.logging_config import get_logger

logger = get_logger(__name__)


def dispatch_invoice_analysis(invoice_id: int):
    """Queue extraction for a freshly ingested invoice."""
    analyze_invoice_task.delay(invoice_id)


@celery_app.task(bind=True, time_limit=300, soft_time_limit=270, max_retries=3)
def analyze_invoice_task(self, invoice_id: int):
    """
    Celery task to extract fields for one invoice and resolve duplicates.

    Args:
        invoice_id: Invoice to analyze

    Returns:
        dict: Analysis outcome (status completed, needs_review, duplicate or pending)
    """
    self.update_state(state="STARTED", meta={"status": "analyzing", "invoice_id": invoice_id})

    extractor = InvoiceExtractor(load_extraction_config())
    outcome = analyze_invoice(invoice_id, extractor)

    if outcome.status == "pending":
        # Extraction service unavailable; the invoice stays pending
        logger.warning(f"Invoice {invoice_id} analysis deferred: {outcome.error}")
        raise self.retry(countdown=60 * (self.request.retries + 1))

    return outcome.to_dict()


@celery_app.task(bind=True, time_limit=600, soft_time_limit=540)
def retry_pending_invoices_task(self, owner_id: str = None, limit: int = 100):
    """
    Celery task to re-queue extraction for invoices stuck in pending.

    Args:
        owner_id: Limit to one owner (None = all owners)
        limit: Max invoices to re-queue

    Returns:
        dict: Dispatch counts and errors
    """
    self.update_state(state="STARTED", meta={"status": "requeueing", "owner_id": owner_id})
    return retry_pending_invoices(owner_id, dispatch=dispatch_invoice_analysis, limit=limit)
