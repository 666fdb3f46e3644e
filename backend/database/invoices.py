"""
Invoices - Database Operations

Invoice rows are created as ``pending`` at ingestion, updated once by the
extraction step, and deleted outright when found to be duplicates.
"""

from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError

from .base import get_session
from .models.invoice import Invoice


def _invoice_to_dict(inv):
    return {
        "id": inv.id,
        "owner_id": inv.owner_id,
        "file_name": inv.file_name,
        "original_file_name": inv.original_file_name,
        "storage_path": inv.storage_path,
        "mime_type": inv.mime_type,
        "size": inv.size,
        "source_email": inv.source_email,
        "source_mailbox_id": inv.source_mailbox_id,
        "source_message_id": inv.source_message_id,
        "analysis_status": inv.analysis_status,
        "analysis_error": inv.analysis_error,
        "invoice_number": inv.invoice_number,
        "invoice_date": inv.invoice_date,
        "vendor": inv.vendor,
        "line_items": inv.line_items or [],
        "created_at": inv.created_at,
    }


def get_file_names_like(owner_id, stem, extension):
    """Existing file names for an owner that could collide with ``stem``."""
    with get_session() as session:
        rows = (
            session.query(Invoice.file_name)
            .filter(
                Invoice.owner_id == owner_id,
                Invoice.file_name.like(f"{stem}%{extension}"),
            )
            .all()
        )
        return [row.file_name for row in rows]


def create_invoice(
    owner_id,
    file_name,
    storage_path,
    mime_type=None,
    size=None,
    source_email=None,
    source_mailbox_id=None,
    original_file_name=None,
    source_message_id=None,
):
    """Insert a pending invoice.

    Returns:
        New invoice id, or None when (owner_id, file_name) is already taken.
    """
    with get_session() as session:
        invoice = Invoice(
            owner_id=owner_id,
            file_name=file_name,
            original_file_name=original_file_name or file_name,
            storage_path=storage_path,
            mime_type=mime_type,
            size=size,
            source_email=source_email,
            source_mailbox_id=source_mailbox_id,
            source_message_id=source_message_id,
            analysis_status="pending",
        )
        session.add(invoice)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return None
        return invoice.id


def get_invoice(invoice_id):
    with get_session() as session:
        invoice = session.get(Invoice, invoice_id)
        return _invoice_to_dict(invoice) if invoice else None


def get_invoices(owner_id, status=None):
    """Get invoices for an owner, newest first."""
    with get_session() as session:
        query = session.query(Invoice).filter(Invoice.owner_id == owner_id)
        if status:
            query = query.filter(Invoice.analysis_status == status)
        return [
            _invoice_to_dict(inv)
            for inv in query.order_by(Invoice.id.desc()).all()
        ]


def get_message_invoices(owner_id, source_message_id):
    """Invoices already stored from one mail message, oldest first."""
    with get_session() as session:
        rows = (
            session.query(Invoice.id, Invoice.original_file_name)
            .filter(
                Invoice.owner_id == owner_id,
                Invoice.source_message_id == source_message_id,
            )
            .order_by(Invoice.id)
            .all()
        )
        return [{"id": row.id, "original_file_name": row.original_file_name} for row in rows]


def get_pending_invoices(owner_id=None, limit=100):
    """Invoices whose extraction never completed."""
    with get_session() as session:
        query = session.query(Invoice).filter(Invoice.analysis_status == "pending")
        if owner_id:
            query = query.filter(Invoice.owner_id == owner_id)
        return [
            _invoice_to_dict(inv) for inv in query.order_by(Invoice.id).limit(limit).all()
        ]


def find_invoices_by_date_vendor(owner_id, invoice_date, vendor, exclude_id=None):
    """Candidate duplicates: same owner, same (invoice_date, vendor)."""
    with get_session() as session:
        query = session.query(Invoice).filter(
            Invoice.owner_id == owner_id,
            Invoice.invoice_date == invoice_date,
            Invoice.vendor == vendor,
        )
        if exclude_id is not None:
            query = query.filter(Invoice.id != exclude_id)
        return [_invoice_to_dict(inv) for inv in query.all()]


def update_invoice_analysis(
    invoice_id, invoice_number, invoice_date, vendor, line_items, status
):
    """Write extracted fields and the resulting analysis status."""
    with get_session() as session:
        invoice = session.get(Invoice, invoice_id)
        if not invoice:
            return False

        invoice.invoice_number = invoice_number
        invoice.invoice_date = invoice_date
        invoice.vendor = vendor
        invoice.line_items = line_items
        invoice.analysis_status = status
        invoice.analysis_error = None
        invoice.updated_at = datetime.now(UTC)
        session.commit()
        return True


def set_invoice_analysis_error(invoice_id, error_message):
    """Record why extraction failed. Status stays pending."""
    with get_session() as session:
        invoice = session.get(Invoice, invoice_id)
        if not invoice:
            return False
        invoice.analysis_error = error_message
        session.commit()
        return True


def delete_invoice(invoice_id):
    with get_session() as session:
        deleted = (
            session.query(Invoice)
            .filter(Invoice.id == invoice_id)
            .delete(synchronize_session=False)
        )
        session.commit()
        return deleted > 0
