"""
Database Layer - Public API

This module provides the public interface for all database operations.
It imports and re-exports functions from domain-specific modules.

Usage:
    from database import get_session, save_mailbox, upsert_claim
    # or
    from database import fulfillment as fulfillment_db

Organization:
    - base.py: Engine, session factory and dialect-matched upsert
    - mailboxes.py: Connected mailboxes and processed-message markers
    - suppliers.py: Allowed supplier operations
    - invoices.py: Invoice rows and duplicate candidate queries
    - fulfillment.py: Credentials, watermarks, shipments, discrepancies, claims
"""

from .base import Base, configure_engine, get_session, init_db, upsert
from .fulfillment import (
    advance_claim_watermark,
    advance_shipment_watermark,
    get_claims,
    get_credential,
    get_discrepancies,
    get_shipment_items,
    get_shipments,
    mark_credential_revoked,
    resolve_discrepancy,
    save_credential,
    set_shipment_sync_status,
    update_credential_tokens,
    upsert_claim,
    upsert_discrepancy,
    upsert_shipment,
    upsert_shipment_item,
)
from .invoices import (
    create_invoice,
    delete_invoice,
    find_invoices_by_date_vendor,
    get_file_names_like,
    get_invoice,
    get_invoices,
    get_message_invoices,
    get_pending_invoices,
    set_invoice_analysis_error,
    update_invoice_analysis,
)
from .mailboxes import (
    count_processed_messages,
    delete_mailbox,
    get_mailbox,
    get_mailboxes,
    get_syncable_mailboxes,
    is_message_processed,
    mark_mailbox_needs_reauth,
    record_processed_message,
    save_mailbox,
    set_mailbox_sync_enabled,
    update_mailbox_sync_state,
    update_mailbox_tokens,
)
from .suppliers import (
    add_supplier,
    approve_supplier,
    delete_supplier,
    get_supplier_emails_for_mailbox,
    get_suppliers,
    insert_suggested_supplier,
)
