"""
Mail Service - Business Logic

Orchestrates mailbox connection, sync, supplier discovery and supplier
management. Separates business logic from HTTP routing concerns.
"""

import database
from config.sync_config import load_sync_config
from integrations import mail_auth, mail_sync
from integrations.errors import NotConnected
from integrations.logging_config import get_logger
from integrations.mail_provider import extract_sender_address
from tasks.invoice_tasks import dispatch_invoice_analysis
from tasks.mail_tasks import discover_suppliers_task, sync_owner_mailboxes_task

logger = get_logger(__name__)

SENSITIVE_FIELDS = ("encrypted_access_token", "encrypted_refresh_token", "token_expiry")


def _public(mailbox: dict) -> dict:
    """Strip token fields before a mailbox leaves the service layer."""
    return {k: v for k, v in mailbox.items() if k not in SENSITIVE_FIELDS}


def connect_mailbox(
    owner_id: str,
    provider: str,
    code: str,
    redirect_uri: str,
    code_verifier: str = None,
) -> dict:
    """
    Complete an OAuth callback for Gmail or Outlook.

    Raises:
        ValueError: If the provider is not supported
        AuthExpired: If the provider rejects the code
    """
    mailbox = mail_auth.connect_mailbox(owner_id, provider, code, redirect_uri, code_verifier)
    return _public(mailbox)


def get_mailboxes(owner_id: str) -> list:
    return [_public(m) for m in database.get_mailboxes(owner_id)]


def disconnect_mailbox(owner_id: str, mailbox_id: int):
    """
    Raises:
        ValueError: If the mailbox does not belong to the owner
    """
    if not database.delete_mailbox(owner_id, mailbox_id):
        raise ValueError(f"Mailbox {mailbox_id} not found")


def set_sync_enabled(owner_id: str, mailbox_id: int, enabled: bool) -> dict:
    mailbox = database.get_mailbox(mailbox_id)
    if not mailbox or mailbox["owner_id"] != owner_id:
        raise ValueError(f"Mailbox {mailbox_id} not found")
    database.set_mailbox_sync_enabled(mailbox_id, enabled)
    return _public(database.get_mailbox(mailbox_id))


def start_sync(owner_id: str, supplier_email: str = None) -> dict:
    """
    Queue a sync of every enabled mailbox for an owner.

    Raises:
        NotConnected: If the owner has no enabled mailbox
    """
    if not database.get_mailboxes(owner_id, enabled_only=True):
        raise NotConnected("No mailbox connected", owner_id=owner_id)

    task = sync_owner_mailboxes_task.delay(owner_id, supplier_email)
    logger.info(f"Mailbox sync queued: task_id={task.id}", extra={"owner_id": owner_id})
    return {"task_id": task.id, "status": "queued", "supplier_email": supplier_email}


def run_sync(owner_id: str, supplier_email: str = None) -> dict:
    """Sync an owner's mailboxes in-process and return the summary."""
    return mail_sync.sync_owner_mailboxes(
        owner_id,
        config=load_sync_config(),
        dispatch_analysis=dispatch_invoice_analysis,
        supplier_email=supplier_email,
    )


def start_discovery(owner_id: str, lookback_days: int = None) -> dict:
    task = discover_suppliers_task.delay(owner_id, lookback_days)
    return {"task_id": task.id, "status": "queued"}


def run_discovery(owner_id: str, lookback_days: int = None) -> dict:
    return mail_sync.discover_owner_suppliers(
        owner_id, lookback_days=lookback_days, config=load_sync_config()
    )


# ============================================================================
# SUPPLIERS
# ============================================================================


def get_suppliers(owner_id: str, status: str = None) -> list:
    return database.get_suppliers(owner_id, status=status)


def add_supplier(owner_id: str, email: str, label: str = None) -> dict:
    """
    Add a supplier by hand. Existing rows are left untouched.

    Raises:
        ValueError: If the address is not a valid email
    """
    address = extract_sender_address(email)
    if not address:
        raise ValueError(f"Invalid supplier email: {email}")

    supplier_id = database.add_supplier(owner_id, address, label)
    return {"id": supplier_id, "email": address, "created": supplier_id is not None}


def approve_supplier(owner_id: str, supplier_id: int):
    if not database.approve_supplier(owner_id, supplier_id):
        raise ValueError(f"Supplier {supplier_id} not found")


def remove_supplier(owner_id: str, supplier_id: int):
    if not database.delete_supplier(owner_id, supplier_id):
        raise ValueError(f"Supplier {supplier_id} not found")
