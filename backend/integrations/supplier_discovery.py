"""
Supplier Discovery

Scans a mailbox for senders that look like suppliers: messages with a PDF
attachment whose subject, preview or attachment name carries an invoice
keyword. Each admitted sender becomes a ``suggested`` Allowed Supplier;
existing rows are never touched. Discovery only reads mail.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import database
from config.sync_config import SyncConfig

from .errors import AuthExpired, SyncError, error_entry
from .logging_config import get_logger
from .mail_provider import MailProvider, MessageDetail

logger = get_logger(__name__)

SUBJECT_KEYWORDS = re.compile(r"\b(invoice|receipt|bill)s?\b", re.IGNORECASE)
BODY_PHRASES = re.compile(r"\b(amount|balance)\s+due\b", re.IGNORECASE)
FILENAME_KEYWORDS = ("invoice", "inv", "receipt", "bill")
FILENAME_EXCLUSIONS = ("invite", "invitation", ".ics")


@dataclass
class DiscoveryResult:
    mailbox_id: int
    messages_scanned: int = 0
    candidates: list = field(default_factory=list)
    suppliers_added: int = 0
    errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mailbox_id": self.mailbox_id,
            "messages_scanned": self.messages_scanned,
            "candidates": self.candidates,
            "suppliers_added": self.suppliers_added,
            "errors": self.errors,
        }


def filename_looks_like_invoice(file_name: str) -> bool:
    name = (file_name or "").lower()
    if any(excluded in name for excluded in FILENAME_EXCLUSIONS):
        return False
    return any(keyword in name for keyword in FILENAME_KEYWORDS)


def matches_invoice_heuristic(detail: MessageDetail) -> bool:
    """Subject, preview or attachment name carries an invoice keyword."""
    if SUBJECT_KEYWORDS.search(detail.subject or ""):
        return True
    if BODY_PHRASES.search(detail.snippet or ""):
        return True
    return any(filename_looks_like_invoice(a.file_name) for a in detail.attachments)


def is_excluded_sender(sender: str | None, own_address: str, platform_senders) -> bool:
    """Own address and platform notification senders are never suppliers."""
    if not sender:
        return True
    if sender == (own_address or "").lower():
        return True
    return any(fragment in sender for fragment in platform_senders)


def discover_suppliers(
    mailbox: dict,
    provider: MailProvider,
    lookback_days: int,
    config: SyncConfig | None = None,
) -> DiscoveryResult:
    """
    Find supplier senders in a mailbox and store them as suggestions.

    Args:
        mailbox: Connected mailbox dict
        provider: Authorized adapter for the mailbox
        lookback_days: Search window
        config: Sync settings (page cap, exclusions)

    Returns:
        DiscoveryResult

    Raises:
        AuthExpired: Token rejected mid-scan
    """
    config = config or SyncConfig()
    result = DiscoveryResult(mailbox_id=mailbox["id"])
    own_address = mailbox["connected_address"]
    since = datetime.now(UTC) - timedelta(days=lookback_days)
    log_context = {"owner_id": mailbox["owner_id"], "mailbox_id": mailbox["id"]}

    query = provider.build_discovery_query(
        since, exclude_addresses=[own_address, *config.platform_senders]
    )
    admitted = []

    for stub in provider.iter_messages(query, max_pages=config.discovery_max_pages):
        result.messages_scanned += 1

        # Skip the detail call when the sender is already known from the stub
        if stub.sender_email and (
            stub.sender_email in admitted
            or is_excluded_sender(stub.sender_email, own_address, config.platform_senders)
        ):
            continue

        try:
            detail = provider.get_message_detail(stub.id)
        except AuthExpired:
            raise
        except SyncError as e:
            logger.warning(f"Discovery skipped message {stub.id}: {e}", extra=log_context)
            result.errors.append(error_entry(stub.id, e))
            continue

        sender = detail.sender_email
        if sender in admitted or is_excluded_sender(
            sender, own_address, config.platform_senders
        ):
            continue
        if not provider.server_side_keywords and not matches_invoice_heuristic(detail):
            continue
        if not detail.pdf_attachments:
            continue

        admitted.append(sender)

    result.candidates = admitted
    for sender in admitted:
        supplier_id = database.insert_suggested_supplier(
            owner_id=mailbox["owner_id"],
            email=sender,
            label=sender.split("@", 1)[-1],
            source_mailbox_id=mailbox["id"],
            source_provider=mailbox["provider"],
        )
        if supplier_id is not None:
            result.suppliers_added += 1

    logger.info(
        f"Discovery scanned {result.messages_scanned} messages, "
        f"{len(admitted)} candidates, {result.suppliers_added} new suppliers",
        extra=log_context,
    )
    return result
