"""
Invoice Ingestion

Pulls PDF attachments from allowed suppliers' messages and registers each as
a ``pending`` invoice:

1. Content validation (page-1 text; fail open when there is none)
2. File name de-duplication per owner (invoice.pdf, invoice_1.pdf, ...)
3. Upload to the document store and insert the invoice row
4. Hand off to extraction (failures are logged, never fatal)
5. Mark the message processed for the mailbox

A message with a failed attachment stays unmarked; the next run downloads
only the attachments it has not stored yet.
"""

import os
import re
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import database
from config.sync_config import SyncConfig

from . import document_store
from .errors import AuthExpired, StorageError, SyncError, ValidationRejected, error_entry
from .logging_config import get_logger
from .mail_provider import MailProvider
from .pdf_text import FIRST_PAGE_CONFIG, PdfParserConfig, validate_invoice_content

logger = get_logger(__name__)

MAX_NAME_ATTEMPTS = 5


@dataclass
class IngestionResult:
    mailbox_id: int
    messages_scanned: int = 0
    messages_skipped: int = 0
    attachments_seen: int = 0
    invoices_created: int = 0
    rejected: int = 0
    invoice_ids: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "mailbox_id": self.mailbox_id,
            "messages_scanned": self.messages_scanned,
            "messages_skipped": self.messages_skipped,
            "attachments_seen": self.attachments_seen,
            "invoices_created": self.invoices_created,
            "rejected": self.rejected,
            "invoice_ids": self.invoice_ids,
            "errors": self.errors,
        }


def split_file_name(file_name: str) -> tuple[str, str]:
    safe = (file_name or "document").replace("/", "_").replace("\\", "_")
    stem, extension = os.path.splitext(safe)
    return stem or "document", extension


def dedupe_file_name(file_name: str, taken) -> str:
    """
    First free name in the sequence name, name_1, name_2, ...

    The next suffix is one past the highest suffix already taken, so names
    only ever grow.
    """
    stem, extension = split_file_name(file_name)
    base = f"{stem}{extension}"
    if base not in taken:
        return base

    pattern = re.compile(rf"^{re.escape(stem)}_(\d+){re.escape(extension)}$")
    highest = 0
    for name in taken:
        match = pattern.match(name)
        if match:
            highest = max(highest, int(match.group(1)))

    return f"{stem}_{highest + 1}{extension}"


def next_file_name(owner_id: str, file_name: str, extra_taken=()) -> str:
    stem, extension = split_file_name(file_name)
    taken = set(database.get_file_names_like(owner_id, stem, extension))
    taken.update(extra_taken)
    return dedupe_file_name(file_name, taken)


def store_invoice(
    owner_id: str,
    file_name: str,
    data: bytes,
    mime_type: str,
    source_email: str | None = None,
    source_mailbox_id: int | None = None,
    source_message_id: str | None = None,
) -> int:
    """
    Upload a document under a unique name and insert its pending invoice row.

    Concurrent ingestions racing for the same name lose at either the
    no-overwrite upload or the (owner, file_name) constraint and retry with
    the next suffix.

    Returns:
        New invoice id

    Raises:
        StorageError: If no free name could be claimed
    """
    original_file_name = "".join(split_file_name(file_name))
    lost = set()
    for _ in range(MAX_NAME_ATTEMPTS):
        candidate = next_file_name(owner_id, file_name, lost)
        storage_path = document_store.put_document(owner_id, candidate, data, mime_type)
        if storage_path is None:
            lost.add(candidate)
            continue

        invoice_id = database.create_invoice(
            owner_id=owner_id,
            file_name=candidate,
            original_file_name=original_file_name,
            storage_path=storage_path,
            mime_type=mime_type,
            size=len(data),
            source_email=source_email,
            source_mailbox_id=source_mailbox_id,
            source_message_id=source_message_id,
        )
        if invoice_id is None:
            document_store.delete_document(storage_path)
            lost.add(candidate)
            continue

        return invoice_id

    raise StorageError(f"Could not claim a unique name for {file_name}")


def ingest_document(
    owner_id: str,
    file_name: str,
    data: bytes,
    mime_type: str = "application/pdf",
    source_email: str | None = None,
    source_mailbox_id: int | None = None,
    source_message_id: str | None = None,
    parser_config: PdfParserConfig = FIRST_PAGE_CONFIG,
    dispatch_analysis=None,
) -> int:
    """
    Validate, store and register one document.

    Raises:
        ValidationRejected: Document is not an acceptable invoice
    """
    if mime_type == "application/pdf":
        is_valid, reason = validate_invoice_content(data, parser_config)
        if not is_valid:
            raise ValidationRejected(f"{file_name}: {reason}")

    invoice_id = store_invoice(
        owner_id,
        file_name,
        data,
        mime_type,
        source_email,
        source_mailbox_id,
        source_message_id,
    )
    logger.info(
        f"Stored invoice {invoice_id} from {source_email or 'upload'}",
        extra={"owner_id": owner_id, "mailbox_id": source_mailbox_id},
    )

    if dispatch_analysis is not None:
        try:
            dispatch_analysis(invoice_id)
        except Exception as e:
            # Pending invoices are picked up again by retry_pending_invoices
            logger.error(
                f"Failed to hand off invoice {invoice_id} for analysis: {e}",
                extra={"owner_id": owner_id},
            )

    return invoice_id


def _download_all(provider: MailProvider, message_id: str, attachments, workers: int):
    """Download attachments with bounded concurrency. Returns (attachment, bytes|exc)."""

    def fetch(attachment):
        try:
            return attachment, provider.download_attachment(
                message_id, attachment.attachment_id
            )
        except SyncError as e:
            return attachment, e

    if len(attachments) <= 1:
        return [fetch(a) for a in attachments]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(fetch, attachments))


def _unstored_attachments(owner_id: str, message_id: str, attachments):
    """
    Attachments of a message not yet stored by an earlier, partial run.

    Matching is by original file name, counting repeats, so a message with two
    ``invoice.pdf`` attachments keeps the second when only the first was stored.

    Returns:
        (remaining attachments, ids of invoices already stored from the message)
    """
    stored = database.get_message_invoices(owner_id, message_id)
    if not stored:
        return list(attachments), []

    counts = Counter(inv["original_file_name"] for inv in stored)
    remaining = []
    for attachment in attachments:
        name = "".join(split_file_name(attachment.file_name))
        if counts[name]:
            counts[name] -= 1
            continue
        remaining.append(attachment)

    return remaining, [inv["id"] for inv in stored]


def ingest_mailbox(
    mailbox: dict,
    provider: MailProvider,
    lookback_days: int,
    config: SyncConfig | None = None,
    supplier_email: str | None = None,
    dispatch_analysis=None,
) -> IngestionResult:
    """
    Ingest invoice attachments from every allowed supplier of a mailbox.

    Args:
        mailbox: Connected mailbox dict
        provider: Authorized adapter for the mailbox
        lookback_days: Search window
        config: Sync settings
        supplier_email: Restrict ingestion to one sender
        dispatch_analysis: Callable taking an invoice id

    Returns:
        IngestionResult

    Raises:
        AuthExpired: Token rejected mid-run
    """
    config = config or SyncConfig()
    result = IngestionResult(mailbox_id=mailbox["id"])
    owner_id = mailbox["owner_id"]
    log_context = {"owner_id": owner_id, "mailbox_id": mailbox["id"]}
    since = datetime.now(UTC) - timedelta(days=lookback_days)

    if supplier_email:
        senders = [supplier_email.lower()]
    else:
        senders = database.get_supplier_emails_for_mailbox(owner_id, mailbox["id"])

    for sender in senders:
        query = provider.build_supplier_query(sender, since)

        for stub in provider.iter_messages(query):
            result.messages_scanned += 1
            if database.is_message_processed(mailbox["id"], stub.id):
                result.messages_skipped += 1
                continue

            try:
                detail = provider.get_message_detail(stub.id)
            except AuthExpired:
                raise
            except SyncError as e:
                result.errors.append(error_entry(stub.id, e))
                continue

            pdfs = detail.pdf_attachments
            result.attachments_seen += len(pdfs)
            pending, stored_ids = _unstored_attachments(owner_id, detail.id, pdfs)
            downloads = _download_all(
                provider, detail.id, pending, config.attachment_batch_size
            )

            invoice_ids = []
            failed = False
            for attachment, payload in downloads:
                item = f"{detail.id}/{attachment.file_name}"
                if isinstance(payload, AuthExpired):
                    raise payload
                if isinstance(payload, SyncError):
                    result.errors.append(error_entry(item, payload))
                    failed = True
                    continue

                try:
                    invoice_id = ingest_document(
                        owner_id,
                        attachment.file_name,
                        payload,
                        mime_type="application/pdf",
                        source_email=detail.sender_email,
                        source_mailbox_id=mailbox["id"],
                        source_message_id=detail.id,
                        dispatch_analysis=dispatch_analysis,
                    )
                except ValidationRejected as e:
                    logger.info(f"Rejected {item}: {e}", extra=log_context)
                    result.rejected += 1
                    continue
                except SyncError as e:
                    logger.error(f"Failed to store {item}: {e}", extra=log_context)
                    result.errors.append(error_entry(item, e))
                    failed = True
                    continue

                invoice_ids.append(invoice_id)

            result.invoice_ids.extend(invoice_ids)
            result.invoices_created += len(invoice_ids)

            # Leave the message unmarked so the next sync retries failed attachments;
            # attachments stored on this run are skipped then
            if not failed:
                database.record_processed_message(
                    mailbox_id=mailbox["id"],
                    message_id=detail.id,
                    thread_id=detail.thread_id,
                    subject=detail.subject,
                    sender_email=detail.sender_email,
                    attachment_count=len(pdfs),
                    invoice_ids=stored_ids + invoice_ids,
                )

    logger.info(
        f"Ingestion scanned {result.messages_scanned} messages, "
        f"created {result.invoices_created} invoices, rejected {result.rejected}",
        extra=log_context,
    )
    return result
