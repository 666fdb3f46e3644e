"""
Mailbox Integration - Database Operations

Handles connected mailbox rows (tokens, reauth flag, sync state) and the
processed-message markers that keep ingestion idempotent across overlapping
sync windows.
"""

from datetime import UTC, datetime

from .base import get_session, upsert
from .models.mail import ConnectedMailbox, ProcessedMessage

# ============================================================================
# CONNECTED MAILBOX FUNCTIONS
# ============================================================================


def _mailbox_to_dict(m):
    return {
        "id": m.id,
        "owner_id": m.owner_id,
        "provider": m.provider,
        "connected_address": m.connected_address,
        "encrypted_access_token": m.encrypted_access_token,
        "encrypted_refresh_token": m.encrypted_refresh_token,
        "token_expiry": as_utc(m.token_expiry),
        "sync_enabled": m.sync_enabled,
        "needs_reauth": m.needs_reauth,
        "last_sync_at": as_utc(m.last_sync_at),
        "last_error": m.last_error,
        "created_at": m.created_at,
    }


def as_utc(value):
    """Attach UTC to naive datetimes read back from the store."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def save_mailbox(
    owner_id,
    provider,
    connected_address,
    encrypted_access_token,
    encrypted_refresh_token,
    token_expiry,
):
    """Create or re-authorize a mailbox. Returns the mailbox id."""
    connected_address = connected_address.lower()

    with get_session() as session:
        stmt = (
            upsert(ConnectedMailbox)
            .values(
                owner_id=owner_id,
                provider=provider,
                connected_address=connected_address,
                encrypted_access_token=encrypted_access_token,
                encrypted_refresh_token=encrypted_refresh_token,
                token_expiry=token_expiry,
                sync_enabled=True,
                needs_reauth=False,
            )
            .on_conflict_do_update(
                index_elements=["owner_id", "connected_address"],
                set_={
                    "provider": provider,
                    "encrypted_access_token": encrypted_access_token,
                    "encrypted_refresh_token": encrypted_refresh_token,
                    "token_expiry": token_expiry,
                    "needs_reauth": False,
                    "last_error": None,
                    "updated_at": datetime.now(UTC),
                },
            )
            .returning(ConnectedMailbox.id)
        )
        mailbox_id = session.execute(stmt).scalar_one()
        session.commit()
        return mailbox_id


def get_mailbox(mailbox_id):
    """Get a mailbox by ID."""
    with get_session() as session:
        mailbox = session.get(ConnectedMailbox, mailbox_id)
        return _mailbox_to_dict(mailbox) if mailbox else None


def get_mailboxes(owner_id, enabled_only=False):
    """Get all mailboxes for an owner."""
    with get_session() as session:
        query = session.query(ConnectedMailbox).filter(
            ConnectedMailbox.owner_id == owner_id
        )
        if enabled_only:
            query = query.filter(ConnectedMailbox.sync_enabled.is_(True))

        return [_mailbox_to_dict(m) for m in query.order_by(ConnectedMailbox.id).all()]


def get_syncable_mailboxes():
    """Every enabled mailbox that does not need re-authorization."""
    with get_session() as session:
        mailboxes = (
            session.query(ConnectedMailbox)
            .filter(
                ConnectedMailbox.sync_enabled.is_(True),
                ConnectedMailbox.needs_reauth.is_(False),
            )
            .order_by(ConnectedMailbox.owner_id, ConnectedMailbox.id)
            .all()
        )
        return [_mailbox_to_dict(m) for m in mailboxes]


def update_mailbox_tokens(
    mailbox_id, encrypted_access_token, token_expiry, encrypted_refresh_token=None
):
    """Store refreshed tokens. The refresh token is kept unless a new one is given."""
    with get_session() as session:
        mailbox = session.get(ConnectedMailbox, mailbox_id)
        if not mailbox:
            return False

        mailbox.encrypted_access_token = encrypted_access_token
        mailbox.token_expiry = token_expiry
        if encrypted_refresh_token:
            mailbox.encrypted_refresh_token = encrypted_refresh_token
        session.commit()
        return True


def mark_mailbox_needs_reauth(mailbox_id, error_message=None):
    """Flag a mailbox whose tokens were rejected; halts further sync."""
    with get_session() as session:
        mailbox = session.get(ConnectedMailbox, mailbox_id)
        if not mailbox:
            return False

        mailbox.needs_reauth = True
        mailbox.last_error = error_message
        session.commit()
        return True


def update_mailbox_sync_state(mailbox_id, last_sync_at=None, last_error=None):
    """Record the outcome of a sync pass."""
    with get_session() as session:
        mailbox = session.get(ConnectedMailbox, mailbox_id)
        if not mailbox:
            return False

        if last_sync_at is not None:
            mailbox.last_sync_at = last_sync_at
        mailbox.last_error = last_error
        session.commit()
        return True


def set_mailbox_sync_enabled(mailbox_id, enabled):
    with get_session() as session:
        mailbox = session.get(ConnectedMailbox, mailbox_id)
        if not mailbox:
            return False
        mailbox.sync_enabled = bool(enabled)
        session.commit()
        return True


def delete_mailbox(owner_id, mailbox_id):
    """Disconnect a mailbox and drop its processed-message markers."""
    with get_session() as session:
        session.query(ProcessedMessage).filter(
            ProcessedMessage.mailbox_id == mailbox_id
        ).delete(synchronize_session=False)
        deleted = (
            session.query(ConnectedMailbox)
            .filter(
                ConnectedMailbox.id == mailbox_id,
                ConnectedMailbox.owner_id == owner_id,
            )
            .delete(synchronize_session=False)
        )
        session.commit()
        return deleted > 0


# ============================================================================
# PROCESSED MESSAGE FUNCTIONS
# ============================================================================


def is_message_processed(mailbox_id, message_id):
    with get_session() as session:
        return (
            session.query(ProcessedMessage.id)
            .filter(
                ProcessedMessage.mailbox_id == mailbox_id,
                ProcessedMessage.message_id == message_id,
            )
            .first()
            is not None
        )


def record_processed_message(
    mailbox_id,
    message_id,
    thread_id=None,
    subject=None,
    sender_email=None,
    attachment_count=0,
    invoice_ids=None,
):
    """Mark a message as ingested. Returns False if it was already marked."""
    with get_session() as session:
        stmt = (
            upsert(ProcessedMessage)
            .values(
                mailbox_id=mailbox_id,
                message_id=message_id,
                thread_id=thread_id,
                subject=subject,
                sender_email=sender_email,
                attachment_count=attachment_count,
                invoice_ids=list(invoice_ids or []),
            )
            .on_conflict_do_nothing(index_elements=["mailbox_id", "message_id"])
            .returning(ProcessedMessage.id)
        )
        inserted = session.execute(stmt).scalar_one_or_none()
        session.commit()
        return inserted is not None


def count_processed_messages(mailbox_id):
    with get_session() as session:
        return (
            session.query(ProcessedMessage)
            .filter(ProcessedMessage.mailbox_id == mailbox_id)
            .count()
        )
