"""
Mail integration models for connected mailboxes, suppliers and ingestion markers.

Maps to:
- connected_mailboxes table
- allowed_suppliers table
- processed_messages table
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from database.base import Base, JSONType


class ConnectedMailbox(Base):
    """OAuth-connected Gmail or Outlook account."""

    __tablename__ = "connected_mailboxes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    connected_address = Column(String(255), nullable=False)
    encrypted_access_token = Column(Text, nullable=True)
    encrypted_refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    sync_enabled = Column(Boolean, nullable=False, default=True)
    needs_reauth = Column(Boolean, nullable=False, default=False)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "owner_id", "connected_address", name="connected_mailboxes_owner_address_key"
        ),
        CheckConstraint(
            "provider IN ('gmail', 'outlook')",
            name="connected_mailboxes_provider_check",
        ),
    )

    def __repr__(self) -> str:
        return f"<ConnectedMailbox(id={self.id}, provider={self.provider}, address={self.connected_address})>"


class AllowedSupplier(Base):
    """Sender whose invoice attachments are ingested."""

    __tablename__ = "allowed_suppliers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    email = Column(String(255), nullable=False)
    label = Column(String(255), nullable=True)
    source_mailbox_id = Column(
        Integer,
        ForeignKey("connected_mailboxes.id", ondelete="SET NULL"),
        nullable=True,
    )
    source_provider = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default="suggested")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("owner_id", "email", name="allowed_suppliers_owner_email_key"),
        CheckConstraint(
            "status IN ('suggested', 'active')", name="allowed_suppliers_status_check"
        ),
    )

    def __repr__(self) -> str:
        return f"<AllowedSupplier(id={self.id}, email={self.email}, status={self.status})>"


class ProcessedMessage(Base):
    """Idempotency marker: a message already ingested for a mailbox."""

    __tablename__ = "processed_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    mailbox_id = Column(
        Integer,
        ForeignKey("connected_mailboxes.id", ondelete="CASCADE"),
        nullable=False,
    )
    message_id = Column(String(255), nullable=False)
    thread_id = Column(String(255), nullable=True)
    subject = Column(Text, nullable=True)
    sender_email = Column(String(255), nullable=True)
    attachment_count = Column(Integer, nullable=False, default=0)
    invoice_ids = Column(JSONType, nullable=True)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "mailbox_id", "message_id", name="processed_messages_mailbox_message_key"
        ),
        Index("idx_processed_messages_mailbox", "mailbox_id"),
    )

    def __repr__(self) -> str:
        return f"<ProcessedMessage(mailbox_id={self.mailbox_id}, message_id={self.message_id})>"
