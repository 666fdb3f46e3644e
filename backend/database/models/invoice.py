"""
Invoice model.

Maps to:
- invoices table
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from database.base import Base, JSONType


class Invoice(Base):
    """Supplier invoice stored in the document store."""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    file_name = Column(String(255), nullable=False)
    original_file_name = Column(String(255), nullable=True)
    storage_path = Column(String(512), nullable=False)
    mime_type = Column(String(100), nullable=True)
    size = Column(Integer, nullable=True)
    source_email = Column(String(255), nullable=True)
    source_mailbox_id = Column(Integer, nullable=True)
    source_message_id = Column(String(255), nullable=True)
    analysis_status = Column(String(20), nullable=False, default="pending")
    analysis_error = Column(Text, nullable=True)
    invoice_number = Column(String(100), nullable=True)
    invoice_date = Column(Date, nullable=True)
    vendor = Column(String(255), nullable=True)
    line_items = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "file_name", name="invoices_owner_file_name_key"),
        CheckConstraint(
            "analysis_status IN ('pending', 'completed', 'needs_review')",
            name="invoices_analysis_status_check",
        ),
        Index("idx_invoices_owner_date_vendor", "owner_id", "invoice_date", "vendor"),
        Index("idx_invoices_status", "analysis_status"),
        Index("idx_invoices_source_message", "owner_id", "source_message_id"),
    )

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, file_name={self.file_name}, status={self.analysis_status})>"
