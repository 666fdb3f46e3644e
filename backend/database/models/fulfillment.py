"""
Fulfillment platform models for credentials, inbound shipments and reimbursements.

Maps to:
- fulfillment_credentials table
- shipments table
- shipment_items table
- discrepancies table
- claims table
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from database.base import Base


class FulfillmentCredential(Base):
    """Seller authorization for the fulfillment platform (one per owner)."""

    __tablename__ = "fulfillment_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, unique=True)
    seller_id = Column(String(100), nullable=True)
    marketplace_id = Column(String(50), nullable=True)
    encrypted_refresh_token = Column(Text, nullable=False)
    encrypted_access_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_claim_sync_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'revoked')",
            name="fulfillment_credentials_status_check",
        ),
    )

    def __repr__(self) -> str:
        return f"<FulfillmentCredential(id={self.id}, owner_id={self.owner_id}, status={self.status})>"


class Shipment(Base):
    """Inbound shipment to a fulfillment center."""

    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    shipment_id = Column(String(50), nullable=False)
    shipment_type = Column(String(20), nullable=False, default="FBA")
    name = Column(String(255), nullable=True)
    destination_center = Column(String(50), nullable=True)
    status = Column(String(50), nullable=True)
    created_date = Column(DateTime(timezone=True), nullable=True)
    last_updated_date = Column(DateTime(timezone=True), nullable=True)
    sync_status = Column(String(20), nullable=True)
    sync_error = Column(Text, nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "owner_id",
            "shipment_id",
            "shipment_type",
            name="shipments_owner_shipment_type_key",
        ),
    )

    def __repr__(self) -> str:
        return f"<Shipment(id={self.id}, shipment_id={self.shipment_id}, status={self.status})>"


class ShipmentItem(Base):
    """Per-SKU quantities for a shipment. Overwritten on each sync."""

    __tablename__ = "shipment_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shipment_id = Column(
        Integer, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    sku = Column(String(100), nullable=False)
    fnsku = Column(String(100), nullable=True)
    product_name = Column(Text, nullable=True)
    quantity_shipped = Column(Integer, nullable=False, default=0)
    quantity_received = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("shipment_id", "sku", name="shipment_items_shipment_sku_key"),
    )

    def __repr__(self) -> str:
        return f"<ShipmentItem(shipment_id={self.shipment_id}, sku={self.sku}, shipped={self.quantity_shipped}, received={self.quantity_received})>"


class Discrepancy(Base):
    """Shipped vs received mismatch for one SKU in one shipment."""

    __tablename__ = "discrepancies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    shipment_id = Column(
        Integer, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    sku = Column(String(100), nullable=False)
    product_name = Column(Text, nullable=True)
    expected_quantity = Column(Integer, nullable=False)
    actual_quantity = Column(Integer, nullable=False)
    difference = Column(Integer, nullable=False)
    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="open")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("shipment_id", "sku", name="discrepancies_shipment_sku_key"),
        CheckConstraint(
            "type IN ('shortage', 'overage')", name="discrepancies_type_check"
        ),
        CheckConstraint(
            "status IN ('open', 'resolved')", name="discrepancies_status_check"
        ),
        Index("idx_discrepancies_owner_status", "owner_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Discrepancy(shipment_id={self.shipment_id}, sku={self.sku}, type={self.type}, difference={self.difference})>"


class Claim(Base):
    """Reimbursement record from the fulfillment platform report."""

    __tablename__ = "claims"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    claim_id = Column(String(100), nullable=False, unique=True)
    reimbursement_id = Column(String(100), nullable=True)
    case_id = Column(String(100), nullable=True)
    asin = Column(String(20), nullable=True)
    sku = Column(String(100), nullable=True)
    item_name = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    quantity_reimbursed = Column(Integer, nullable=True)
    status = Column(String(50), nullable=True)
    claim_date = Column(Date, nullable=True)
    shipment_type = Column(String(20), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_claims_owner", "owner_id"),)

    def __repr__(self) -> str:
        return f"<Claim(claim_id={self.claim_id}, amount={self.amount})>"
