# backend/database/models/__init__.py
"""SQLAlchemy models for all database tables."""

from .fulfillment import (
    Claim,
    Discrepancy,
    FulfillmentCredential,
    Shipment,
    ShipmentItem,
)
from .invoice import Invoice
from .mail import AllowedSupplier, ConnectedMailbox, ProcessedMessage

__all__ = [
    "ConnectedMailbox",
    "AllowedSupplier",
    "ProcessedMessage",
    "Invoice",
    "FulfillmentCredential",
    "Shipment",
    "ShipmentItem",
    "Discrepancy",
    "Claim",
]
