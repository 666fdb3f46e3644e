"""
Services Package - Business Logic Layer

This package contains service modules that encapsulate business logic,
separating it from HTTP routing concerns.

Services can be called from:
- Flask routes (HTTP requests)
- Background tasks (Celery)
- Tests

Available services:
- mail_service: Mailbox connection, sync, discovery and suppliers
- invoice_service: Invoice listing, uploads and extraction dispatch
- fulfillment_service: Fulfillment platform connection, sync and reconciliation data
"""

from . import fulfillment_service, invoice_service, mail_service

__all__ = [
    "mail_service",
    "invoice_service",
    "fulfillment_service",
]
