"""Routes package for API endpoints."""

from routes.fulfillment import fulfillment_bp
from routes.health import health_bp
from routes.invoices import invoices_bp
from routes.mail import mail_bp

__all__ = [
    "health_bp",
    "mail_bp",
    "invoices_bp",
    "fulfillment_bp",
]
