"""Centralized logging configuration for mail and fulfillment sync.

This module provides structured logging with context fields for sync operations.
Logs are written to both console (for Docker logs) and rotating files.

Usage:
    from integrations.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Starting sync", extra={'owner_id': owner_id, 'mailbox_id': mailbox_id})
"""

import logging
import os
from logging.handlers import RotatingFileHandler

# Log directory from environment or default
LOG_DIR = os.getenv("LOG_DIR", "/app/logs")

CONTEXT_FIELDS = ("owner_id", "mailbox_id", "sync_run", "report_id")


class StructuredFormatter(logging.Formatter):
    """Custom formatter that adds context fields to log records.

    Supports the following context fields via extra={} parameter:
    - owner_id: Seller account owning the data
    - mailbox_id: Connected mailbox ID
    - sync_run: Short id shared by every line of one sync invocation
    - report_id: Fulfillment platform report ID
    """

    def format(self, record):
        """Format log record with context fields."""
        for field_name in CONTEXT_FIELDS:
            setattr(record, field_name, getattr(record, field_name, None))

        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """Get configured logger for sync operations.

    Creates a logger with:
    - Console handler for Docker logs (INFO level)
    - Rotating file handler for all logs (DEBUG level)
    - Separate error file handler (ERROR level)

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logging.Logger instance
    """
    logger = logging.getLogger(name)

    # Skip if already configured (prevents duplicate handlers)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    os.makedirs(LOG_DIR, exist_ok=True)

    file_format = (
        "[%(asctime)s] [%(levelname)s] [%(name)s] "
        "[owner:%(owner_id)s mailbox:%(mailbox_id)s run:%(sync_run)s "
        "report:%(report_id)s] %(message)s"
    )

    # ========================================
    # Console Handler (for Docker logs)
    # ========================================
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(
        StructuredFormatter("[%(levelname)s] [owner:%(owner_id)s] %(message)s")
    )
    logger.addHandler(console)

    # ========================================
    # File Handler (rotating, all levels)
    # ========================================
    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, "sync.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(StructuredFormatter(file_format))
    logger.addHandler(file_handler)

    # ========================================
    # Error File Handler (errors only)
    # ========================================
    error_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, "sync_errors.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=30,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(StructuredFormatter(file_format))
    logger.addHandler(error_handler)

    return logger
