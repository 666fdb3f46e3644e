"""
Sync Configuration Management
Lookback windows, batch widths, polling bounds and retry policy for the
mail and fulfillment sync paths.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path, override=False)

DEFAULT_PLATFORM_SENDERS = (
    "amazon.com",
    "stripe.com",
    "supabase.com",
)


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    return int(value) if value else default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    return float(value) if value else default


@dataclass(frozen=True)
class SyncConfig:
    """Sync tuning knobs"""

    # Mail path
    initial_lookback_days: int = 365
    refresh_lookback_days: int = 30
    discovery_max_pages: int = 3
    page_size: int = 100
    attachment_batch_size: int = 3
    mailbox_workers: int = 4
    platform_senders: tuple = field(default=DEFAULT_PLATFORM_SENDERS)

    # Fulfillment path
    fulfillment_lookback_days: int = 90
    watermark_overlap_days: int = 1
    shipment_batch_size: int = 5
    report_poll_interval: float = 3.0
    report_max_attempts: int = 20
    default_marketplace_id: str = "ATVPDKIKX0DER"
    lookup_product_names: bool = True

    # HTTP retry policy shared by every adapter
    max_retries: int = 3
    backoff_multiplier: int = 2

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Validate sync configuration"""
        if self.initial_lookback_days < self.refresh_lookback_days:
            raise ValueError(
                "SYNC_INITIAL_LOOKBACK_DAYS must be >= SYNC_REFRESH_LOOKBACK_DAYS"
            )
        for name in (
            "discovery_max_pages",
            "page_size",
            "attachment_batch_size",
            "mailbox_workers",
            "shipment_batch_size",
            "report_max_attempts",
            "max_retries",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than 0")
        if self.report_poll_interval < 0:
            raise ValueError("report_poll_interval must be non-negative")


def load_sync_config() -> SyncConfig:
    """
    Load sync configuration from environment variables.

    Environment Variables:
    - SYNC_INITIAL_LOOKBACK_DAYS: first-ever mailbox scan window (default: 365)
    - SYNC_REFRESH_LOOKBACK_DAYS: subsequent scan window (default: 30)
    - SYNC_DISCOVERY_MAX_PAGES: page cap for supplier discovery (default: 3)
    - SYNC_PAGE_SIZE: messages per search page (default: 100)
    - SYNC_ATTACHMENT_BATCH_SIZE: concurrent attachment downloads (default: 3)
    - SYNC_MAILBOX_WORKERS: concurrent mailboxes per owner (default: 4)
    - SYNC_PLATFORM_SENDERS: comma-separated sender fragments never treated as suppliers
    - FULFILLMENT_LOOKBACK_DAYS: default report/listing window (default: 90)
    - FULFILLMENT_SHIPMENT_BATCH_SIZE: concurrent shipment detail fetches (default: 5)
    - FULFILLMENT_REPORT_POLL_INTERVAL: seconds between status polls (default: 3)
    - FULFILLMENT_REPORT_MAX_ATTEMPTS: polls before Timeout (default: 20)
    - FULFILLMENT_DEFAULT_MARKETPLACE_ID: used when a credential has none
    - FULFILLMENT_LOOKUP_PRODUCT_NAMES: enrich items via catalog (default: true)
    - SYNC_MAX_RETRIES: HTTP retries on 429/5xx (default: 3)

    Returns:
        SyncConfig object
    """
    senders_env = os.getenv("SYNC_PLATFORM_SENDERS", "").strip()
    platform_senders = (
        tuple(s.strip().lower() for s in senders_env.split(",") if s.strip())
        if senders_env
        else DEFAULT_PLATFORM_SENDERS
    )

    return SyncConfig(
        initial_lookback_days=_int_env("SYNC_INITIAL_LOOKBACK_DAYS", 365),
        refresh_lookback_days=_int_env("SYNC_REFRESH_LOOKBACK_DAYS", 30),
        discovery_max_pages=_int_env("SYNC_DISCOVERY_MAX_PAGES", 3),
        page_size=_int_env("SYNC_PAGE_SIZE", 100),
        attachment_batch_size=_int_env("SYNC_ATTACHMENT_BATCH_SIZE", 3),
        mailbox_workers=_int_env("SYNC_MAILBOX_WORKERS", 4),
        platform_senders=platform_senders,
        fulfillment_lookback_days=_int_env("FULFILLMENT_LOOKBACK_DAYS", 90),
        shipment_batch_size=_int_env("FULFILLMENT_SHIPMENT_BATCH_SIZE", 5),
        report_poll_interval=_float_env("FULFILLMENT_REPORT_POLL_INTERVAL", 3.0),
        report_max_attempts=_int_env("FULFILLMENT_REPORT_MAX_ATTEMPTS", 20),
        default_marketplace_id=os.getenv(
            "FULFILLMENT_DEFAULT_MARKETPLACE_ID", "ATVPDKIKX0DER"
        ),
        lookup_product_names=os.getenv(
            "FULFILLMENT_LOOKUP_PRODUCT_NAMES", "true"
        ).lower()
        == "true",
        max_retries=_int_env("SYNC_MAX_RETRIES", 3),
    )
