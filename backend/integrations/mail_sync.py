"""
Mail Sync Orchestrator

Drives discovery then ingestion for connected mailboxes. The first sync of a
mailbox scans the initial lookback window; later syncs scan the shorter
refresh window. Mailboxes of the same owner sync concurrently and each
failure stays with its own mailbox.
"""

import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

import database
from config.sync_config import SyncConfig

from .errors import AuthExpired, NotConnected, SyncError
from .invoice_ingestion import ingest_mailbox
from .logging_config import get_logger
from .mail_auth import authorize_provider
from .mail_provider import get_mail_provider
from .supplier_discovery import discover_suppliers

logger = get_logger(__name__)

SYNC_INITIAL = "initial"
SYNC_REFRESH = "refresh"


def choose_lookback(mailbox: dict, config: SyncConfig) -> tuple[str, int]:
    """(sync_type, lookback_days) for a mailbox."""
    if mailbox.get("last_sync_at") is None:
        return SYNC_INITIAL, config.initial_lookback_days
    return SYNC_REFRESH, config.refresh_lookback_days


def _build_provider(mailbox: dict, provider_factory, config: SyncConfig):
    return provider_factory(mailbox["provider"], config=config)


def sync_mailbox(
    mailbox: dict,
    config: SyncConfig | None = None,
    provider_factory=get_mail_provider,
    dispatch_analysis=None,
    discover: bool = True,
    supplier_email: str | None = None,
) -> dict:
    """
    Run one mailbox through discovery and ingestion.

    Never raises for mailbox-level failures: AuthExpired flags the mailbox
    needs_reauth, other sync errors are recorded as last_error, and both are
    reported in the returned summary.

    Returns:
        Summary dict with status, sync_type, discovery and ingestion results
    """
    config = config or SyncConfig()
    sync_type, lookback_days = choose_lookback(mailbox, config)
    summary = {
        "mailbox_id": mailbox["id"],
        "provider": mailbox["provider"],
        "connected_address": mailbox["connected_address"],
        "sync_type": sync_type,
        "status": "completed",
        "discovery": None,
        "ingestion": None,
        "error": None,
    }
    log_context = {
        "owner_id": mailbox["owner_id"],
        "mailbox_id": mailbox["id"],
        "sync_run": uuid.uuid4().hex[:12],
    }

    if mailbox.get("needs_reauth"):
        summary["status"] = "needs_reauth"
        summary["error"] = "Mailbox requires re-authorization"
        return summary

    logger.info(f"Starting {sync_type} sync ({lookback_days} days)", extra=log_context)
    started_at = datetime.now(UTC)

    try:
        provider = _build_provider(mailbox, provider_factory, config)
        authorize_provider(mailbox, provider)

        if discover and not supplier_email:
            summary["discovery"] = discover_suppliers(
                mailbox, provider, lookback_days, config
            ).to_dict()

        summary["ingestion"] = ingest_mailbox(
            mailbox,
            provider,
            lookback_days,
            config,
            supplier_email=supplier_email,
            dispatch_analysis=dispatch_analysis,
        ).to_dict()
    except AuthExpired as e:
        # authorize_provider flags refresh failures; a token rejected mid-run lands here
        database.mark_mailbox_needs_reauth(mailbox["id"], str(e))
        logger.warning(f"Sync stopped, re-authorization required: {e}", extra=log_context)
        summary["status"] = "needs_reauth"
        summary["error"] = str(e)
        return summary
    except SyncError as e:
        logger.error(f"Sync failed: {e}", extra=log_context)
        database.update_mailbox_sync_state(mailbox["id"], last_error=str(e))
        summary["status"] = "error"
        summary["error"] = str(e)
        return summary

    database.update_mailbox_sync_state(mailbox["id"], last_sync_at=started_at)
    logger.info("Sync completed", extra=log_context)
    return summary


def _sync_many(mailboxes: list, config: SyncConfig, **kwargs) -> list:
    """Sync mailboxes concurrently; one unexpected crash never hides the others."""
    if not mailboxes:
        return []

    workers = max(1, min(config.mailbox_workers, len(mailboxes)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            (mailbox, executor.submit(sync_mailbox, mailbox, config, **kwargs))
            for mailbox in mailboxes
        ]

    results = []
    for mailbox, future in futures:
        try:
            results.append(future.result())
        except Exception as e:
            logger.exception(
                f"Unexpected failure syncing mailbox: {e}",
                extra={"owner_id": mailbox["owner_id"], "mailbox_id": mailbox["id"]},
            )
            results.append(
                {
                    "mailbox_id": mailbox["id"],
                    "provider": mailbox["provider"],
                    "connected_address": mailbox["connected_address"],
                    "status": "error",
                    "error": str(e),
                }
            )
    return results


def summarize(results: list) -> dict:
    return {
        "mailboxes": results,
        "synced": sum(1 for r in results if r["status"] == "completed"),
        "needs_reauth": sum(1 for r in results if r["status"] == "needs_reauth"),
        "failed": sum(1 for r in results if r["status"] == "error"),
        "invoices_created": sum(
            (r.get("ingestion") or {}).get("invoices_created", 0) for r in results
        ),
        "suppliers_added": sum(
            (r.get("discovery") or {}).get("suppliers_added", 0) for r in results
        ),
    }


def sync_owner_mailboxes(
    owner_id: str,
    config: SyncConfig | None = None,
    provider_factory=get_mail_provider,
    dispatch_analysis=None,
    supplier_email: str | None = None,
) -> dict:
    """
    Sync every enabled mailbox of an owner.

    Raises:
        NotConnected: Owner has no enabled mailbox
    """
    config = config or SyncConfig()
    mailboxes = database.get_mailboxes(owner_id, enabled_only=True)
    if not mailboxes:
        raise NotConnected("No mailbox connected", owner_id=owner_id)

    results = _sync_many(
        mailboxes,
        config,
        provider_factory=provider_factory,
        dispatch_analysis=dispatch_analysis,
        supplier_email=supplier_email,
    )
    return summarize(results)


def sync_all_mailboxes(
    config: SyncConfig | None = None,
    provider_factory=get_mail_provider,
    dispatch_analysis=None,
) -> dict:
    """Scheduled entry point: every enabled mailbox not awaiting re-authorization."""
    config = config or SyncConfig()
    mailboxes = database.get_syncable_mailboxes()
    logger.info(f"Scheduled sync over {len(mailboxes)} mailboxes")
    results = _sync_many(
        mailboxes,
        config,
        provider_factory=provider_factory,
        dispatch_analysis=dispatch_analysis,
    )
    return summarize(results)


def discover_owner_suppliers(
    owner_id: str,
    lookback_days: int | None = None,
    config: SyncConfig | None = None,
    provider_factory=get_mail_provider,
) -> dict:
    """
    Discovery only, across an owner's mailboxes.

    Raises:
        NotConnected: Owner has no enabled mailbox
    """
    config = config or SyncConfig()
    mailboxes = database.get_mailboxes(owner_id, enabled_only=True)
    if not mailboxes:
        raise NotConnected("No mailbox connected", owner_id=owner_id)

    results = []
    for mailbox in mailboxes:
        entry = {"mailbox_id": mailbox["id"], "status": "completed", "error": None}
        if mailbox.get("needs_reauth"):
            entry.update(status="needs_reauth", error="Mailbox requires re-authorization")
            results.append(entry)
            continue

        days = lookback_days or choose_lookback(mailbox, config)[1]
        try:
            provider = _build_provider(mailbox, provider_factory, config)
            authorize_provider(mailbox, provider)
            entry.update(discover_suppliers(mailbox, provider, days, config).to_dict())
        except AuthExpired as e:
            database.mark_mailbox_needs_reauth(mailbox["id"], str(e))
            entry.update(status="needs_reauth", error=str(e))
        except SyncError as e:
            logger.error(
                f"Discovery failed: {e}",
                extra={"owner_id": owner_id, "mailbox_id": mailbox["id"]},
            )
            entry.update(status="error", error=str(e))
        results.append(entry)

    return {
        "mailboxes": results,
        "suppliers_added": sum(r.get("suppliers_added", 0) for r in results),
    }
