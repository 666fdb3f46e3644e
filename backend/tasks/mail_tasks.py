"""Celery tasks for mailbox sync and supplier discovery."""

from datetime import datetime

from celery_app import celery_app
from config.sync_config import load_sync_config
from integrations import mail_sync
from integrations.errors import NotConnected
from tasks.invoice_tasks import dispatch_invoice_analysis


@celery_app.task(bind=True, time_limit=1800, soft_time_limit=1700)
def sync_owner_mailboxes_task(self, owner_id: str, supplier_email: str = None):
    """
    Celery task to run discovery and ingestion over an owner's mailboxes.

    Args:
        owner_id: Owner whose mailboxes to sync
        supplier_email: Optional single supplier to ingest from

    Returns:
        dict: Per-mailbox summaries and totals
    """
    self.update_state(
        state="STARTED",
        meta={"status": "syncing", "owner_id": owner_id, "supplier_email": supplier_email},
    )

    try:
        result = mail_sync.sync_owner_mailboxes(
            owner_id,
            config=load_sync_config(),
            dispatch_analysis=dispatch_invoice_analysis,
            supplier_email=supplier_email,
        )
    except NotConnected as e:
        return {"status": "failed", "error": str(e)}

    return {
        "status": "completed",
        "result": result,
        "completed_at": datetime.now().isoformat(),
    }


@celery_app.task(bind=True, time_limit=3600, soft_time_limit=3500)
def sync_all_mailboxes_task(self):
    """
    Scheduled Celery task: sync every enabled mailbox.

    Returns:
        dict: Totals across all mailboxes
    """
    self.update_state(state="STARTED", meta={"status": "syncing"})
    result = mail_sync.sync_all_mailboxes(
        config=load_sync_config(), dispatch_analysis=dispatch_invoice_analysis
    )
    return {
        "status": "completed",
        "result": result,
        "completed_at": datetime.now().isoformat(),
    }


@celery_app.task(bind=True, time_limit=900, soft_time_limit=840)
def discover_suppliers_task(self, owner_id: str, lookback_days: int = None):
    """
    Celery task to scan an owner's mailboxes for supplier senders.

    Returns:
        dict: Discovery summary per mailbox
    """
    self.update_state(state="STARTED", meta={"status": "discovering", "owner_id": owner_id})

    try:
        result = mail_sync.discover_owner_suppliers(
            owner_id, lookback_days=lookback_days, config=load_sync_config()
        )
    except NotConnected as e:
        return {"status": "failed", "error": str(e)}

    return {"status": "completed", "result": result}
