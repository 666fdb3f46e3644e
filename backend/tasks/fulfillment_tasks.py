"""Celery tasks for fulfillment platform sync."""

from datetime import datetime

from celery_app import celery_app
from config.sync_config import load_sync_config
from integrations import fulfillment_sync
from integrations.errors import SyncError


@celery_app.task(bind=True, time_limit=1800, soft_time_limit=1700)
def sync_shipments_task(self, owner_id: str):
    """
    Celery task to sync inbound shipments and derive discrepancies.

    Args:
        owner_id: Owner whose credential to use

    Returns:
        dict: Sync summary, or failure with the error code
    """
    self.update_state(state="STARTED", meta={"status": "syncing", "owner_id": owner_id})

    try:
        result = fulfillment_sync.sync_shipments(owner_id, config=load_sync_config())
    except SyncError as e:
        return {"status": "failed", "code": e.code, "error": str(e)}

    return {
        "status": "completed",
        "result": result,
        "completed_at": datetime.now().isoformat(),
    }


@celery_app.task(bind=True, time_limit=900, soft_time_limit=840)
def sync_claims_task(self, owner_id: str):
    """
    Celery task to pull the reimbursements report.

    Report polling blocks for up to interval x attempts, well inside the
    task time limit.

    Returns:
        dict: Sync summary, or failure with the error code
    """
    self.update_state(state="STARTED", meta={"status": "requesting_report", "owner_id": owner_id})

    try:
        result = fulfillment_sync.sync_claims(owner_id, config=load_sync_config())
    except SyncError as e:
        return {"status": "failed", "code": e.code, "retryable": e.retryable, "error": str(e)}

    return {
        "status": "completed",
        "result": result,
        "completed_at": datetime.now().isoformat(),
    }
