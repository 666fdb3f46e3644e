"""
Fulfillment Service - Business Logic

Connects the seller's fulfillment platform account and exposes shipment,
discrepancy and claim data plus sync dispatch.
"""

import database
from config.sync_config import load_sync_config
from integrations import fulfillment_sync, sp_api_auth
from integrations.errors import NotConnected
from integrations.logging_config import get_logger
from integrations.sp_api_client import SpApiClient
from integrations.token_vault import encrypt_token
from tasks.fulfillment_tasks import sync_claims_task, sync_shipments_task

logger = get_logger(__name__)


def connect(owner_id: str, code: str, redirect_uri: str, marketplace_id: str = None) -> dict:
    """
    Complete the seller authorization callback.

    Exchanges the code, looks up the seller id, and stores the encrypted
    tokens on the owner's credential (created or re-authorized).

    Returns:
        Connection status dict
    """
    config = load_sync_config()
    marketplace_id = marketplace_id or config.default_marketplace_id

    tokens = sp_api_auth.exchange_code_for_tokens(code, redirect_uri)
    seller_id = SpApiClient(tokens["access_token"], marketplace_id, config=config).get_seller_id()

    database.save_credential(
        owner_id,
        encrypted_refresh_token=encrypt_token(tokens["refresh_token"]),
        seller_id=seller_id,
        marketplace_id=marketplace_id,
        encrypted_access_token=encrypt_token(tokens["access_token"]),
        token_expiry=tokens["expires_at"],
    )
    logger.info(f"Fulfillment account connected (seller {seller_id})", extra={"owner_id": owner_id})
    return get_connection_status(owner_id)


def get_connection_status(owner_id: str) -> dict:
    credential = database.get_credential(owner_id)
    if not credential:
        return {"connected": False}

    return {
        "connected": credential["status"] == "active",
        "status": credential["status"],
        "seller_id": credential["seller_id"],
        "marketplace_id": credential["marketplace_id"],
        "last_sync_at": credential["last_sync_at"],
        "last_claim_sync_at": credential["last_claim_sync_at"],
    }


def _require_credential(owner_id: str):
    if not database.get_credential(owner_id):
        raise NotConnected("No fulfillment platform credential found", owner_id=owner_id)


def start_shipment_sync(owner_id: str) -> dict:
    _require_credential(owner_id)
    task = sync_shipments_task.delay(owner_id)
    return {"task_id": task.id, "status": "queued"}


def run_shipment_sync(owner_id: str) -> dict:
    return fulfillment_sync.sync_shipments(owner_id, config=load_sync_config())


def start_claim_sync(owner_id: str) -> dict:
    _require_credential(owner_id)
    task = sync_claims_task.delay(owner_id)
    return {"task_id": task.id, "status": "queued"}


def run_claim_sync(owner_id: str) -> dict:
    return fulfillment_sync.sync_claims(owner_id, config=load_sync_config())


def get_shipments(owner_id: str) -> list:
    shipments = database.get_shipments(owner_id)
    for shipment in shipments:
        shipment["items"] = database.get_shipment_items(shipment["id"])
    return shipments


def get_discrepancies(owner_id: str, status: str = None) -> list:
    return database.get_discrepancies(owner_id, status=status)


def resolve_discrepancy(owner_id: str, discrepancy_id: int):
    if not database.resolve_discrepancy(owner_id, discrepancy_id):
        raise ValueError(f"Discrepancy {discrepancy_id} not found")


def get_claims(owner_id: str) -> list:
    return database.get_claims(owner_id)
