"""
Fulfillment Sync & Discrepancy Engine

Two sync paths share one credential and one window rule:

- Shipments: paginated inbound-shipment listing, item fetches in small
  concurrent batches, per-item upserts and discrepancy derivation.
- Claims: reimbursement report requested, polled to a terminal state,
  downloaded, parsed by header name and upserted on claim_id.

Each path starts its window at max(watermark - overlap, now - lookback) and
advances its own watermark to the run's start time once the pass completes.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

import database
from config.sync_config import SyncConfig

from .errors import AuthExpired, NotConnected, SyncError, error_entry
from .logging_config import get_logger
from .report_parser import parse_reimbursements
from .report_poller import ReportState, poll_report
from .sp_api_auth import get_valid_access_token
from .sp_api_client import REIMBURSEMENTS_REPORT, SpApiClient

logger = get_logger(__name__)

SHORTAGE = "shortage"
OVERAGE = "overage"


def compute_window_start(watermark, now: datetime, config: SyncConfig) -> datetime:
    """Later of (watermark - overlap) and (now - default lookback)."""
    default_start = now - timedelta(days=config.fulfillment_lookback_days)
    if watermark is None:
        return default_start
    if watermark.tzinfo is None:
        watermark = watermark.replace(tzinfo=UTC)
    return max(watermark - timedelta(days=config.watermark_overlap_days), default_start)


def classify_discrepancy(quantity_shipped: int, quantity_received: int):
    """
    Returns:
        (type, difference) with difference as a magnitude, or None when the
        quantities match
    """
    delta = (quantity_received or 0) - (quantity_shipped or 0)
    if delta == 0:
        return None
    return (OVERAGE if delta > 0 else SHORTAGE), abs(delta)


def _parse_timestamp(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _default_client_factory(access_token, marketplace_id, config):
    return SpApiClient(access_token, marketplace_id, config=config)


def _load_client(owner_id, config, client_factory):
    credential = database.get_credential(owner_id)
    if not credential:
        raise NotConnected("No fulfillment platform credential found", owner_id=owner_id)

    access_token = get_valid_access_token(credential)
    marketplace_id = credential.get("marketplace_id") or config.default_marketplace_id
    return credential, client_factory(access_token, marketplace_id, config)


# ============================================================================
# SHIPMENTS
# ============================================================================


def _sync_shipment_items(owner_id, client, shipment_row_id, items, config) -> dict:
    counts = {"items": 0, "discrepancies": 0}
    names = {}

    for item in items:
        sku = item.get("SellerSKU")
        if not sku:
            continue
        fnsku = item.get("FulfillmentNetworkSKU")
        shipped = int(item.get("QuantityShipped") or 0)
        received = int(item.get("QuantityReceived") or 0)

        product_name = None
        if config.lookup_product_names and fnsku:
            if fnsku not in names:
                names[fnsku] = client.get_catalog_item_name(fnsku)
            product_name = names[fnsku]

        database.upsert_shipment_item(
            shipment_row_id,
            sku,
            quantity_shipped=shipped,
            quantity_received=received,
            fnsku=fnsku,
            product_name=product_name,
        )
        counts["items"] += 1

        classified = classify_discrepancy(shipped, received)
        if classified:
            discrepancy_type, difference = classified
            database.upsert_discrepancy(
                owner_id,
                shipment_row_id,
                sku,
                expected_quantity=shipped,
                actual_quantity=received,
                difference=difference,
                discrepancy_type=discrepancy_type,
                product_name=product_name,
            )
            counts["discrepancies"] += 1

    return counts


def _sync_one_shipment(owner_id, client, shipment, config) -> dict:
    """Upsert one shipment with its items. Raises on failure."""
    shipment_id = shipment["ShipmentId"]
    row_id = database.upsert_shipment(
        owner_id,
        shipment_id,
        name=shipment.get("ShipmentName"),
        destination_center=shipment.get("DestinationFulfillmentCenterId"),
        status=shipment.get("ShipmentStatus"),
        created_date=_parse_timestamp(shipment.get("CreatedDate")),
        last_updated_date=_parse_timestamp(shipment.get("LastUpdatedDate")),
    )

    try:
        items = client.list_shipment_items(shipment_id)
        counts = _sync_shipment_items(owner_id, client, row_id, items, config)
    except (SyncError, SQLAlchemyError) as e:
        database.set_shipment_sync_status(row_id, "error", str(e))
        raise

    database.set_shipment_sync_status(row_id, "synced")
    return counts


def sync_shipments(
    owner_id: str,
    config: SyncConfig | None = None,
    client_factory=_default_client_factory,
) -> dict:
    """
    Pull inbound shipments updated since the watermark and derive discrepancies.

    Returns:
        Summary with shipments found/synced, items, discrepancies, errors and
        the stored watermark

    Raises:
        NotConnected: No credential, or it needs re-authorization
        AuthExpired: Token rejected (credential is revoked)
    """
    config = config or SyncConfig()
    started_at = datetime.now(UTC)
    log_context = {"owner_id": owner_id, "sync_run": uuid.uuid4().hex[:12]}

    credential, client = _load_client(owner_id, config, client_factory)
    window_start = compute_window_start(credential.get("last_sync_at"), started_at, config)
    logger.info(f"Syncing shipments updated since {window_start.isoformat()}", extra=log_context)

    try:
        shipments = [
            s for s in client.list_shipments(window_start, started_at) if s.get("ShipmentId")
        ]
    except AuthExpired:
        database.mark_credential_revoked(owner_id)
        raise

    summary = {
        "shipments_found": len(shipments),
        "shipments_synced": 0,
        "items_synced": 0,
        "discrepancies_found": 0,
        "errors": [],
        "window_start": window_start.isoformat(),
    }

    def run(shipment):
        try:
            return shipment, _sync_one_shipment(owner_id, client, shipment, config)
        except (SyncError, SQLAlchemyError) as e:
            return shipment, e

    auth_failure = None
    for offset in range(0, len(shipments), config.shipment_batch_size):
        batch = shipments[offset : offset + config.shipment_batch_size]
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            outcomes = list(executor.map(run, batch))

        for shipment, outcome in outcomes:
            if isinstance(outcome, AuthExpired):
                auth_failure = outcome
            if isinstance(outcome, Exception):
                logger.error(
                    f"Shipment {shipment['ShipmentId']} failed: {outcome}", extra=log_context
                )
                summary["errors"].append(error_entry(shipment["ShipmentId"], outcome))
                continue
            summary["shipments_synced"] += 1
            summary["items_synced"] += outcome["items"]
            summary["discrepancies_found"] += outcome["discrepancies"]

        if auth_failure:
            database.mark_credential_revoked(owner_id)
            raise auth_failure

    watermark = database.advance_shipment_watermark(owner_id, started_at)
    summary["last_sync_at"] = watermark.isoformat() if watermark else None

    logger.info(
        f"Shipment sync: {summary['shipments_synced']}/{summary['shipments_found']} synced, "
        f"{summary['discrepancies_found']} discrepancies, {len(summary['errors'])} errors",
        extra=log_context,
    )
    return summary


# ============================================================================
# CLAIMS (REIMBURSEMENTS REPORT)
# ============================================================================


def sync_claims(
    owner_id: str,
    config: SyncConfig | None = None,
    client_factory=_default_client_factory,
    sleep=time.sleep,
) -> dict:
    """
    Request, poll, download and upsert the reimbursements report.

    Blocks for up to poll interval x attempt bound while the report builds.

    Returns:
        Summary with report id/state, claims found/upserted, errors and the
        stored watermark

    Raises:
        NotConnected: No credential, or it needs re-authorization
        AuthExpired: Token rejected (credential is revoked)
        ReportFatal: Report generation failed permanently
        ReportTimeout: Report not ready within the attempt bound
    """
    config = config or SyncConfig()
    started_at = datetime.now(UTC)
    log_context = {"owner_id": owner_id, "sync_run": uuid.uuid4().hex[:12]}

    credential, client = _load_client(owner_id, config, client_factory)
    window_start = compute_window_start(
        credential.get("last_claim_sync_at"), started_at, config
    )

    try:
        report_id = client.create_report(REIMBURSEMENTS_REPORT, window_start, started_at)
        log_context["report_id"] = report_id
        logger.info(f"Requested reimbursements report since {window_start.date()}", extra=log_context)

        result = poll_report(
            client,
            report_id,
            interval=config.report_poll_interval,
            max_attempts=config.report_max_attempts,
            sleep=sleep,
        )

        claims = []
        if result.state == ReportState.DONE:
            claims = parse_reimbursements(client.download_report_document(result.document_id))
        else:
            logger.warning("Report was cancelled; treating as empty", extra=log_context)
    except AuthExpired:
        database.mark_credential_revoked(owner_id)
        raise

    summary = {
        "report_id": report_id,
        "report_state": result.state.value,
        "claims_found": len(claims),
        "claims_upserted": 0,
        "errors": [],
        "window_start": window_start.isoformat(),
    }

    for claim in claims:
        try:
            database.upsert_claim(owner_id, claim)
            summary["claims_upserted"] += 1
        except SQLAlchemyError as e:
            logger.error(f"Failed to store claim {claim['claim_id']}: {e}", extra=log_context)
            summary["errors"].append(
                {"item": claim["claim_id"], "code": "store_failed", "message": str(e)}
            )

    watermark = database.advance_claim_watermark(owner_id, started_at)
    summary["last_claim_sync_at"] = watermark.isoformat() if watermark else None

    logger.info(
        f"Claim sync: {summary['claims_upserted']}/{summary['claims_found']} upserted",
        extra=log_context,
    )
    return summary
