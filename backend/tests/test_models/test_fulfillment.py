"""Tests for fulfillment persistence: upsert keys, overwrite semantics, watermarks."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import database
from tests.conftest import OWNER_ID


def _credential():
    database.save_credential(OWNER_ID, "enc-refresh", seller_id="S1", marketplace_id="M1")
    return database.get_credential(OWNER_ID)


def test_shipment_upsert_is_keyed_on_business_id():
    first = database.upsert_shipment(OWNER_ID, "FBA123", name="Spring restock")
    second = database.upsert_shipment(OWNER_ID, "FBA123", name="Spring restock v2")

    assert first == second
    [shipment] = database.get_shipments(OWNER_ID)
    assert shipment["name"] == "Spring restock v2"
    assert shipment["shipment_type"] == "FBA"


def test_shipment_item_quantities_are_overwritten():
    row_id = database.upsert_shipment(OWNER_ID, "FBA123")
    database.upsert_shipment_item(row_id, "SKU-1", 10, 4, product_name="Widget")
    database.upsert_shipment_item(row_id, "SKU-1", 10, 9)

    [item] = database.get_shipment_items(row_id)
    assert item["quantity_shipped"] == 10
    assert item["quantity_received"] == 9
    assert item["product_name"] == "Widget"


def test_discrepancy_upsert_preserves_resolution():
    row_id = database.upsert_shipment(OWNER_ID, "FBA123")
    database.upsert_discrepancy(OWNER_ID, row_id, "SKU-1", 10, 8, 2, "shortage")
    [discrepancy] = database.get_discrepancies(OWNER_ID)
    database.resolve_discrepancy(OWNER_ID, discrepancy["id"])

    database.upsert_discrepancy(OWNER_ID, row_id, "SKU-1", 10, 7, 3, "shortage")

    [discrepancy] = database.get_discrepancies(OWNER_ID)
    assert discrepancy["shipment_id"] == "FBA123"
    assert discrepancy["difference"] == 3
    assert discrepancy["status"] == "resolved"


def test_claim_upsert_never_duplicates():
    claim = {
        "claim_id": "R-1",
        "reimbursement_id": "R-1",
        "amount": Decimal("12.50"),
        "quantity_reimbursed": 1,
        "claim_date": date(2025, 2, 1),
        "status": "Approved",
        "shipment_type": "FBA",
        "item_name": "Widget",
    }
    database.upsert_claim(OWNER_ID, claim)
    database.upsert_claim(OWNER_ID, {**claim, "amount": Decimal("13.00")})

    [stored] = database.get_claims(OWNER_ID)
    assert stored["amount"] == 13.0


def test_watermark_never_moves_backwards():
    _credential()
    later = datetime(2025, 5, 2, tzinfo=UTC)

    assert database.advance_shipment_watermark(OWNER_ID, later) == later
    assert database.advance_shipment_watermark(OWNER_ID, later - timedelta(days=3)) == later
    assert database.get_credential(OWNER_ID)["last_sync_at"] == later
    assert database.get_credential(OWNER_ID)["last_claim_sync_at"] is None


def test_save_credential_reactivates_revoked():
    _credential()
    database.mark_credential_revoked(OWNER_ID)
    assert database.get_credential(OWNER_ID)["status"] == "revoked"

    _credential()
    assert database.get_credential(OWNER_ID)["status"] == "active"
