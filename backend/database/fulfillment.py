"""
Fulfillment Platform - Database Operations

Credentials and watermarks, plus idempotent per-row upserts for shipments,
shipment items, discrepancies and claims. Every upsert runs in its own
session and commits immediately so a failure mid-batch leaves earlier rows
durable.
"""

from datetime import UTC, datetime

from .base import get_session, upsert
from .mailboxes import as_utc
from .models.fulfillment import (
    Claim,
    Discrepancy,
    FulfillmentCredential,
    Shipment,
    ShipmentItem,
)

# ============================================================================
# CREDENTIAL FUNCTIONS
# ============================================================================


def _credential_to_dict(c):
    return {
        "id": c.id,
        "owner_id": c.owner_id,
        "seller_id": c.seller_id,
        "marketplace_id": c.marketplace_id,
        "encrypted_refresh_token": c.encrypted_refresh_token,
        "encrypted_access_token": c.encrypted_access_token,
        "token_expiry": as_utc(c.token_expiry),
        "last_sync_at": as_utc(c.last_sync_at),
        "last_claim_sync_at": as_utc(c.last_claim_sync_at),
        "status": c.status,
    }


def save_credential(
    owner_id,
    encrypted_refresh_token,
    seller_id=None,
    marketplace_id=None,
    encrypted_access_token=None,
    token_expiry=None,
):
    """Create or re-authorize the owner's fulfillment credential."""
    with get_session() as session:
        stmt = (
            upsert(FulfillmentCredential)
            .values(
                owner_id=owner_id,
                seller_id=seller_id,
                marketplace_id=marketplace_id,
                encrypted_refresh_token=encrypted_refresh_token,
                encrypted_access_token=encrypted_access_token,
                token_expiry=token_expiry,
                status="active",
            )
            .on_conflict_do_update(
                index_elements=["owner_id"],
                set_={
                    "seller_id": seller_id,
                    "marketplace_id": marketplace_id,
                    "encrypted_refresh_token": encrypted_refresh_token,
                    "encrypted_access_token": encrypted_access_token,
                    "token_expiry": token_expiry,
                    "status": "active",
                    "updated_at": datetime.now(UTC),
                },
            )
            .returning(FulfillmentCredential.id)
        )
        credential_id = session.execute(stmt).scalar_one()
        session.commit()
        return credential_id


def get_credential(owner_id):
    with get_session() as session:
        credential = (
            session.query(FulfillmentCredential)
            .filter(FulfillmentCredential.owner_id == owner_id)
            .first()
        )
        return _credential_to_dict(credential) if credential else None


def update_credential_tokens(owner_id, encrypted_access_token, token_expiry):
    with get_session() as session:
        credential = (
            session.query(FulfillmentCredential)
            .filter(FulfillmentCredential.owner_id == owner_id)
            .first()
        )
        if not credential:
            return False
        credential.encrypted_access_token = encrypted_access_token
        credential.token_expiry = token_expiry
        session.commit()
        return True


def mark_credential_revoked(owner_id):
    with get_session() as session:
        credential = (
            session.query(FulfillmentCredential)
            .filter(FulfillmentCredential.owner_id == owner_id)
            .first()
        )
        if not credential:
            return False
        credential.status = "revoked"
        session.commit()
        return True


def _advance(owner_id, column, synced_at):
    with get_session() as session:
        credential = (
            session.query(FulfillmentCredential)
            .filter(FulfillmentCredential.owner_id == owner_id)
            .first()
        )
        if not credential:
            return None

        current = as_utc(getattr(credential, column))
        # Watermarks never move backwards
        if current is None or synced_at > current:
            setattr(credential, column, synced_at)
            session.commit()
            return synced_at
        return current


def advance_shipment_watermark(owner_id, synced_at):
    """Set last_sync_at to max(current, synced_at). Returns the stored value."""
    return _advance(owner_id, "last_sync_at", synced_at)


def advance_claim_watermark(owner_id, synced_at):
    """Set last_claim_sync_at to max(current, synced_at). Returns the stored value."""
    return _advance(owner_id, "last_claim_sync_at", synced_at)


# ============================================================================
# SHIPMENT FUNCTIONS
# ============================================================================


def upsert_shipment(
    owner_id,
    shipment_id,
    name=None,
    destination_center=None,
    status=None,
    created_date=None,
    last_updated_date=None,
    shipment_type="FBA",
):
    """Upsert a shipment on (owner_id, shipment_id, shipment_type). Returns row id."""
    values = {
        "name": name,
        "destination_center": destination_center,
        "status": status,
        "created_date": created_date,
        "last_updated_date": last_updated_date,
    }
    with get_session() as session:
        stmt = (
            upsert(Shipment)
            .values(
                owner_id=owner_id,
                shipment_id=shipment_id,
                shipment_type=shipment_type,
                sync_status="pending",
                **values,
            )
            .on_conflict_do_update(
                index_elements=["owner_id", "shipment_id", "shipment_type"],
                set_=values,
            )
            .returning(Shipment.id)
        )
        row_id = session.execute(stmt).scalar_one()
        session.commit()
        return row_id


def set_shipment_sync_status(shipment_row_id, sync_status, sync_error=None):
    with get_session() as session:
        shipment = session.get(Shipment, shipment_row_id)
        if not shipment:
            return False
        shipment.sync_status = sync_status
        shipment.sync_error = sync_error
        session.commit()
        return True


def get_shipments(owner_id):
    with get_session() as session:
        shipments = (
            session.query(Shipment)
            .filter(Shipment.owner_id == owner_id)
            .order_by(Shipment.shipment_id)
            .all()
        )
        return [
            {
                "id": s.id,
                "shipment_id": s.shipment_id,
                "shipment_type": s.shipment_type,
                "name": s.name,
                "destination_center": s.destination_center,
                "status": s.status,
                "created_date": s.created_date,
                "last_updated_date": s.last_updated_date,
                "sync_status": s.sync_status,
                "sync_error": s.sync_error,
            }
            for s in shipments
        ]


def upsert_shipment_item(
    shipment_row_id,
    sku,
    quantity_shipped,
    quantity_received,
    fnsku=None,
    product_name=None,
):
    """Upsert on (shipment_id, sku). Quantities are overwritten, never summed."""
    values = {
        "fnsku": fnsku,
        "quantity_shipped": quantity_shipped,
        "quantity_received": quantity_received,
    }
    update_values = dict(values)
    if product_name:
        update_values["product_name"] = product_name

    with get_session() as session:
        stmt = (
            upsert(ShipmentItem)
            .values(
                shipment_id=shipment_row_id,
                sku=sku,
                product_name=product_name,
                **values,
            )
            .on_conflict_do_update(
                index_elements=["shipment_id", "sku"],
                set_=update_values,
            )
            .returning(ShipmentItem.id)
        )
        row_id = session.execute(stmt).scalar_one()
        session.commit()
        return row_id


def get_shipment_items(shipment_row_id):
    with get_session() as session:
        items = (
            session.query(ShipmentItem)
            .filter(ShipmentItem.shipment_id == shipment_row_id)
            .order_by(ShipmentItem.sku)
            .all()
        )
        return [
            {
                "id": i.id,
                "shipment_id": i.shipment_id,
                "sku": i.sku,
                "fnsku": i.fnsku,
                "product_name": i.product_name,
                "quantity_shipped": i.quantity_shipped,
                "quantity_received": i.quantity_received,
            }
            for i in items
        ]


# ============================================================================
# DISCREPANCY FUNCTIONS
# ============================================================================


def upsert_discrepancy(
    owner_id,
    shipment_row_id,
    sku,
    expected_quantity,
    actual_quantity,
    difference,
    discrepancy_type,
    product_name=None,
):
    """Upsert on (shipment_id, sku). New rows start open; status is preserved on update."""
    values = {
        "expected_quantity": expected_quantity,
        "actual_quantity": actual_quantity,
        "difference": difference,
        "type": discrepancy_type,
        "product_name": product_name,
    }
    with get_session() as session:
        stmt = (
            upsert(Discrepancy)
            .values(
                owner_id=owner_id,
                shipment_id=shipment_row_id,
                sku=sku,
                status="open",
                **values,
            )
            .on_conflict_do_update(
                index_elements=["shipment_id", "sku"],
                set_={**values, "updated_at": datetime.now(UTC)},
            )
            .returning(Discrepancy.id)
        )
        row_id = session.execute(stmt).scalar_one()
        session.commit()
        return row_id


def get_discrepancies(owner_id, status=None):
    with get_session() as session:
        query = (
            session.query(Discrepancy, Shipment.shipment_id)
            .join(Shipment, Shipment.id == Discrepancy.shipment_id)
            .filter(Discrepancy.owner_id == owner_id)
        )
        if status:
            query = query.filter(Discrepancy.status == status)

        return [
            {
                "id": d.id,
                "shipment_id": shipment_id,
                "sku": d.sku,
                "product_name": d.product_name,
                "expected_quantity": d.expected_quantity,
                "actual_quantity": d.actual_quantity,
                "difference": d.difference,
                "type": d.type,
                "status": d.status,
            }
            for d, shipment_id in query.order_by(Discrepancy.id).all()
        ]


def resolve_discrepancy(owner_id, discrepancy_id):
    with get_session() as session:
        discrepancy = (
            session.query(Discrepancy)
            .filter(
                Discrepancy.id == discrepancy_id,
                Discrepancy.owner_id == owner_id,
            )
            .first()
        )
        if not discrepancy:
            return False
        discrepancy.status = "resolved"
        session.commit()
        return True


# ============================================================================
# CLAIM FUNCTIONS
# ============================================================================


def upsert_claim(owner_id, claim):
    """Upsert a reimbursement row on claim_id. Returns row id."""
    values = {
        "reimbursement_id": claim.get("reimbursement_id"),
        "case_id": claim.get("case_id"),
        "asin": claim.get("asin"),
        "sku": claim.get("sku"),
        "item_name": claim.get("item_name"),
        "amount": claim.get("amount"),
        "quantity_reimbursed": claim.get("quantity_reimbursed"),
        "status": claim.get("status"),
        "claim_date": claim.get("claim_date"),
        "shipment_type": claim.get("shipment_type"),
    }
    with get_session() as session:
        stmt = (
            upsert(Claim)
            .values(owner_id=owner_id, claim_id=claim["claim_id"], **values)
            .on_conflict_do_update(index_elements=["claim_id"], set_=values)
            .returning(Claim.id)
        )
        row_id = session.execute(stmt).scalar_one()
        session.commit()
        return row_id


def get_claims(owner_id):
    with get_session() as session:
        claims = (
            session.query(Claim)
            .filter(Claim.owner_id == owner_id)
            .order_by(Claim.claim_date.desc(), Claim.claim_id)
            .all()
        )
        return [
            {
                "id": c.id,
                "claim_id": c.claim_id,
                "reimbursement_id": c.reimbursement_id,
                "case_id": c.case_id,
                "asin": c.asin,
                "sku": c.sku,
                "item_name": c.item_name,
                "amount": float(c.amount) if c.amount is not None else None,
                "quantity_reimbursed": c.quantity_reimbursed,
                "status": c.status,
                "claim_date": c.claim_date,
                "shipment_type": c.shipment_type,
            }
            for c in claims
        ]
