"""API tests for the mail, invoice, fulfillment and health blueprints.

Tests critical HTTP behavior:
- owner_id is required on every data endpoint
- Sync errors map onto stable status codes
- Async endpoints queue work and return 202
- Token fields never leave the API
"""

import io

import pytest

import database
from integrations.errors import (
    AuthExpired,
    ProviderError,
    ReportFatal,
    ReportTimeout,
)
from tests.conftest import OWNER_ID, make_mailbox


@pytest.fixture
def queued(mocker):
    """Replace Celery dispatch with recorded calls."""
    tasks = {}
    for target in (
        "services.mail_service.sync_owner_mailboxes_task",
        "services.mail_service.discover_suppliers_task",
        "services.invoice_service.analyze_invoice_task",
        "services.fulfillment_service.sync_shipments_task",
        "services.fulfillment_service.sync_claims_task",
    ):
        task = mocker.patch(target)
        task.delay.return_value.id = "task-123"
        tasks[target.rsplit(".", 1)[-1]] = task
    tasks["dispatch"] = mocker.patch("services.invoice_service.dispatch_invoice_analysis")
    return tasks


# ============================================================================
# HEALTH
# ============================================================================


def test_health_minimal(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_health_detail_reports_degraded_dependency(client, mocker):
    mocker.patch("routes.health.check_redis_connection", return_value=False)

    response = client.get("/api/health?detail=true")

    assert response.status_code == 503
    body = response.get_json()
    assert body["status"] == "degraded"
    assert body["checks"] == {"database": True, "redis": False}


def test_ping(client):
    assert client.get("/api/ping").get_json() == {"pong": True}


# ============================================================================
# ERROR MAPPING
# ============================================================================


@pytest.mark.parametrize(
    "path",
    [
        "/api/mail/mailboxes",
        "/api/mail/suppliers",
        "/api/invoices",
        "/api/fulfillment/shipments",
        "/api/fulfillment/claims",
    ],
)
def test_owner_id_is_required(client, path):
    response = client.get(path)

    assert response.status_code == 400
    assert response.get_json()["error"] == "owner_id is required"


def test_sync_without_mailbox_is_not_connected(client, queued):
    response = client.post("/api/mail/sync", json={"owner_id": OWNER_ID})

    assert response.status_code == 400
    assert response.get_json()["code"] == "not_connected"
    queued["sync_owner_mailboxes_task"].delay.assert_not_called()


@pytest.mark.parametrize(
    "error,status,code",
    [
        (AuthExpired("token revoked"), 401, "auth_expired"),
        (ReportFatal("marketplace mismatch"), 422, "fatal"),
        (ReportTimeout("not ready"), 504, "timeout"),
        (ProviderError("upstream 500", status_code=500), 500, "provider_error"),
    ],
)
def test_sync_errors_map_to_status_codes(client, mocker, error, status, code):
    mocker.patch("services.fulfillment_service.run_claim_sync", side_effect=error)

    response = client.post(f"/api/fulfillment/sync/claims?async=false&owner_id={OWNER_ID}")

    assert response.status_code == status
    assert response.get_json()["code"] == code


def test_unknown_resource_is_404(client):
    response = client.delete(f"/api/mail/mailboxes/999?owner_id={OWNER_ID}")

    assert response.status_code == 404


# ============================================================================
# MAIL
# ============================================================================


def test_mailboxes_never_expose_tokens(client):
    make_mailbox()

    [mailbox] = client.get(f"/api/mail/mailboxes?owner_id={OWNER_ID}").get_json()

    assert mailbox["connected_address"] == "owner@example.com"
    assert "encrypted_access_token" not in mailbox
    assert "encrypted_refresh_token" not in mailbox


def test_sync_is_queued(client, queued):
    make_mailbox()

    response = client.post(
        "/api/mail/sync", json={"owner_id": OWNER_ID, "supplier_email": "billing@acme.com"}
    )

    assert response.status_code == 202
    assert response.get_json()["task_id"] == "task-123"
    queued["sync_owner_mailboxes_task"].delay.assert_called_once_with(
        OWNER_ID, "billing@acme.com"
    )


def test_supplier_add_is_idempotent(client):
    first = client.post(
        "/api/mail/suppliers",
        json={"owner_id": OWNER_ID, "email": "Acme Billing <Billing@Acme.com>"},
    )
    second = client.post(
        "/api/mail/suppliers", json={"owner_id": OWNER_ID, "email": "billing@acme.com"}
    )

    assert first.status_code == 201
    assert first.get_json()["email"] == "billing@acme.com"
    assert second.status_code == 200
    assert second.get_json()["created"] is False


def test_supplier_add_rejects_invalid_email(client):
    response = client.post(
        "/api/mail/suppliers", json={"owner_id": OWNER_ID, "email": "not-an-address"}
    )

    assert response.status_code == 400


def test_supplier_approval(client):
    supplier_id = database.insert_suggested_supplier(OWNER_ID, "ops@vendor.io")

    response = client.post(f"/api/mail/suppliers/{supplier_id}/approve?owner_id={OWNER_ID}")

    assert response.status_code == 200
    assert database.get_suppliers(OWNER_ID)[0]["status"] == "active"


# ============================================================================
# INVOICES
# ============================================================================


def test_upload_creates_pending_invoice(client, mocker, memory_store, queued):
    mocker.patch(
        "integrations.invoice_ingestion.validate_invoice_content", return_value=(True, "ok")
    )

    response = client.post(
        "/api/invoices/upload",
        data={
            "owner_id": OWNER_ID,
            "file": (io.BytesIO(b"%PDF-1.4"), "invoice.pdf", "application/pdf"),
        },
        content_type="multipart/form-data",
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["analysis_status"] == "pending"
    queued["dispatch"].assert_called_once_with(body["id"])


def test_upload_rejects_pro_forma(client, mocker, memory_store, queued):
    mocker.patch(
        "integrations.invoice_ingestion.validate_invoice_content",
        return_value=(False, "pro_forma"),
    )

    response = client.post(
        "/api/invoices/upload",
        data={
            "owner_id": OWNER_ID,
            "file": (io.BytesIO(b"%PDF-1.4"), "quote.pdf", "application/pdf"),
        },
        content_type="multipart/form-data",
    )

    assert response.status_code == 422
    assert response.get_json()["code"] == "validation_rejected"
    assert memory_store.objects == {}


def test_upload_rejects_unsupported_type(client, queued):
    response = client.post(
        "/api/invoices/upload",
        data={
            "owner_id": OWNER_ID,
            "file": (io.BytesIO(b"PK"), "archive.zip", "application/zip"),
        },
        content_type="multipart/form-data",
    )

    assert response.status_code == 400


def test_invoice_of_another_owner_is_hidden(client):
    invoice_id = database.create_invoice("someone-else", "a.pdf", "someone-else/a.pdf")

    response = client.get(f"/api/invoices/{invoice_id}?owner_id={OWNER_ID}")

    assert response.status_code == 404


# ============================================================================
# FULFILLMENT
# ============================================================================


def test_shipment_sync_requires_credential(client, queued):
    response = client.post(f"/api/fulfillment/sync/shipments?owner_id={OWNER_ID}")

    assert response.status_code == 400
    assert response.get_json()["code"] == "not_connected"


def test_connection_status_without_credential(client):
    response = client.get(f"/api/fulfillment/connection?owner_id={OWNER_ID}")

    assert response.status_code == 200
    assert response.get_json()["connected"] is False
