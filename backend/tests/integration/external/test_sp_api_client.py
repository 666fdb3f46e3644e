"""Integration tests for the fulfillment platform (SP-API) client and LWA auth.

Tests critical integration points:
- Rate limit spacing between requests
- 429 handling with Retry-After, then RateLimited
- 401 / 403 Unauthorized surfaced as AuthExpired
- NextToken pagination for shipments and shipment items
- Report document download with gzip
- Access-token cache, refresh and credential revocation
"""

import gzip
from datetime import UTC, datetime, timedelta

import pytest
import responses

import database
from config.sync_config import SyncConfig
from integrations.errors import AuthExpired, NotConnected, ProviderError, RateLimited
from integrations.sp_api_auth import LWA_TOKEN_URL, get_valid_access_token
from integrations.sp_api_client import SpApiClient
from integrations.token_vault import decrypt_token, encrypt_token
from tests.conftest import OWNER_ID

API = "https://sp.example.test"


@pytest.fixture
def client(no_sleep):
    return SpApiClient(
        "sp-token",
        "MKT1",
        api_base=API,
        config=SyncConfig(max_retries=2),
        sleep=no_sleep,
        min_interval=0,
    )


@pytest.fixture
def lwa_env(monkeypatch):
    monkeypatch.setenv("AMAZON_CLIENT_ID", "lwa-id")
    monkeypatch.setenv("AMAZON_CLIENT_SECRET", "lwa-secret")


# ============================================================================
# REQUEST POLICY TESTS (TIER 1 CRITICAL)
# ============================================================================


@responses.activate
def test_rate_limit_spaces_consecutive_requests(no_sleep):
    """Back-to-back calls wait out the minimum interval."""
    client = SpApiClient("sp-token", "MKT1", api_base=API, sleep=no_sleep, min_interval=0.5)
    for _ in range(2):
        responses.add(responses.GET, f"{API}/reports/2021-06-30/reports/R1", json={})

    client.get_report("R1")
    client.get_report("R1")

    assert len(no_sleep.calls) == 1
    assert 0 < no_sleep.calls[0] <= 0.5


@responses.activate
def test_access_token_sent_in_amz_header(client):
    responses.add(responses.GET, f"{API}/reports/2021-06-30/reports/R1", json={})

    client.get_report("R1")

    assert responses.calls[0].request.headers["x-amz-access-token"] == "sp-token"


@responses.activate
def test_429_retry_after_then_success(client, no_sleep):
    url = f"{API}/reports/2021-06-30/reports/R1"
    responses.add(responses.GET, url, status=429, headers={"Retry-After": "4"})
    responses.add(responses.GET, url, json={"processingStatus": "DONE"})

    assert client.get_report("R1")["processingStatus"] == "DONE"
    assert no_sleep.calls == [4]


@responses.activate
def test_persistent_429_raises_rate_limited(client, no_sleep):
    responses.add(responses.GET, f"{API}/reports/2021-06-30/reports/R1", status=429)

    with pytest.raises(RateLimited):
        client.get_report("R1")

    assert no_sleep.calls == [1, 2]


@responses.activate
@pytest.mark.parametrize(
    "status,body",
    [
        (401, {"errors": [{"code": "Unauthorized", "message": "expired"}]}),
        (403, {"errors": [{"code": "Unauthorized", "message": "Access denied"}]}),
    ],
)
def test_unauthorized_raises_auth_expired(client, status, body):
    responses.add(
        responses.GET, f"{API}/reports/2021-06-30/reports/R1", json=body, status=status
    )

    with pytest.raises(AuthExpired):
        client.get_report("R1")


# ============================================================================
# PAGINATION TESTS
# ============================================================================


@responses.activate
def test_list_shipments_follows_next_token(client):
    url = f"{API}/fba/inbound/v0/shipments"
    responses.add(
        responses.GET,
        url,
        json={"payload": {"ShipmentData": [{"ShipmentId": "FBA1"}], "NextToken": "n1"}},
    )
    responses.add(
        responses.GET,
        url,
        json={"payload": {"ShipmentData": [{"ShipmentId": "FBA2"}]}},
    )

    shipments = list(
        client.list_shipments(
            datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 2, 1, tzinfo=UTC)
        )
    )

    assert [s["ShipmentId"] for s in shipments] == ["FBA1", "FBA2"]
    assert "LastUpdatedAfter=2025-01-01T00%3A00%3A00Z" in responses.calls[0].request.url
    assert "QueryType=NEXT_TOKEN" in responses.calls[1].request.url
    assert "NextToken=n1" in responses.calls[1].request.url


@responses.activate
def test_list_shipment_items_collects_all_pages(client):
    url = f"{API}/fba/inbound/v0/shipments/FBA1/items"
    responses.add(
        responses.GET,
        url,
        json={"payload": {"ItemData": [{"SellerSKU": "A"}], "NextToken": "n1"}},
    )
    responses.add(responses.GET, url, json={"payload": {"ItemData": [{"SellerSKU": "B"}]}})

    items = client.list_shipment_items("FBA1")

    assert [i["SellerSKU"] for i in items] == ["A", "B"]


# ============================================================================
# REPORTS AND CATALOG
# ============================================================================


@responses.activate
def test_create_report_sends_window_and_marketplace(client):
    responses.add(
        responses.POST, f"{API}/reports/2021-06-30/reports", json={"reportId": "R9"}
    )

    report_id = client.create_report(
        "GET_FBA_REIMBURSEMENTS_DATA", datetime(2025, 1, 1, tzinfo=UTC)
    )

    assert report_id == "R9"
    body = responses.calls[0].request.body
    assert b'"marketplaceIds": ["MKT1"]' in body
    assert b'"dataStartTime": "2025-01-01T00:00:00Z"' in body


@responses.activate
def test_download_report_document_gunzips(client):
    text = "reimbursement-id\tamount-total\nR1\t5.00\n"
    responses.add(
        responses.GET,
        f"{API}/reports/2021-06-30/documents/DOC1",
        json={"url": "https://s3.example.test/doc1", "compressionAlgorithm": "GZIP"},
    )
    responses.add(
        responses.GET, "https://s3.example.test/doc1", body=gzip.compress(text.encode())
    )

    assert client.download_report_document("DOC1") == text
    # Pre-signed URL gets no SP-API token
    assert "x-amz-access-token" not in responses.calls[1].request.headers


@responses.activate
def test_download_without_url_raises_provider_error(client):
    responses.add(
        responses.GET,
        f"{API}/reports/2021-06-30/documents/DOC1",
        json={"reportDocumentId": "DOC1"},
    )

    with pytest.raises(ProviderError, match="no download url"):
        client.download_report_document("DOC1")


@responses.activate
def test_download_mislabelled_gzip_raises_provider_error(client):
    responses.add(
        responses.GET,
        f"{API}/reports/2021-06-30/documents/DOC1",
        json={"url": "https://s3.example.test/doc1", "compressionAlgorithm": "GZIP"},
    )
    responses.add(responses.GET, "https://s3.example.test/doc1", body=b"plain text")

    with pytest.raises(ProviderError, match="gzip"):
        client.download_report_document("DOC1")


@responses.activate
def test_catalog_lookup_failure_returns_none(client):
    responses.add(
        responses.GET, f"{API}/catalog/2022-04-01/items/X001", json={}, status=404
    )

    assert client.get_catalog_item_name("X001") is None


@responses.activate
def test_catalog_lookup_returns_item_name(client):
    responses.add(
        responses.GET,
        f"{API}/catalog/2022-04-01/items/X001",
        json={"summaries": [{"itemName": "Blue Widget"}]},
    )

    assert client.get_catalog_item_name("X001") == "Blue Widget"


# ============================================================================
# LWA ACCESS TOKEN TESTS
# ============================================================================


def _save_credential(access_token=None, expiry=None):
    database.save_credential(
        OWNER_ID,
        encrypt_token("lwa-refresh"),
        seller_id="S1",
        marketplace_id="MKT1",
        encrypted_access_token=encrypt_token(access_token) if access_token else None,
        token_expiry=expiry,
    )
    return database.get_credential(OWNER_ID)


def test_cached_access_token_is_reused():
    credential = _save_credential("cached", datetime.now(UTC) + timedelta(hours=1))

    assert get_valid_access_token(credential) == "cached"


@responses.activate
def test_expired_access_token_is_refreshed_and_stored(lwa_env):
    responses.add(
        responses.POST, LWA_TOKEN_URL, json={"access_token": "fresh", "expires_in": 3600}
    )
    credential = _save_credential("old", datetime.now(UTC) + timedelta(minutes=1))

    assert get_valid_access_token(credential) == "fresh"
    stored = database.get_credential(OWNER_ID)
    assert decrypt_token(stored["encrypted_access_token"]) == "fresh"
    assert "refresh_token=lwa-refresh" in responses.calls[0].request.body


@responses.activate
def test_rejected_refresh_revokes_credential(lwa_env):
    responses.add(
        responses.POST, LWA_TOKEN_URL, json={"error": "invalid_grant"}, status=400
    )
    credential = _save_credential()

    with pytest.raises(AuthExpired):
        get_valid_access_token(credential)

    assert database.get_credential(OWNER_ID)["status"] == "revoked"


def test_revoked_credential_raises_not_connected():
    _save_credential()
    database.mark_credential_revoked(OWNER_ID)

    with pytest.raises(NotConnected):
        get_valid_access_token(database.get_credential(OWNER_ID))
