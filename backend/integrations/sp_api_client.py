"""
Fulfillment Platform API Client (Amazon Selling Partner API)

Handles report request/status/document calls, inbound shipment and shipment
item listing with NextToken pagination, and catalog lookups. Includes rate
limiting and bounded backoff on throttling.

Key Features:
1. LWA access token sent in the 'x-amz-access-token' header
2. Regional base URL (sellingpartnerapi-na by default)
3. 401 (or 403 'Unauthorized') surfaces as AuthExpired
4. 429/5xx retried with Retry-After or exponential backoff, then RateLimited
"""

import os
import time
from datetime import datetime

import requests

from config.sync_config import SyncConfig

from .errors import AuthExpired, ProviderError, RateLimited
from .logging_config import get_logger
from .report_parser import decode_document

logger = get_logger(__name__)

SP_API_BASE = os.getenv("SP_API_ENDPOINT", "https://sellingpartnerapi-na.amazon.com")
USER_AGENT = "reclaim/1.0 (Language=Python)"

# Minimum spacing between calls
MIN_REQUEST_INTERVAL = 0.5

REIMBURSEMENTS_REPORT = "GET_FBA_REIMBURSEMENTS_DATA"


def _iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class SpApiClient:
    """Client for the Selling Partner API endpoints used by fulfillment sync."""

    def __init__(
        self,
        access_token: str,
        marketplace_id: str,
        api_base: str | None = None,
        config: SyncConfig | None = None,
        session: requests.Session | None = None,
        sleep=time.sleep,
        min_interval: float = MIN_REQUEST_INTERVAL,
    ):
        self.access_token = access_token
        self.marketplace_id = marketplace_id
        self.api_base = (api_base or SP_API_BASE).rstrip("/")
        self.config = config or SyncConfig()
        self.session = session or requests.Session()
        self._sleep = sleep
        self._min_interval = min_interval
        self._last_request_time = 0.0

    def _get_headers(self) -> dict:
        return {
            "x-amz-access-token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _rate_limit(self):
        """Ensure calls are spaced by at least the minimum interval."""
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < self._min_interval:
            self._sleep(self._min_interval - elapsed)
        self._last_request_time = time.monotonic()

    def _make_request(
        self, method: str, endpoint: str, params: dict = None, data: dict = None
    ) -> dict:
        """Make rate-limited API request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API path (e.g., '/reports/2021-06-30/reports')
            params: Query parameters
            data: JSON body for POST

        Returns:
            API response as dictionary

        Raises:
            AuthExpired: Token rejected
            RateLimited: Throttling persisted past the retry budget
            ProviderError: Any other failure
        """
        url = f"{self.api_base}{endpoint}"
        delay = 1
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            self._rate_limit()
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    params=params,
                    json=data,
                    timeout=30,
                )
            except requests.RequestException as e:
                if attempt >= max_retries:
                    raise ProviderError(f"SP-API request failed: {e}") from e
                self._sleep(delay)
                delay *= self.config.backoff_multiplier
                continue

            if response.status_code == 401 or (
                response.status_code == 403 and _error_code(response) == "Unauthorized"
            ):
                raise AuthExpired(_error_message(response))

            if response.status_code == 429 or response.status_code >= 500:
                if attempt >= max_retries:
                    if response.status_code == 429:
                        raise RateLimited(
                            f"SP-API throttled {endpoint} after {max_retries} retries"
                        )
                    raise ProviderError(
                        _error_message(response), status_code=response.status_code
                    )
                retry_after = response.headers.get("Retry-After")
                wait = int(retry_after) if retry_after and retry_after.isdigit() else delay
                logger.warning(
                    f"SP-API {response.status_code} on {endpoint}, retrying in {wait}s "
                    f"(attempt {attempt + 1}/{max_retries})"
                )
                self._sleep(wait)
                delay *= self.config.backoff_multiplier
                continue

            if not response.ok:
                raise ProviderError(
                    _error_message(response), status_code=response.status_code
                )

            return response.json() if response.content else {}

        raise ProviderError(f"SP-API request to {endpoint} exhausted retries")

    # ========================================================================
    # Sellers
    # ========================================================================

    def get_seller_id(self) -> str | None:
        """Selling partner ID from marketplace participations, if available."""
        try:
            body = self._make_request("GET", "/sellers/v1/marketplaceParticipations")
        except ProviderError as e:
            logger.warning(f"Could not fetch seller ID: {e}")
            return None

        for participation in body.get("payload", []):
            seller_id = (participation.get("seller") or {}).get("sellerId")
            if seller_id:
                return seller_id
        return None

    # ========================================================================
    # Reports API (2021-06-30)
    # ========================================================================

    def create_report(
        self,
        report_type: str,
        data_start_time: datetime,
        data_end_time: datetime | None = None,
    ) -> str:
        """Request report generation. Returns the report ID."""
        body = {
            "reportType": report_type,
            "marketplaceIds": [self.marketplace_id],
            "dataStartTime": _iso(data_start_time),
        }
        if data_end_time:
            body["dataEndTime"] = _iso(data_end_time)

        result = self._make_request("POST", "/reports/2021-06-30/reports", data=body)
        report_id = result.get("reportId")
        if not report_id:
            raise ProviderError("SP-API did not return a reportId")
        return report_id

    def get_report(self, report_id: str) -> dict:
        """Report status (processingStatus, reportDocumentId)."""
        return self._make_request("GET", f"/reports/2021-06-30/reports/{report_id}")

    def get_report_document(self, document_id: str) -> dict:
        """Document handle (url, compressionAlgorithm)."""
        return self._make_request(
            "GET", f"/reports/2021-06-30/documents/{document_id}"
        )

    def download_report_document(self, document_id: str) -> str:
        """Fetch a report document and return its text, gunzipped if needed."""
        handle = self.get_report_document(document_id)
        url = handle.get("url")
        if not url:
            raise ProviderError(f"Report document {document_id} has no download url")

        try:
            # Pre-signed URL: no SP-API headers
            response = self.session.get(url, timeout=60)
        except requests.RequestException as e:
            raise ProviderError(f"Report document download failed: {e}") from e
        if not response.ok:
            raise ProviderError(
                f"Report document download failed with {response.status_code}",
                status_code=response.status_code,
            )

        return decode_document(response.content, handle.get("compressionAlgorithm"))

    # ========================================================================
    # FBA Inbound (v0)
    # ========================================================================

    def list_shipments(
        self,
        updated_after: datetime,
        updated_before: datetime,
        statuses=("CLOSED",),
    ):
        """Yield inbound shipments updated in a window, following NextToken."""
        params = {
            "MarketplaceId": self.marketplace_id,
            "QueryType": "DATE_RANGE",
            "LastUpdatedAfter": _iso(updated_after),
            "LastUpdatedBefore": _iso(updated_before),
            "ShipmentStatusList": ",".join(statuses),
        }

        while True:
            result = self._make_request("GET", "/fba/inbound/v0/shipments", params=params)
            payload = result.get("payload", {})
            yield from payload.get("ShipmentData", [])

            next_token = payload.get("NextToken")
            if not next_token:
                break
            params = {
                "MarketplaceId": self.marketplace_id,
                "QueryType": "NEXT_TOKEN",
                "NextToken": next_token,
            }

    def list_shipment_items(self, shipment_id: str) -> list:
        """All items for one shipment, following NextToken."""
        items = []
        params = {"MarketplaceId": self.marketplace_id}

        while True:
            result = self._make_request(
                "GET", f"/fba/inbound/v0/shipments/{shipment_id}/items", params=params
            )
            payload = result.get("payload", {})
            items.extend(payload.get("ItemData", []))

            next_token = payload.get("NextToken")
            if not next_token:
                return items
            params = {"MarketplaceId": self.marketplace_id, "NextToken": next_token}

    # ========================================================================
    # Catalog Items (2022-04-01)
    # ========================================================================

    def get_catalog_item_name(self, identifier: str) -> str | None:
        """Best-effort product title lookup. Failures yield None."""
        try:
            result = self._make_request(
                "GET",
                f"/catalog/2022-04-01/items/{identifier}",
                params={
                    "marketplaceIds": self.marketplace_id,
                    "includedData": "summaries",
                },
            )
        except (ProviderError, RateLimited) as e:
            logger.debug(f"Catalog lookup failed for {identifier}: {e}")
            return None

        summaries = result.get("summaries") or []
        if not summaries:
            return None
        return summaries[0].get("itemName") or summaries[0].get("title")


def _error_code(response) -> str | None:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return None
    return errors[0].get("code") if errors else None


def _error_message(response) -> str:
    error_msg = f"SP-API request failed: {response.status_code}"
    try:
        error_data = response.json()
    except ValueError:
        return f"{error_msg} - {response.text[:200]}"

    if "errors" in error_data:
        details = ", ".join(e.get("message", "") for e in error_data["errors"])
        return f"{error_msg} - {details}"
    if "message" in error_data:
        return f"{error_msg} - {error_data['message']}"
    return f"{error_msg} - {response.text[:200]}"
