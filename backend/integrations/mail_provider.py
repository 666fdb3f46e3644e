"""
Mail Provider Adapter Interface

One capability set (token refresh, search, message detail, attachment
download) implemented by the Gmail and Outlook clients. Callers only ever see
the normalized dataclasses below; provider identity is resolved once, in
``get_mail_provider``.
"""

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import requests

from config.sync_config import SyncConfig

from .errors import AuthExpired, ProviderError, RateLimited
from .logging_config import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)
REQUEST_TIMEOUT = 60

_ANGLE_ADDRESS = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")
_BARE_ADDRESS = re.compile(r"[A-Za-z0-9._%+\-']+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")


def extract_sender_address(from_header: str | None) -> str | None:
    """
    Normalize a From header to a lowercase email address.

    Handles ``"Name" <user@host>``, ``<user@host>`` and bare ``user@host``.
    """
    if not from_header:
        return None

    match = _ANGLE_ADDRESS.search(from_header)
    if match:
        return match.group(1).strip().lower()

    match = _BARE_ADDRESS.search(from_header)
    if match:
        return match.group(0).lower()

    return None


@dataclass
class TokenGrant:
    """Result of a code exchange or refresh."""

    access_token: str
    expires_at: datetime
    refresh_token: str | None = None


@dataclass
class AttachmentInfo:
    attachment_id: str
    file_name: str
    mime_type: str | None = None
    size: int | None = None

    @property
    def is_pdf(self) -> bool:
        return (self.mime_type or "").lower() == "application/pdf" or (
            self.file_name or ""
        ).lower().endswith(".pdf")


@dataclass
class MessageStub:
    """Search hit. ``sender_email`` is filled when the provider returns it inline."""

    id: str
    thread_id: str | None = None
    sender_email: str | None = None


@dataclass
class MessagePage:
    messages: list[MessageStub]
    next_page_token: str | None = None


@dataclass
class MessageDetail:
    id: str
    thread_id: str | None
    subject: str
    sender_email: str | None
    received_at: datetime | None = None
    snippet: str = ""
    attachments: list[AttachmentInfo] = field(default_factory=list)

    @property
    def pdf_attachments(self) -> list[AttachmentInfo]:
        return [a for a in self.attachments if a.is_pdf]


def expires_at_from(expires_in) -> datetime:
    return datetime.now(UTC) + timedelta(seconds=int(expires_in or 3600))


class MailProvider(ABC):
    """Base class for mail provider adapters."""

    name = None
    # True when build_discovery_query already applies the invoice keyword
    # heuristic server-side
    server_side_keywords = False

    def __init__(
        self,
        access_token: str | None = None,
        config: SyncConfig | None = None,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ):
        self.access_token = access_token
        self.config = config or SyncConfig()
        self.session = session or requests.Session()
        self._sleep = sleep

    def set_access_token(self, access_token: str):
        self.access_token = access_token

    # ------------------------------------------------------------------
    # Provider operations
    # ------------------------------------------------------------------

    @abstractmethod
    def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str | None = None
    ) -> TokenGrant:
        """Exchange an OAuth authorization code for tokens."""

    @abstractmethod
    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Refresh the access token. Raises AuthExpired when rejected."""

    @abstractmethod
    def get_profile_address(self) -> str:
        """Address of the authenticated mailbox."""

    @abstractmethod
    def search_messages(
        self, query, page_token: str | None = None, page_size: int = 100
    ) -> MessagePage:
        """One page of message stubs for a provider-native query."""

    @abstractmethod
    def get_message_detail(self, message_id: str) -> MessageDetail:
        """Headers plus attachment manifest."""

    @abstractmethod
    def download_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Raw attachment bytes."""

    @abstractmethod
    def build_discovery_query(self, since: datetime, exclude_addresses=()):
        """Query for messages that may come from suppliers."""

    @abstractmethod
    def build_supplier_query(self, sender_email: str, since: datetime):
        """Query for attachment-bearing messages from one supplier."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    extract_sender_address = staticmethod(extract_sender_address)

    def iter_messages(self, query, max_pages: int | None = None, page_size=None):
        """Yield stubs across pages, stopping after ``max_pages`` pages."""
        page_size = page_size or self.config.page_size
        page_token = None
        pages = 0

        while True:
            page = self.search_messages(query, page_token=page_token, page_size=page_size)
            pages += 1
            yield from page.messages

            page_token = page.next_page_token
            if not page_token:
                break
            if max_pages is not None and pages >= max_pages:
                logger.debug(f"{self.name}: page cap {max_pages} reached")
                break

    def _auth_headers(self) -> dict:
        if not self.access_token:
            raise AuthExpired(f"{self.name}: no access token")
        return {"Authorization": f"Bearer {self.access_token}"}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Execute an API request with exponential backoff.

        Raises:
            AuthExpired: On 401
            RateLimited: When 429 persists past the retry budget
            ProviderError: On other non-success responses
        """
        headers = kwargs.pop("headers", {})
        headers.update(self._auth_headers())

        delay = 1
        max_retries = self.config.max_retries

        for attempt in range(max_retries + 1):
            try:
                response = self.session.request(
                    method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs
                )
            except requests.RequestException as e:
                if attempt >= max_retries:
                    raise ProviderError(f"{self.name} request failed: {e}") from e
                logger.warning(
                    f"{self.name} request failed (attempt {attempt + 1}/{max_retries}), "
                    f"retrying in {delay}s"
                )
                self._sleep(delay)
                delay *= self.config.backoff_multiplier
                continue

            if response.status_code == 401:
                raise AuthExpired(f"{self.name} rejected the access token")

            if response.status_code in RETRYABLE_STATUS:
                retry_after = _retry_after(response)
                if attempt >= max_retries:
                    if response.status_code == 429:
                        raise RateLimited(
                            f"{self.name} rate limit persisted after {max_retries} retries",
                            retry_after=retry_after,
                        )
                    raise ProviderError(
                        f"{self.name} returned {response.status_code}",
                        status_code=response.status_code,
                    )
                wait = retry_after if retry_after is not None else delay
                logger.warning(
                    f"{self.name} returned {response.status_code} "
                    f"(attempt {attempt + 1}/{max_retries}), retrying in {wait}s"
                )
                self._sleep(wait)
                delay *= self.config.backoff_multiplier
                continue

            if response.status_code >= 400:
                raise ProviderError(
                    f"{self.name} returned {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )

            return response

        raise ProviderError(f"{self.name} request exhausted retries")

    def _token_request(self, url: str, data: dict) -> dict:
        """POST to an OAuth token endpoint; rejected grants raise AuthExpired."""
        try:
            response = self.session.post(
                url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=10,
            )
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} token endpoint unreachable: {e}") from e

        if response.status_code in (400, 401):
            error = _json_or_empty(response).get("error", "")
            if response.status_code == 401 or error in ("invalid_grant", "unauthorized_client"):
                raise AuthExpired(f"{self.name} rejected the refresh token ({error or 401})")
            raise ProviderError(
                f"{self.name} token request failed: {error or response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.name} token request failed with {response.status_code}",
                status_code=response.status_code,
            )

        return response.json()


def _retry_after(response):
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return int(value)
    return None


def _json_or_empty(response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def get_mail_provider(provider: str, **kwargs) -> MailProvider:
    """Instantiate the adapter for a mailbox's provider."""
    from .gmail_client import GmailProvider
    from .outlook_client import OutlookProvider

    providers = {
        GmailProvider.name: GmailProvider,
        OutlookProvider.name: OutlookProvider,
    }
    provider_class = providers.get(provider)
    if provider_class is None:
        raise ValueError(f"Unsupported mail provider: {provider}")
    return provider_class(**kwargs)
