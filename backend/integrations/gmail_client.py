"""
Gmail API Client Module

Gmail implementation of the mail provider adapter: OAuth token exchange and
refresh, search with nextPageToken pagination, message detail (a second call
after search) and base64url attachment download.
"""

import base64
import os
from datetime import UTC, datetime

from dotenv import load_dotenv

from .errors import AuthExpired, ProviderError
from .mail_provider import (
    AttachmentInfo,
    MailProvider,
    MessageDetail,
    MessagePage,
    MessageStub,
    TokenGrant,
    expires_at_from,
    extract_sender_address,
)

# Load environment variables (Docker env vars take precedence)
load_dotenv(override=False)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"

INVOICE_FILENAME_TERMS = ("invoice", "bill", "receipt", "inv")
INVOICE_SUBJECT_TERMS = ("invoice", "receipt", "bill")
INVOICE_BODY_PHRASES = ("amount due", "balance due")


def build_discovery_query(since: datetime, exclude_addresses=()) -> str:
    """
    Build Gmail search query for candidate supplier mail.

    Matches PDF attachments whose filename or subject carries an invoice
    keyword, or whose body mentions an amount/balance due.
    """
    filename_terms = " OR ".join(INVOICE_FILENAME_TERMS)
    subject_terms = " OR ".join(INVOICE_SUBJECT_TERMS)
    body_terms = " OR ".join(f'"{p}"' for p in INVOICE_BODY_PHRASES)

    query = (
        "has:attachment filename:pdf -in:trash -in:spam -label:promotions -from:me "
        f"(filename:({filename_terms}) OR subject:({subject_terms}) OR {body_terms})"
    )
    for address in exclude_addresses:
        query = f"{query} -from:{address}"

    return f"{query} after:{since.strftime('%Y/%m/%d')}"


def build_supplier_query(sender_email: str, since: datetime) -> str:
    """Build Gmail search query for one supplier's PDF mail."""
    return (
        f"from:{sender_email} has:attachment filename:pdf -in:trash -in:spam "
        f"after:{since.strftime('%Y/%m/%d')}"
    )


def _headers_to_dict(headers: list) -> dict:
    return {h.get("name", "").lower(): h.get("value", "") for h in headers or []}


def _collect_attachments(parts: list, found: list):
    """Recursively extract attachment info from MIME parts."""
    for part in parts or []:
        body = part.get("body", {})
        attachment_id = body.get("attachmentId")
        filename = part.get("filename")
        if filename and attachment_id:
            found.append(
                AttachmentInfo(
                    attachment_id=attachment_id,
                    file_name=filename,
                    mime_type=part.get("mimeType"),
                    size=body.get("size"),
                )
            )
        if part.get("parts"):
            _collect_attachments(part["parts"], found)


class GmailProvider(MailProvider):
    """Gmail REST API adapter."""

    name = "gmail"
    server_side_keywords = True

    def __init__(self, *args, client_id=None, client_secret=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client_id = client_id or os.getenv("GOOGLE_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("GOOGLE_CLIENT_SECRET")

    def _require_client(self):
        if not self.client_id or not self.client_secret:
            raise ValueError("GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET not configured")

    def exchange_code(self, code, redirect_uri, code_verifier=None) -> TokenGrant:
        self._require_client()
        data = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        token_data = self._token_request(GOOGLE_TOKEN_URL, data)
        if not token_data.get("refresh_token"):
            raise ProviderError("Gmail did not return a refresh token")

        grant = TokenGrant(
            access_token=token_data["access_token"],
            expires_at=expires_at_from(token_data.get("expires_in")),
            refresh_token=token_data["refresh_token"],
        )
        self.set_access_token(grant.access_token)
        return grant

    def refresh_access_token(self, refresh_token) -> TokenGrant:
        self._require_client()
        if not refresh_token:
            raise AuthExpired("Gmail mailbox has no refresh token")

        token_data = self._token_request(
            GOOGLE_TOKEN_URL,
            {
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            },
        )
        grant = TokenGrant(
            access_token=token_data["access_token"],
            expires_at=expires_at_from(token_data.get("expires_in")),
            refresh_token=token_data.get("refresh_token"),
        )
        self.set_access_token(grant.access_token)
        return grant

    def get_profile_address(self) -> str:
        response = self._request("GET", f"{GMAIL_API_BASE}/users/me/profile")
        return response.json()["emailAddress"].lower()

    def search_messages(self, query, page_token=None, page_size=100) -> MessagePage:
        params = {"q": query, "maxResults": page_size}
        if page_token:
            params["pageToken"] = page_token

        response = self._request(
            "GET", f"{GMAIL_API_BASE}/users/me/messages", params=params
        )
        body = response.json()

        return MessagePage(
            messages=[
                MessageStub(id=m["id"], thread_id=m.get("threadId"))
                for m in body.get("messages", [])
            ],
            next_page_token=body.get("nextPageToken"),
        )

    def get_message_detail(self, message_id) -> MessageDetail:
        response = self._request(
            "GET",
            f"{GMAIL_API_BASE}/users/me/messages/{message_id}",
            params={"format": "full"},
        )
        message = response.json()
        payload = message.get("payload", {})
        headers = _headers_to_dict(payload.get("headers"))

        attachments = []
        _collect_attachments(payload.get("parts"), attachments)

        received_at = None
        if message.get("internalDate"):
            received_at = datetime.fromtimestamp(
                int(message["internalDate"]) / 1000, tz=UTC
            )

        return MessageDetail(
            id=message["id"],
            thread_id=message.get("threadId"),
            subject=headers.get("subject", ""),
            sender_email=extract_sender_address(headers.get("from")),
            received_at=received_at,
            snippet=message.get("snippet", ""),
            attachments=attachments,
        )

    def download_attachment(self, message_id, attachment_id) -> bytes:
        response = self._request(
            "GET",
            f"{GMAIL_API_BASE}/users/me/messages/{message_id}/attachments/{attachment_id}",
        )
        data = response.json().get("data")
        if not data:
            raise ProviderError(f"Gmail attachment {attachment_id} has no data")

        # Gmail omits base64url padding
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))

    def build_discovery_query(self, since, exclude_addresses=()):
        return build_discovery_query(since, exclude_addresses)

    def build_supplier_query(self, sender_email, since):
        return build_supplier_query(sender_email, since)
