"""
Outlook (Microsoft Graph) Client Module

Outlook implementation of the mail provider adapter. Search requests expand
attachment metadata inline, so message detail for a search hit is served
from the page that returned it; attachment bytes arrive as standard base64
``contentBytes``.
"""

import base64
import os
from datetime import datetime

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
)

load_dotenv(override=False)

MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
OUTLOOK_SCOPE = (
    "https://graph.microsoft.com/Mail.Read "
    "https://graph.microsoft.com/User.Read offline_access"
)

MESSAGE_SELECT = "id,conversationId,subject,bodyPreview,from,receivedDateTime,hasAttachments"
ATTACHMENT_EXPAND = "attachments($select=id,name,contentType,size)"


def _iso_utc(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_discovery_query(since: datetime, exclude_addresses=()) -> dict:
    """
    Build Graph query parameters for candidate supplier mail.

    Graph $filter cannot match subject keywords and attachment names
    together, so only the attachment/date constraint runs server-side and
    the keyword heuristic is applied by the caller.
    """
    return {
        "$filter": f"hasAttachments eq true and receivedDateTime ge {_iso_utc(since)}",
        "$select": MESSAGE_SELECT,
        "$expand": ATTACHMENT_EXPAND,
    }


def build_supplier_query(sender_email: str, since: datetime) -> dict:
    """Build Graph query parameters for one supplier's attachment mail."""
    address = sender_email.replace("'", "''")
    return {
        "$filter": (
            f"hasAttachments eq true and from/emailAddress/address eq '{address}' "
            f"and receivedDateTime ge {_iso_utc(since)}"
        ),
        "$select": MESSAGE_SELECT,
        "$expand": ATTACHMENT_EXPAND,
    }


def _parse_received(value):
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class OutlookProvider(MailProvider):
    """Microsoft Graph mail adapter."""

    name = "outlook"

    def __init__(self, *args, client_id=None, client_secret=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client_id = client_id or os.getenv("MICROSOFT_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("MICROSOFT_CLIENT_SECRET")
        self._details = {}

    def _require_client(self):
        if not self.client_id or not self.client_secret:
            raise ValueError(
                "MICROSOFT_CLIENT_ID or MICROSOFT_CLIENT_SECRET not configured"
            )

    def exchange_code(self, code, redirect_uri, code_verifier=None) -> TokenGrant:
        self._require_client()
        data = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
            "scope": OUTLOOK_SCOPE,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        token_data = self._token_request(MICROSOFT_TOKEN_URL, data)
        if not token_data.get("refresh_token"):
            raise ProviderError("Outlook did not return a refresh token")

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
            raise AuthExpired("Outlook mailbox has no refresh token")

        token_data = self._token_request(
            MICROSOFT_TOKEN_URL,
            {
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "scope": OUTLOOK_SCOPE,
            },
        )
        # Microsoft rotates refresh tokens; keep the new one when given
        grant = TokenGrant(
            access_token=token_data["access_token"],
            expires_at=expires_at_from(token_data.get("expires_in")),
            refresh_token=token_data.get("refresh_token"),
        )
        self.set_access_token(grant.access_token)
        return grant

    def get_profile_address(self) -> str:
        response = self._request(
            "GET", f"{GRAPH_API_BASE}/me", params={"$select": "mail,userPrincipalName"}
        )
        body = response.json()
        return (body.get("mail") or body["userPrincipalName"]).lower()

    def search_messages(self, query, page_token=None, page_size=100) -> MessagePage:
        if page_token:
            # @odata.nextLink already carries every query option
            response = self._request("GET", page_token)
        else:
            params = dict(query)
            params["$top"] = page_size
            response = self._request("GET", f"{GRAPH_API_BASE}/me/messages", params=params)

        body = response.json()
        stubs = []
        for message in body.get("value", []):
            detail = self._to_detail(message)
            self._details[detail.id] = detail
            stubs.append(
                MessageStub(
                    id=detail.id,
                    thread_id=detail.thread_id,
                    sender_email=detail.sender_email,
                )
            )

        return MessagePage(messages=stubs, next_page_token=body.get("@odata.nextLink"))

    def get_message_detail(self, message_id) -> MessageDetail:
        cached = self._details.get(message_id)
        if cached is not None:
            return cached

        response = self._request(
            "GET",
            f"{GRAPH_API_BASE}/me/messages/{message_id}",
            params={"$select": MESSAGE_SELECT, "$expand": ATTACHMENT_EXPAND},
        )
        detail = self._to_detail(response.json())
        self._details[message_id] = detail
        return detail

    def download_attachment(self, message_id, attachment_id) -> bytes:
        response = self._request(
            "GET", f"{GRAPH_API_BASE}/me/messages/{message_id}/attachments/{attachment_id}"
        )
        content = response.json().get("contentBytes")
        if not content:
            raise ProviderError(f"Outlook attachment {attachment_id} has no content")
        return base64.b64decode(content)

    def build_discovery_query(self, since, exclude_addresses=()):
        return build_discovery_query(since, exclude_addresses)

    def build_supplier_query(self, sender_email, since):
        return build_supplier_query(sender_email, since)

    @staticmethod
    def _to_detail(message: dict) -> MessageDetail:
        sender = (message.get("from") or {}).get("emailAddress") or {}
        address = sender.get("address")

        return MessageDetail(
            id=message["id"],
            thread_id=message.get("conversationId"),
            subject=message.get("subject") or "",
            sender_email=address.lower() if address else None,
            received_at=_parse_received(message.get("receivedDateTime")),
            snippet=message.get("bodyPreview") or "",
            attachments=[
                AttachmentInfo(
                    attachment_id=a.get("id"),
                    file_name=a.get("name") or "",
                    mime_type=a.get("contentType"),
                    size=a.get("size"),
                )
                for a in message.get("attachments", [])
            ],
        )
