"""
Mailbox OAuth helpers.

Connects mailboxes from an OAuth callback and hands out valid access tokens,
refreshing through the provider adapter when the stored token is near
expiry. Rejected refresh tokens flag the mailbox ``needs_reauth``.
"""

from datetime import UTC, datetime, timedelta

import database

from .errors import AuthExpired
from .logging_config import get_logger
from .mail_provider import MailProvider, get_mail_provider
from .token_vault import decrypt_token, encrypt_token

logger = get_logger(__name__)

# Refresh when the stored token expires within this buffer
EXPIRY_BUFFER = timedelta(minutes=5)


def is_token_expired(token_expiry) -> bool:
    if token_expiry is None:
        return True
    if token_expiry.tzinfo is None:
        token_expiry = token_expiry.replace(tzinfo=UTC)
    return token_expiry <= datetime.now(UTC) + EXPIRY_BUFFER


def connect_mailbox(
    owner_id: str,
    provider_name: str,
    code: str,
    redirect_uri: str,
    code_verifier: str | None = None,
    provider: MailProvider | None = None,
) -> dict:
    """
    Exchange an OAuth code and create (or re-authorize) the mailbox.

    Returns:
        Stored mailbox dict
    """
    provider = provider or get_mail_provider(provider_name)
    grant = provider.exchange_code(code, redirect_uri, code_verifier)
    address = provider.get_profile_address()

    mailbox_id = database.save_mailbox(
        owner_id=owner_id,
        provider=provider.name,
        connected_address=address,
        encrypted_access_token=encrypt_token(grant.access_token),
        encrypted_refresh_token=encrypt_token(grant.refresh_token),
        token_expiry=grant.expires_at,
    )
    logger.info(
        f"Connected {provider.name} mailbox {address}",
        extra={"owner_id": owner_id, "mailbox_id": mailbox_id},
    )
    return database.get_mailbox(mailbox_id)


def authorize_provider(mailbox: dict, provider: MailProvider) -> str:
    """
    Load a valid access token into ``provider``.

    Reuses the stored token while it is fresh so concurrent callers do not
    all refresh at once.

    Raises:
        AuthExpired: When the provider rejects the refresh token. The
            mailbox is flagged needs_reauth before re-raising.
    """
    if mailbox.get("encrypted_access_token") and not is_token_expired(
        mailbox.get("token_expiry")
    ):
        access_token = decrypt_token(mailbox["encrypted_access_token"])
        provider.set_access_token(access_token)
        return access_token

    refresh_token = decrypt_token(mailbox.get("encrypted_refresh_token"))
    try:
        grant = provider.refresh_access_token(refresh_token)
    except AuthExpired as e:
        database.mark_mailbox_needs_reauth(mailbox["id"], str(e))
        logger.warning(
            "Refresh token rejected; mailbox needs re-authorization",
            extra={"owner_id": mailbox["owner_id"], "mailbox_id": mailbox["id"]},
        )
        raise

    database.update_mailbox_tokens(
        mailbox["id"],
        encrypted_access_token=encrypt_token(grant.access_token),
        token_expiry=grant.expires_at,
        encrypted_refresh_token=encrypt_token(grant.refresh_token)
        if grant.refresh_token
        else None,
    )
    logger.debug(
        "Access token refreshed",
        extra={"owner_id": mailbox["owner_id"], "mailbox_id": mailbox["id"]},
    )
    return grant.access_token
