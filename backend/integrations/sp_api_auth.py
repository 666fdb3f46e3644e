"""
Fulfillment Platform (Amazon SP-API) OAuth Module

Login-with-Amazon token exchange and refresh for seller credentials, plus
the access-token cache kept (encrypted) on the credential row.
"""

import os
from datetime import UTC, datetime, timedelta

import requests
from dotenv import load_dotenv

import database

from .errors import AuthExpired, NotConnected, ProviderError
from .logging_config import get_logger
from .token_vault import decrypt_token, encrypt_token

load_dotenv(override=False)

logger = get_logger(__name__)

LWA_TOKEN_URL = "https://api.amazon.com/auth/o2/token"

# Refresh when the cached token expires within this buffer
EXPIRY_BUFFER = timedelta(minutes=5)


def get_client_credentials() -> tuple[str, str]:
    """
    LWA application credentials from the environment.

    Raises:
        ValueError: If either value is missing
    """
    client_id = os.getenv("AMAZON_CLIENT_ID")
    client_secret = os.getenv("AMAZON_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise ValueError("AMAZON_CLIENT_ID or AMAZON_CLIENT_SECRET not configured")
    return client_id, client_secret


def _token_request(data: dict) -> dict:
    try:
        response = requests.post(
            LWA_TOKEN_URL,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=10,
        )
    except requests.RequestException as e:
        raise ProviderError(f"LWA token endpoint unreachable: {e}") from e

    if response.status_code in (400, 401):
        try:
            error = response.json().get("error", "")
        except ValueError:
            error = ""
        if response.status_code == 401 or error in ("invalid_grant", "unauthorized_client"):
            raise AuthExpired(f"Fulfillment platform rejected the token ({error or 401})")
        raise ProviderError(
            f"LWA token request failed: {error or response.text[:200]}",
            status_code=response.status_code,
        )
    if not response.ok:
        raise ProviderError(
            f"LWA token request failed with {response.status_code}",
            status_code=response.status_code,
        )

    token_data = response.json()
    token_data["expires_at"] = datetime.now(UTC) + timedelta(
        seconds=int(token_data.get("expires_in", 3600))
    )
    return token_data


def exchange_code_for_tokens(code: str, redirect_uri: str) -> dict:
    """
    Exchange a seller authorization code for tokens.

    Returns:
        Dict with access_token, refresh_token, expires_at
    """
    client_id, client_secret = get_client_credentials()
    return _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
        }
    )


def refresh_access_token(refresh_token: str) -> dict:
    """
    Refresh an LWA access token.

    Raises:
        AuthExpired: When the refresh token is rejected
    """
    client_id, client_secret = get_client_credentials()
    return _token_request(
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
        }
    )


def is_token_expired(token_expiry) -> bool:
    if token_expiry is None:
        return True
    if token_expiry.tzinfo is None:
        token_expiry = token_expiry.replace(tzinfo=UTC)
    return token_expiry <= datetime.now(UTC) + EXPIRY_BUFFER


def get_valid_access_token(credential: dict) -> str:
    """
    Access token for a credential, refreshing when near expiry.

    Raises:
        NotConnected: If the credential is revoked
        AuthExpired: If the refresh token is rejected (credential is revoked)
    """
    if credential.get("status") != "active":
        raise NotConnected("Fulfillment platform credential needs re-authorization")

    if credential.get("encrypted_access_token") and not is_token_expired(
        credential.get("token_expiry")
    ):
        return decrypt_token(credential["encrypted_access_token"])

    refresh_token = decrypt_token(credential["encrypted_refresh_token"])
    try:
        tokens = refresh_access_token(refresh_token)
    except AuthExpired:
        database.mark_credential_revoked(credential["owner_id"])
        logger.warning(
            "Fulfillment refresh token rejected; credential revoked",
            extra={"owner_id": credential["owner_id"]},
        )
        raise

    database.update_credential_tokens(
        credential["owner_id"],
        encrypted_access_token=encrypt_token(tokens["access_token"]),
        token_expiry=tokens["expires_at"],
    )
    return tokens["access_token"]
