"""Encryption for OAuth tokens at rest.

Tokens are sealed with AES-GCM using a fresh 12-byte nonce per call:

    base64(nonce || ciphertext || tag)

``decrypt`` raises VaultError for a wrong key, corrupted nonce or truncated
blob; it never returns the stored value unchanged.
"""

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from dotenv import load_dotenv

from .errors import VaultError

load_dotenv(override=False)

_NONCE_SIZE = 12
_KEY_SIZE = 32


def derive_key(secret: str) -> bytes:
    """Derive a 256-bit AES key from ENCRYPTION_KEY.

    A urlsafe-base64 value that decodes to exactly 32 bytes is used as-is;
    any other string goes through HKDF-SHA256.
    """
    if not secret:
        raise VaultError("ENCRYPTION_KEY not configured")

    try:
        raw = base64.urlsafe_b64decode(secret.encode("ascii"))
        if len(raw) == _KEY_SIZE:
            return raw
    except (binascii.Error, ValueError, UnicodeEncodeError):
        pass

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"reclaim-token-vault",
    )
    return hkdf.derive(secret.encode("utf-8"))


class TokenVault:
    """Authenticated symmetric encryption for credentials."""

    def __init__(self, key: bytes):
        if len(key) != _KEY_SIZE:
            raise VaultError("Vault key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str) -> "TokenVault":
        return cls(derive_key(secret))

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        nonce = os.urandom(_NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        if ciphertext is None:
            return None

        try:
            raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise VaultError("Ciphertext is not valid base64") from e

        # 16-byte GCM tag must follow the nonce
        if len(raw) < _NONCE_SIZE + 16:
            raise VaultError("Ciphertext too short")

        nonce, sealed = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise VaultError("Token authentication failed") from e

        return plaintext.decode("utf-8")


_default_vault = None


def get_vault() -> TokenVault:
    """Process-wide vault built from ENCRYPTION_KEY."""
    global _default_vault
    if _default_vault is None:
        _default_vault = TokenVault.from_secret(os.getenv("ENCRYPTION_KEY", ""))
    return _default_vault


def reset_vault():
    """Drop the cached vault so the next call re-reads ENCRYPTION_KEY."""
    global _default_vault
    _default_vault = None


def encrypt_token(token: Optional[str]) -> Optional[str]:
    return get_vault().encrypt(token)


def decrypt_token(encrypted_token: Optional[str]) -> Optional[str]:
    return get_vault().decrypt(encrypted_token)
