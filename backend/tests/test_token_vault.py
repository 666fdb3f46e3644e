"""Tests for token encryption at rest."""

import base64

import pytest

from integrations.errors import VaultError
from integrations.token_vault import (
    TokenVault,
    decrypt_token,
    derive_key,
    encrypt_token,
)


def test_round_trip_uses_fresh_nonce():
    vault = TokenVault.from_secret("a passphrase that is not base64 sized")

    first = vault.encrypt("refresh-token")
    second = vault.encrypt("refresh-token")

    assert first != second
    assert vault.decrypt(first) == "refresh-token"
    assert vault.decrypt(second) == "refresh-token"


def test_ciphertext_never_contains_plaintext():
    sealed = encrypt_token("super-secret-refresh-token")

    assert "super-secret" not in sealed
    assert "super-secret" not in base64.b64decode(sealed).decode("latin-1")
    assert decrypt_token(sealed) == "super-secret-refresh-token"


def test_wrong_key_fails_loudly():
    sealed = TokenVault(b"a" * 32).encrypt("token")

    with pytest.raises(VaultError, match="authentication failed"):
        TokenVault(b"b" * 32).decrypt(sealed)


def test_corrupted_nonce_fails_loudly():
    vault = TokenVault(b"a" * 32)
    raw = bytearray(base64.b64decode(vault.encrypt("token")))
    raw[0] ^= 0xFF

    with pytest.raises(VaultError):
        vault.decrypt(base64.b64encode(bytes(raw)).decode("ascii"))


@pytest.mark.parametrize("value", ["not base64!!", base64.b64encode(b"short").decode()])
def test_malformed_ciphertext_rejected(value):
    with pytest.raises(VaultError):
        TokenVault(b"a" * 32).decrypt(value)


def test_none_passes_through():
    assert encrypt_token(None) is None
    assert decrypt_token(None) is None


def test_derive_key_accepts_raw_base64_key():
    raw = b"z" * 32
    assert derive_key(base64.urlsafe_b64encode(raw).decode()) == raw


def test_derive_key_requires_secret():
    with pytest.raises(VaultError):
        derive_key("")
