"""Integration tests for the mail sync orchestrator.

Tests critical orchestration behavior:
- Initial vs refresh lookback windows
- Auth failure isolation between mailboxes of one owner
- Mid-run token rejection flags the mailbox, never the others
- Mailboxes awaiting re-authorization are skipped
"""

from datetime import timedelta

import pytest

import database
from config.sync_config import SyncConfig
from integrations.errors import AuthExpired, NotConnected, ProviderError
from integrations.mail_sync import (
    choose_lookback,
    discover_owner_suppliers,
    sync_all_mailboxes,
    sync_mailbox,
    sync_owner_mailboxes,
)
from tests.conftest import OWNER_ID, FakeMailProvider, make_mailbox, make_message

CONFIG = SyncConfig(initial_lookback_days=365, refresh_lookback_days=30)


@pytest.fixture(autouse=True)
def valid_content(mocker):
    mocker.patch(
        "integrations.invoice_ingestion.validate_invoice_content", return_value=(True, "ok")
    )


def _provider(*messages):
    provider = FakeMailProvider(messages=list(messages))
    for message in messages:
        for attachment in message.attachments:
            provider.attachments[(message.id, attachment.attachment_id)] = b"%PDF"
    return provider


def _factory(**providers):
    def factory(name, config=None):
        return providers[name]

    return factory


def test_choose_lookback():
    assert choose_lookback({"last_sync_at": None}, CONFIG) == ("initial", 365)
    assert choose_lookback({"last_sync_at": "2025-01-01"}, CONFIG) == ("refresh", 30)


def test_sync_runs_discovery_then_ingestion(memory_store):
    mailbox = make_mailbox()
    provider = _provider(make_message("m1", "billing@acme.com"))

    summary = sync_mailbox(mailbox, CONFIG, provider_factory=_factory(gmail=provider))

    assert summary["status"] == "completed"
    assert summary["sync_type"] == "initial"
    assert summary["discovery"]["suppliers_added"] == 1
    assert summary["ingestion"]["invoices_created"] == 1
    assert database.get_mailbox(mailbox["id"])["last_sync_at"] is not None


def test_second_sync_uses_refresh_window(memory_store):
    provider = _provider()
    factory = _factory(gmail=provider)
    mailbox = make_mailbox()

    sync_mailbox(mailbox, CONFIG, provider_factory=factory)
    summary = sync_mailbox(database.get_mailbox(mailbox["id"]), CONFIG, provider_factory=factory)

    assert summary["sync_type"] == "refresh"


def test_supplier_email_skips_discovery(memory_store):
    mailbox = make_mailbox()
    provider = _provider(make_message("m1", "billing@acme.com"))

    summary = sync_mailbox(
        mailbox,
        CONFIG,
        provider_factory=_factory(gmail=provider),
        supplier_email="billing@acme.com",
    )

    assert summary["discovery"] is None
    assert summary["ingestion"]["invoices_created"] == 1
    assert database.get_suppliers(OWNER_ID) == []


def test_expired_token_is_refreshed_before_sync(memory_store):
    mailbox = make_mailbox(expires_in=timedelta(minutes=-1))
    provider = _provider()

    sync_mailbox(mailbox, CONFIG, provider_factory=_factory(gmail=provider))

    assert provider.access_token == "refreshed-access"
    stored = database.get_mailbox(mailbox["id"])
    assert stored["token_expiry"] > mailbox["token_expiry"]


# ============================================================================
# FAILURE ISOLATION TESTS (TIER 1 CRITICAL)
# ============================================================================


def test_rejected_refresh_isolated_to_its_mailbox(memory_store):
    healthy = make_mailbox(provider="gmail", address="a@example.com")
    revoked = make_mailbox(
        provider="outlook", address="b@example.com", expires_in=timedelta(minutes=-1)
    )
    gmail = _provider(make_message("m1", "billing@acme.com"))
    outlook = _provider(make_message("o1", "billing@acme.com"))
    outlook.refresh_error = AuthExpired("invalid_grant")

    summary = sync_owner_mailboxes(
        OWNER_ID, CONFIG, provider_factory=_factory(gmail=gmail, outlook=outlook)
    )

    assert summary["synced"] == 1
    assert summary["needs_reauth"] == 1
    assert summary["invoices_created"] == 1
    assert database.get_mailbox(revoked["id"])["needs_reauth"] is True
    assert database.get_mailbox(healthy["id"])["needs_reauth"] is False
    assert outlook.detail_calls == []


def test_token_rejected_mid_run_flags_mailbox(memory_store):
    mailbox = make_mailbox()
    provider = _provider(make_message("m1", None))
    provider.detail_errors["m1"] = AuthExpired("token revoked")

    summary = sync_mailbox(mailbox, CONFIG, provider_factory=_factory(gmail=provider))

    assert summary["status"] == "needs_reauth"
    stored = database.get_mailbox(mailbox["id"])
    assert stored["needs_reauth"] is True
    assert stored["last_sync_at"] is None


def test_provider_failure_recorded_as_last_error(memory_store):
    class BrokenSearch(FakeMailProvider):
        def search_messages(self, query, page_token=None, page_size=100):
            raise ProviderError("search unavailable", status_code=503)

    mailbox = make_mailbox()

    summary = sync_mailbox(
        mailbox, CONFIG, provider_factory=_factory(gmail=BrokenSearch())
    )

    assert summary["status"] == "error"
    stored = database.get_mailbox(mailbox["id"])
    assert stored["last_error"] == "search unavailable"
    assert stored["last_sync_at"] is None


def test_mailbox_awaiting_reauth_is_skipped():
    mailbox = make_mailbox()
    database.mark_mailbox_needs_reauth(mailbox["id"])

    def factory(name, config=None):
        raise AssertionError("provider should not be built")

    summary = sync_mailbox(database.get_mailbox(mailbox["id"]), CONFIG, provider_factory=factory)

    assert summary["status"] == "needs_reauth"


def test_owner_without_mailboxes_is_not_connected():
    with pytest.raises(NotConnected):
        sync_owner_mailboxes(OWNER_ID, CONFIG)


def test_scheduled_sync_covers_all_owners(memory_store):
    make_mailbox(owner_id="owner-a", address="a@example.com")
    make_mailbox(owner_id="owner-b", address="b@example.com")
    flagged = make_mailbox(owner_id="owner-c", address="c@example.com")
    database.mark_mailbox_needs_reauth(flagged["id"])

    summary = sync_all_mailboxes(CONFIG, provider_factory=lambda name, config=None: _provider())

    assert len(summary["mailboxes"]) == 2
    assert summary["synced"] == 2


def test_discovery_only_run(memory_store):
    make_mailbox()
    provider = _provider(make_message("m1", "billing@acme.com"))

    result = discover_owner_suppliers(
        OWNER_ID, lookback_days=7, config=CONFIG, provider_factory=_factory(gmail=provider)
    )

    assert result["suppliers_added"] == 1
    assert provider.download_calls == []
