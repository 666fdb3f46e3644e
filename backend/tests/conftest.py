"""Core test fixtures.

Provides reusable fixtures for the Flask test client, an isolated database
per test, the token vault, HTTP mocking, and builders for mailbox and
provider test doubles.

CRITICAL: Tests never touch a configured database. Every test gets a fresh
SQLite file created from the model metadata.
"""

import base64
import os
import tempfile
from datetime import UTC, datetime, timedelta

# CRITICAL: Set test mode BEFORE importing database modules
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="reclaim-logs-"))
os.environ["ENCRYPTION_KEY"] = base64.urlsafe_b64encode(b"k" * 32).decode("ascii")
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

import pytest
import responses
from flask import Flask

import database
from database.base import Base, configure_engine
from integrations.document_store import object_key
from integrations.errors import StorageError
from integrations.mail_provider import (
    AttachmentInfo,
    MailProvider,
    MessageDetail,
    MessagePage,
    MessageStub,
    TokenGrant,
)
from integrations.token_vault import encrypt_token, reset_vault

OWNER_ID = "owner-1"


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def test_db(tmp_path):
    """Fresh schema in a throwaway SQLite file for each test."""
    from database import models  # noqa: F401

    engine = configure_engine(f"sqlite:///{tmp_path / 'reclaim_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def vault():
    """Vault keyed from the test ENCRYPTION_KEY."""
    reset_vault()
    yield
    reset_vault()


# ============================================================================
# FLASK TEST CLIENT FIXTURES
# ============================================================================


@pytest.fixture(scope="session")
def app() -> Flask:
    """Flask app with test configuration."""
    from app import app as flask_app

    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app: Flask):
    """Flask test client for making HTTP requests.

    Example:
        def test_health_endpoint(client):
            response = client.get('/api/health')
            assert response.status_code == 200
    """
    return app.test_client()


# ============================================================================
# API MOCKING FIXTURES
# ============================================================================


@pytest.fixture
def mock_responses():
    """Enable HTTP request mocking.

    Yields:
        RequestsMock: HTTP request mocking context manager
    """
    with responses.RequestsMock() as rsps:
        yield rsps


@pytest.fixture
def no_sleep():
    """Sleep stand-in that records requested delays."""
    calls = []

    def sleep(seconds):
        calls.append(seconds)

    sleep.calls = calls
    return sleep


# ============================================================================
# MAIL TEST DATA HELPERS
# ============================================================================


def make_mailbox(
    owner_id=OWNER_ID,
    provider="gmail",
    address="owner@example.com",
    access_token="access-token",
    refresh_token="refresh-token",
    expires_in=timedelta(hours=1),
) -> dict:
    """Insert a connected mailbox with a fresh token and return it."""
    mailbox_id = database.save_mailbox(
        owner_id=owner_id,
        provider=provider,
        connected_address=address,
        encrypted_access_token=encrypt_token(access_token),
        encrypted_refresh_token=encrypt_token(refresh_token),
        token_expiry=datetime.now(UTC) + expires_in,
    )
    return database.get_mailbox(mailbox_id)


class FakeMailProvider(MailProvider):
    """In-memory provider: messages keyed by id, attachments by (message, id)."""

    name = "gmail"

    def __init__(self, messages=None, attachments=None, server_side_keywords=False, **kwargs):
        super().__init__(**kwargs)
        self.messages = {m.id: m for m in (messages or [])}
        self.attachments = attachments or {}
        self.server_side_keywords = server_side_keywords
        self.detail_calls = []
        self.download_calls = []
        self.refresh_error = None
        self.detail_errors = {}

    def exchange_code(self, code, redirect_uri, code_verifier=None):
        return TokenGrant("new-access", datetime.now(UTC) + timedelta(hours=1), "new-refresh")

    def refresh_access_token(self, refresh_token):
        if self.refresh_error:
            raise self.refresh_error
        return TokenGrant("refreshed-access", datetime.now(UTC) + timedelta(hours=1))

    def get_profile_address(self):
        return "owner@example.com"

    def search_messages(self, query, page_token=None, page_size=100):
        sender = query.get("sender") if isinstance(query, dict) else None
        stubs = [
            MessageStub(m.id, m.thread_id, m.sender_email)
            for m in self.messages.values()
            if sender is None or m.sender_email == sender
        ]
        return MessagePage(messages=stubs, next_page_token=None)

    def get_message_detail(self, message_id):
        self.detail_calls.append(message_id)
        if message_id in self.detail_errors:
            raise self.detail_errors[message_id]
        return self.messages[message_id]

    def download_attachment(self, message_id, attachment_id):
        self.download_calls.append((message_id, attachment_id))
        payload = self.attachments[(message_id, attachment_id)]
        if isinstance(payload, Exception):
            raise payload
        return payload

    def build_discovery_query(self, since, exclude_addresses=()):
        return {"since": since, "exclude": list(exclude_addresses)}

    def build_supplier_query(self, sender_email, since):
        return {"sender": sender_email, "since": since}


def make_message(
    message_id,
    sender,
    subject="Invoice #100",
    attachments=(("invoice.pdf", "application/pdf"),),
    snippet="",
) -> MessageDetail:
    return MessageDetail(
        id=message_id,
        thread_id=f"t-{message_id}",
        subject=subject,
        sender_email=sender,
        received_at=datetime(2025, 3, 1, tzinfo=UTC),
        snippet=snippet,
        attachments=[
            AttachmentInfo(f"att-{i}", name, mime, 1024)
            for i, (name, mime) in enumerate(attachments)
        ],
    )


@pytest.fixture
def fake_provider():
    return FakeMailProvider


# ============================================================================
# DOCUMENT STORE
# ============================================================================


class MemoryDocumentStore:
    """Dict-backed stand-in for the object store with the same no-overwrite rule."""

    def __init__(self):
        self.objects = {}

    def put_document(self, owner_id, file_name, data, content_type="application/pdf"):
        storage_path = object_key(owner_id, file_name)
        if storage_path in self.objects:
            return None
        self.objects[storage_path] = data
        return storage_path

    def get_document(self, storage_path):
        if storage_path not in self.objects:
            raise StorageError(f"Failed to read {storage_path}: NoSuchKey")
        return self.objects[storage_path]

    def delete_document(self, storage_path):
        self.objects.pop(storage_path, None)


@pytest.fixture
def memory_store(mocker):
    store = MemoryDocumentStore()
    for name in ("put_document", "get_document", "delete_document"):
        mocker.patch(f"integrations.document_store.{name}", side_effect=getattr(store, name))
    return store
