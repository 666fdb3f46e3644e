"""Integration tests for extraction and duplicate resolution.

Tests critical resolver behavior:
- True duplicates (same date, vendor, original file name, line items) are removed
- A single differing field keeps both invoices
- Missing dates route to needs_review
- Service outages leave the invoice pending for retry
"""

from datetime import date

import pytest

import database
from integrations.errors import ExtractionUnavailable
from integrations.invoice_extractor import ExtractedInvoice
from integrations.invoice_ingestion import store_invoice
from integrations.invoice_resolver import (
    OUTCOME_DUPLICATE,
    OUTCOME_MISSING,
    STATUS_COMPLETED,
    STATUS_NEEDS_REVIEW,
    STATUS_PENDING,
    analyze_invoice,
    canonical_line_items,
    retry_pending_invoices,
)
from tests.conftest import OWNER_ID

LINE_ITEMS = [{"description": "Widget", "quantity": "2", "total": "20.00"}]


def _extracted(**overrides):
    fields = {
        "invoice_number": "INV-1",
        "invoice_date": date(2025, 1, 31),
        "vendor": "Acme",
        "line_items": list(LINE_ITEMS),
    }
    fields.update(overrides)
    return ExtractedInvoice(**fields)


@pytest.fixture
def extractor(mocker):
    return mocker.Mock()


def _store(file_name="invoice.pdf"):
    return store_invoice(OWNER_ID, file_name, b"%PDF", "application/pdf")


def test_canonical_line_items_ignores_key_order():
    assert canonical_line_items([{"b": 1, "a": 2}]) == canonical_line_items([{"a": 2, "b": 1}])
    assert canonical_line_items(None) == "[]"


def test_true_duplicate_is_removed(memory_store, extractor):
    first = _store()
    second = _store()
    extractor.extract.return_value = _extracted()

    assert analyze_invoice(first, extractor).status == STATUS_COMPLETED
    outcome = analyze_invoice(second, extractor)

    assert outcome.status == OUTCOME_DUPLICATE
    assert outcome.duplicate_of == first
    assert database.get_invoice(second) is None
    assert list(memory_store.objects) == [f"{OWNER_ID}/invoice.pdf"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"line_items": [{"description": "Widget", "quantity": "2", "total": "21.00"}]},
        {"vendor": "Acme Holdings"},
        {"invoice_date": date(2025, 2, 1)},
    ],
)
def test_one_differing_field_keeps_both(memory_store, extractor, overrides):
    first = _store()
    second = _store()
    extractor.extract.side_effect = [_extracted(), _extracted(**overrides)]

    analyze_invoice(first, extractor)
    outcome = analyze_invoice(second, extractor)

    assert outcome.status == STATUS_COMPLETED
    assert len(database.get_invoices(OWNER_ID)) == 2


def test_different_original_file_name_keeps_both(memory_store, extractor):
    first = _store("invoice.pdf")
    second = _store("statement.pdf")
    extractor.extract.return_value = _extracted()

    analyze_invoice(first, extractor)

    assert analyze_invoice(second, extractor).status == STATUS_COMPLETED


def test_missing_date_needs_review(memory_store, extractor):
    invoice_id = _store()
    extractor.extract.return_value = _extracted(invoice_date=None)

    outcome = analyze_invoice(invoice_id, extractor)

    assert outcome.status == STATUS_NEEDS_REVIEW
    invoice = database.get_invoice(invoice_id)
    assert invoice["analysis_status"] == STATUS_NEEDS_REVIEW
    assert invoice["vendor"] == "Acme"


def test_identical_undated_invoices_both_kept_for_review(memory_store, extractor):
    first = _store()
    second = _store()
    extractor.extract.return_value = _extracted(invoice_date=None)

    analyze_invoice(first, extractor)
    outcome = analyze_invoice(second, extractor)

    assert outcome.status == STATUS_NEEDS_REVIEW
    assert outcome.duplicate_of is None
    statuses = [inv["analysis_status"] for inv in database.get_invoices(OWNER_ID)]
    assert statuses == [STATUS_NEEDS_REVIEW, STATUS_NEEDS_REVIEW]
    assert len(memory_store.objects) == 2


def test_service_outage_leaves_invoice_pending(memory_store, extractor):
    invoice_id = _store()
    extractor.extract.side_effect = ExtractionUnavailable("gateway timeout")

    outcome = analyze_invoice(invoice_id, extractor)

    assert outcome.status == STATUS_PENDING
    invoice = database.get_invoice(invoice_id)
    assert invoice["analysis_status"] == STATUS_PENDING
    assert invoice["analysis_error"] == "gateway timeout"


def test_missing_blob_leaves_invoice_pending(memory_store, extractor):
    invoice_id = _store()
    memory_store.objects.clear()

    assert analyze_invoice(invoice_id, extractor).status == STATUS_PENDING
    extractor.extract.assert_not_called()


def test_unknown_invoice(extractor):
    assert analyze_invoice(999, extractor).status == OUTCOME_MISSING


def test_retry_pending_redispatches(memory_store, extractor):
    pending = _store("a.pdf")
    done = _store("b.pdf")
    extractor.extract.return_value = _extracted()
    analyze_invoice(done, extractor)
    dispatched = []

    result = retry_pending_invoices(OWNER_ID, dispatch=dispatched.append)

    assert dispatched == [pending]
    assert result == {"dispatched": 1, "errors": []}
