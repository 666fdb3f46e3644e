"""Tests for fulfillment report parsing."""

import gzip
from datetime import date
from decimal import Decimal

import pytest

from integrations.errors import ProviderError
from integrations.report_parser import decode_document, parse_reimbursements, parse_tsv

REPORT = (
    "approval-date\treimbursement-id\tcase-id\tamazon-order-id\treason\tsku\tfnsku\t"
    "asin\tproduct-name\tcondition\tcurrency-unit\tamount-per-unit\tamount-total\t"
    "quantity-reimbursed-cash\tquantity-reimbursed-inventory\tquantity-reimbursed-total\n"
    "2025-02-03T10:00:00+00:00\t5551\tC-1\t\tLost_Warehouse\tSKU-1\tX001\tB0001\t"
    "Blue Widget\tNew\tUSD\t6.25\t12.50\t2\t0\t2\n"
    "2025-02-04T10:00:00+00:00\t5552\t\t\tDamaged_Warehouse\tSKU-2\tX002\tB0002\t"
    "\tNew\tUSD\tn/a\tn/a\t1\t0\tone\n"
)


def test_columns_are_located_by_header_name():
    [first, second] = parse_reimbursements(REPORT)

    assert first["claim_id"] == "5551"
    assert first["case_id"] == "C-1"
    assert first["sku"] == "SKU-1"
    assert first["asin"] == "B0001"
    assert first["item_name"] == "Blue Widget"
    assert first["amount"] == Decimal("12.50")
    assert first["quantity_reimbursed"] == 2
    assert first["claim_date"] == date(2025, 2, 3)
    assert first["status"] == "Approved"

    # Unparseable numerics fall back to zero, blank names to a placeholder
    assert second["amount"] == Decimal("0")
    assert second["quantity_reimbursed"] == 0
    assert second["item_name"] == "Unknown Item"
    assert second["case_id"] is None


def test_reordered_columns_parse_identically():
    reordered = (
        "amount-total\treimbursement-id\tapproval-date\n"
        "3.10\t777\t2025-01-09T00:00:00Z\n"
    )

    [claim] = parse_reimbursements(reordered)

    assert claim["claim_id"] == "777"
    assert claim["amount"] == Decimal("3.10")
    assert claim["claim_date"] == date(2025, 1, 9)


def test_short_rows_are_skipped():
    rows = parse_tsv("a\tb\tc\n1\t2\t3\n4\t5\n\n")

    assert rows == [{"a": "1", "b": "2", "c": "3"}]


def test_rows_without_reimbursement_id_are_ignored():
    text = "reimbursement-id\tamount-total\n\t4.00\n9\t1.00\n"

    assert [c["claim_id"] for c in parse_reimbursements(text)] == ["9"]


def test_empty_report():
    assert parse_reimbursements("") == []
    assert parse_tsv("\n\n") == []


def test_decode_document_gunzips_and_strips_bom():
    raw = "\ufeffreimbursement-id\n1\n".encode("utf-8")

    assert decode_document(gzip.compress(raw), "GZIP") == "reimbursement-id\n1\n"
    assert decode_document(raw, None) == "reimbursement-id\n1\n"


def test_placeholder_values_stay_text():
    rows = parse_tsv('sku\tproduct-name\tnote\nNA\t12" Widget\tnull\n')

    assert rows == [{"sku": "NA", "product-name": '12" Widget', "note": "null"}]


def test_blank_inner_cells_become_empty_strings():
    rows = parse_tsv("a\tb\tc\n1\t\t3\n")

    assert rows == [{"a": "1", "b": "", "c": "3"}]


def test_mislabelled_gzip_is_a_provider_error():
    with pytest.raises(ProviderError):
        decode_document(b"reimbursement-id\n1\n", "GZIP")
