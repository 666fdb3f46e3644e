"""Tests for the invoice extraction client and its date fallback."""

import json
from datetime import date
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from config.extraction_config import ExtractionConfig
from integrations.errors import ExtractionUnavailable
from integrations.invoice_extractor import (
    InvoiceExtractor,
    find_invoice_date,
    normalize_extraction,
)


def _tool_response(arguments):
    call = SimpleNamespace(function=SimpleNamespace(arguments=json.dumps(arguments)))
    message = SimpleNamespace(tool_calls=[call])
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def openai_client(mocker):
    return mocker.MagicMock()


@pytest.fixture
def extractor(openai_client):
    return InvoiceExtractor(ExtractionConfig(api_key="test-key"), client=openai_client)


# ============================================================================
# DATE FALLBACK
# ============================================================================


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Invoice Date: 03/15/2025\nDue Date: 04/15/2025", date(2025, 3, 15)),
        ("Due Date: 04/15/2025\nInvoice Date: 03/15/2025", date(2025, 3, 15)),
        ("Invoice Date\nJanuary 5, 2025", date(2025, 1, 5)),
        ("Due Date: 01/02/2025  Date: 12 March 2025", date(2025, 3, 12)),
        ("Date: 3/4/31", date(1931, 3, 4)),
        ("Date: 3/4/29", date(2029, 3, 4)),
        ("Reference 2025-06-30", date(2025, 6, 30)),
        ("Due Date: 04/15/2025\nShip Date: 2025-04-01", None),
        ("No dates in here", None),
        (None, None),
    ],
)
def test_find_invoice_date(text, expected):
    assert find_invoice_date(text) == expected


def test_normalize_drops_null_strings_and_bad_values():
    extracted = normalize_extraction(
        {
            "invoice_number": "null",
            "invoice_date": "2025-13-40",
            "vendor": "  Acme Ltd ",
            "line_items": "not a list",
        },
        document_text="Invoice Date: 02/01/2025",
    )

    assert extracted.invoice_number is None
    assert extracted.invoice_date == date(2025, 2, 1)
    assert extracted.vendor == "Acme Ltd"
    assert extracted.line_items == []


def test_normalize_prefers_service_date():
    extracted = normalize_extraction(
        {"invoice_date": "2025-05-06", "line_items": [{"description": "x"}, "junk"]},
        document_text="Invoice Date: 02/01/2025",
    )

    assert extracted.invoice_date == date(2025, 5, 6)
    assert extracted.line_items == [{"description": "x"}]


# ============================================================================
# SERVICE CALLS
# ============================================================================


def test_pdf_text_is_sent_with_forced_tool_call(mocker, extractor, openai_client):
    mocker.patch(
        "integrations.invoice_extractor.extract_text", return_value="INVOICE 42 Acme"
    )
    openai_client.chat.completions.create.return_value = _tool_response(
        {
            "invoice_number": "42",
            "invoice_date": "2025-01-31",
            "vendor": "Acme",
            "line_items": [{"description": "Widget", "total": "10.00"}],
        }
    )

    extracted = extractor.extract(b"%PDF", "application/pdf")

    assert extracted.invoice_number == "42"
    assert extracted.invoice_date == date(2025, 1, 31)
    kwargs = openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["tool_choice"]["function"]["name"] == "extract_invoice_data"
    assert "INVOICE 42 Acme" in kwargs["messages"][1]["content"]


def test_images_are_sent_as_data_url(extractor, openai_client):
    openai_client.chat.completions.create.return_value = _tool_response(
        {"vendor": "Acme", "line_items": []}
    )

    extractor.extract(b"\x89PNG", "image/png")

    content = openai_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_unsupported_type_skips_service(extractor, openai_client):
    extracted = extractor.extract(b"PK", "application/zip")

    assert extracted.vendor is None
    openai_client.chat.completions.create.assert_not_called()


def test_connection_error_raises_extraction_unavailable(mocker, extractor, openai_client):
    mocker.patch("integrations.invoice_extractor.extract_text", return_value="Invoice")
    openai_client.chat.completions.create.side_effect = APIConnectionError(
        request=httpx.Request("POST", "https://extraction.example.test")
    )

    with pytest.raises(ExtractionUnavailable):
        extractor.extract(b"%PDF", "application/pdf")


def test_reply_without_tool_call_raises(mocker, extractor, openai_client):
    mocker.patch("integrations.invoice_extractor.extract_text", return_value="Invoice")
    message = SimpleNamespace(tool_calls=None)
    openai_client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=message)]
    )

    with pytest.raises(ExtractionUnavailable):
        extractor.extract(b"%PDF", "application/pdf")
