"""Tests for PDF text extraction and invoice content validation."""

import pytest

from integrations.pdf_text import (
    FIRST_PAGE_CONFIG,
    PdfParserConfig,
    extract_text,
    validate_invoice_content,
)


def test_unparseable_bytes_return_none():
    assert extract_text(b"definitely not a pdf") is None


@pytest.mark.parametrize(
    "text,expected",
    [
        ("PRO FORMA INVOICE\nTotal 100.00", (False, "pro_forma")),
        ("Pro-Forma Invoice #12", (False, "pro_forma")),
        ("proforma invoice", (False, "pro_forma")),
        ("Order confirmation\nThanks for shopping", (False, "missing_invoice_token")),
        ("TAX INVOICE\nInvoice No. 42", (True, "ok")),
    ],
)
def test_validation_reasons(mocker, text, expected):
    mocker.patch("integrations.pdf_text.extract_text", return_value=text)

    assert validate_invoice_content(b"%PDF") == expected


@pytest.mark.parametrize("text", [None, "", "   \n"])
def test_documents_without_text_are_accepted(mocker, text):
    mocker.patch("integrations.pdf_text.extract_text", return_value=text)

    assert validate_invoice_content(b"%PDF") == (True, "no_text")


def test_validation_reads_first_page_only(mocker):
    extract = mocker.patch("integrations.pdf_text.extract_text", return_value="Invoice")

    validate_invoice_content(b"%PDF")

    extract.assert_called_once_with(b"%PDF", FIRST_PAGE_CONFIG)
    assert FIRST_PAGE_CONFIG.max_pages == 1


def test_parser_config_is_immutable():
    config = PdfParserConfig(max_pages=2)

    with pytest.raises(AttributeError):
        config.max_pages = 5
