"""
Fulfillment report parsing.

Reports are tab-separated with a header row. Columns are located by header
name so reordering on the platform side cannot shift values into the wrong
fields. Rows missing their trailing cells are skipped.
"""

import csv
import gzip
import io
import zlib
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import pandas as pd

from .errors import ProviderError
from .logging_config import get_logger

logger = get_logger(__name__)

REIMBURSEMENT_COLUMNS = {
    "reimbursement_id": "reimbursement-id",
    "case_id": "case-id",
    "approval_date": "approval-date",
    "asin": "asin",
    "sku": "sku",
    "product_name": "product-name",
    "amount_total": "amount-total",
    "quantity_reimbursed": "quantity-reimbursed-total",
}


def decode_document(content: bytes, compression: str | None = None) -> str:
    """Return report text, gunzipping when the handle says GZIP.

    Raises:
        ProviderError: Payload labelled GZIP is not valid gzip data
    """
    if compression and compression.upper() == "GZIP":
        try:
            content = gzip.decompress(content)
        except (OSError, EOFError, zlib.error) as e:
            raise ProviderError(f"Report document is not valid gzip data: {e}") from e
    return content.decode("utf-8-sig", errors="replace")


def parse_tsv(text: str) -> list[dict]:
    """
    Parse a tab-separated report into dicts keyed by header name.

    Only empty cells are treated as missing; values such as "n/a" are kept
    as text. A row whose last column is missing is short and is dropped.

    Returns:
        One dict per data row
    """
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep="\t",
            dtype=str,
            keep_default_na=False,
            na_values=[""],
            quoting=csv.QUOTE_NONE,
            index_col=False,
            on_bad_lines="skip",
        )
    except pd.errors.EmptyDataError:
        return []

    df.columns = [str(column).strip() for column in df.columns]
    if df.empty:
        return []

    short = df.iloc[:, -1].isna()
    if short.any():
        logger.debug(f"Skipped {int(short.sum())} short report rows")
    df = df[~short].fillna("")

    return [
        {column: value.strip() for column, value in row.items()}
        for row in df.to_dict(orient="records")
    ]


def _parse_decimal(value: str | None) -> Decimal:
    try:
        return Decimal(value) if value else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def _parse_int(value: str | None) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_reimbursements(text: str) -> list[dict]:
    """Map a GET_FBA_REIMBURSEMENTS_DATA report to claim dicts."""
    claims = []
    for row in parse_tsv(text):
        reimbursement_id = row.get(REIMBURSEMENT_COLUMNS["reimbursement_id"])
        if not reimbursement_id:
            continue

        claims.append(
            {
                "claim_id": reimbursement_id,
                "reimbursement_id": reimbursement_id,
                "case_id": row.get(REIMBURSEMENT_COLUMNS["case_id"]) or None,
                "asin": row.get(REIMBURSEMENT_COLUMNS["asin"]) or None,
                "sku": row.get(REIMBURSEMENT_COLUMNS["sku"]) or None,
                "item_name": row.get(REIMBURSEMENT_COLUMNS["product_name"])
                or "Unknown Item",
                "amount": _parse_decimal(row.get(REIMBURSEMENT_COLUMNS["amount_total"])),
                "quantity_reimbursed": _parse_int(
                    row.get(REIMBURSEMENT_COLUMNS["quantity_reimbursed"])
                ),
                "claim_date": _parse_date(row.get(REIMBURSEMENT_COLUMNS["approval_date"])),
                "status": "Approved",
                "shipment_type": "FBA",
            }
        )
    return claims
