"""
Loaders for canonical transaction CSV files.

The files already use the canonical fields (``id``, ``account_id``,
``date``, ``amount``, ``description`` and, for statements,
``external_ref``). Bank-specific formats are converted upstream.
"""

from collections import Counter
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional
import logging

import pandas as pd

from ..models.transaction import LedgerTransaction, StatementTransaction
from ..utils.exceptions import SourceError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "amount")


def _read_csv(file_path: Path) -> pd.DataFrame:
    logger.info(f"Reading transactions from: {file_path}")
    try:
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    except Exception as e:
        logger.error(f"Failed to read CSV file: {e}")
        raise SourceError(f"Failed to read CSV file {file_path}: {e}") from e

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise SourceError(f"{file_path} is missing columns: {', '.join(missing)}")
    return df


def _parse_date(value) -> Optional[date]:
    if value is None or value == "" or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        try:
            return pd.to_datetime(value).date()
        except (ValueError, TypeError):
            return None


def _parse_amount(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        if isinstance(value, str):
            value = value.replace("$", "").replace(",", "").strip()
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    # NaN and Infinity parse but can never be matched
    return amount if amount.is_finite() else None


def _text(row: pd.Series, column: str) -> str:
    value = row.get(column, "")
    return "" if value is None else str(value).strip()


def load_ledger_csv(file_path: Path, account_id: Optional[str] = None) -> list[LedgerTransaction]:
    """
    Load ledger transactions from a canonical CSV file.

    Args:
        file_path: CSV path
        account_id: Account to use when the file has no ``account_id`` column

    Returns:
        Ledger transactions; rows without a usable date or amount are skipped
    """
    df = _read_csv(file_path)
    transactions: list[LedgerTransaction] = []

    for idx, row in df.iterrows():
        txn_date = _parse_date(row.get("date"))
        amount = _parse_amount(row.get("amount"))
        if txn_date is None or amount is None:
            logger.warning(f"Row {idx}: invalid date or amount, skipping")
            continue

        transactions.append(
            LedgerTransaction(
                id=_text(row, "id") or f"LEDGER-{int(idx):05d}",
                account_id=_text(row, "account_id") or account_id or "",
                date=txn_date,
                amount=amount,
                description=_text(row, "description"),
            )
        )

    logger.info(f"Loaded {len(transactions)} ledger transactions")
    return transactions


def load_statement_csv(
    file_path: Path, account_id: Optional[str] = None
) -> list[StatementTransaction]:
    """
    Load statement transactions from a canonical CSV file.

    Rows without an ``id`` get a hash-derived one, so loading the same
    file twice yields the same ids. Identical rows are numbered in file
    order so each keeps its own id.
    """
    df = _read_csv(file_path)
    transactions: list[StatementTransaction] = []
    seen: Counter = Counter()

    for idx, row in df.iterrows():
        txn_date = _parse_date(row.get("date"))
        amount = _parse_amount(row.get("amount"))
        if txn_date is None or amount is None:
            logger.warning(f"Row {idx}: invalid date or amount, skipping")
            continue

        txn_account = _text(row, "account_id") or account_id or ""
        description = _text(row, "description")
        external_ref = _text(row, "external_ref") or None
        line_key = (txn_account, txn_date, amount, description, external_ref)
        occurrence = seen[line_key]
        seen[line_key] += 1

        transactions.append(
            StatementTransaction.create(
                account_id=txn_account,
                txn_date=txn_date,
                amount=amount,
                description=description,
                external_ref=external_ref,
                id=_text(row, "id") or None,
                occurrence=occurrence,
            )
        )

    logger.info(f"Loaded {len(transactions)} statement transactions")
    return transactions
