"""Canonical ledger and statement transaction records."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional
import hashlib


def make_statement_id(
    account_id: str,
    txn_date: date,
    amount: Decimal,
    description: str,
    external_ref: Optional[str] = None,
    occurrence: int = 0,
) -> str:
    """
    Derive a stable id for a statement line that arrived without one.

    The same line imported twice yields the same id, which keeps reruns
    from treating it as new input. ``occurrence`` numbers identical lines
    within one import so genuine repeats keep distinct ids.
    """
    parts = [account_id, txn_date.isoformat(), str(amount), description, external_ref or ""]
    if occurrence:
        parts.append(str(occurrence))
    key = "|".join(parts)
    return "stmt-" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class LedgerTransaction:
    """An internal book transaction. Owned by the ledger, read-only here."""

    id: str
    account_id: str
    date: date
    # Signed amount; debits negative, credits positive
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class StatementTransaction:
    """
    A bank statement line already parsed upstream into canonical form.

    Immutable once imported into a session.
    """

    id: str
    account_id: str
    date: date
    amount: Decimal
    description: str = ""
    external_ref: Optional[str] = None

    @classmethod
    def create(
        cls,
        account_id: str,
        txn_date: date,
        amount: Decimal,
        description: str = "",
        external_ref: Optional[str] = None,
        id: Optional[str] = None,
        occurrence: int = 0,
    ) -> "StatementTransaction":
        """Build a statement transaction, deriving the id when the source gave none."""
        return cls(
            id=id
            or make_statement_id(
                account_id, txn_date, amount, description, external_ref, occurrence
            ),
            account_id=account_id,
            date=txn_date,
            amount=amount,
            description=description,
            external_ref=external_ref,
        )
