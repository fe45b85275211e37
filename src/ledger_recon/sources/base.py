"""
Collaborator contracts for transaction data.

Both sources are owned upstream; this package only reads from them.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable

from ..models.transaction import LedgerTransaction, StatementTransaction


class LedgerAdapter(ABC):
    """Read-only access to internal ledger transactions."""

    @abstractmethod
    def list_ledger_transactions(
        self, account_id: str, start: date, end: date
    ) -> Iterable[LedgerTransaction]:
        """
        Ledger transactions for an account dated within ``[start, end]``.

        Args:
            account_id: Ledger account
            start: First date, inclusive
            end: Last date, inclusive

        Returns:
            Iterable of ledger transactions (may be lazy)
        """
        pass


class StatementSource(ABC):
    """Canonical statement transactions imported into a session."""

    @abstractmethod
    def list_statement_transactions(
        self, session_id: str, offset: int, limit: int
    ) -> list[StatementTransaction]:
        """
        One page of a session's statement transactions in a stable order.

        Args:
            session_id: Reconciliation session
            offset: Index of the first transaction to return
            limit: Maximum number of transactions to return

        Returns:
            Up to ``limit`` transactions; an empty list past the end

        Raises:
            SourceError: If the page cannot be read or parsed
        """
        pass
