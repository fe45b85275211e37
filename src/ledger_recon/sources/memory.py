"""In-memory sources for tests and the command line."""

from collections import defaultdict
from datetime import date
from typing import Iterable
import logging

from ..models.transaction import LedgerTransaction, StatementTransaction
from .base import LedgerAdapter, StatementSource

logger = logging.getLogger(__name__)


class InMemoryLedger(LedgerAdapter):
    """Ledger adapter over a list of transactions."""

    def __init__(self, transactions: Iterable[LedgerTransaction] = ()):
        self.transactions: list[LedgerTransaction] = list(transactions)

    def add(self, *transactions: LedgerTransaction) -> None:
        self.transactions.extend(transactions)

    def list_ledger_transactions(
        self, account_id: str, start: date, end: date
    ) -> list[LedgerTransaction]:
        return sorted(
            (
                t
                for t in self.transactions
                if t.account_id == account_id and start <= t.date <= end
            ),
            key=lambda t: (t.date, t.id),
        )


class InMemoryStatementSource(StatementSource):
    """Statement source keyed by session id, preserving import order."""

    def __init__(self) -> None:
        self._imports: dict[str, list[StatementTransaction]] = defaultdict(list)

    def add(self, session_id: str, *transactions: StatementTransaction) -> None:
        """Import transactions into a session, ignoring ids already present."""
        existing = {t.id for t in self._imports[session_id]}
        for txn in transactions:
            if txn.id in existing:
                logger.warning(
                    f"Session {session_id}: statement {txn.id} already imported, dropping duplicate"
                )
                continue
            self._imports[session_id].append(txn)
            existing.add(txn.id)

    def count(self, session_id: str) -> int:
        return len(self._imports.get(session_id, []))

    def list_statement_transactions(
        self, session_id: str, offset: int, limit: int
    ) -> list[StatementTransaction]:
        return list(self._imports.get(session_id, [])[offset : offset + limit])
