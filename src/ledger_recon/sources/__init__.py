"""Ledger and statement transaction sources."""

from .base import LedgerAdapter, StatementSource
from .loaders import load_ledger_csv, load_statement_csv
from .memory import InMemoryLedger, InMemoryStatementSource

__all__ = [
    "LedgerAdapter",
    "StatementSource",
    "load_ledger_csv",
    "load_statement_csv",
    "InMemoryLedger",
    "InMemoryStatementSource",
]
