"""Shared fixtures: in-memory database, sources and a wired facade."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_recon.config import ReconConfig
from ledger_recon.facade import ReconciliationFacade
from ledger_recon.models.transaction import LedgerTransaction, StatementTransaction
from ledger_recon.sources.memory import InMemoryLedger, InMemoryStatementSource
from ledger_recon.storage.database import Database

ACCOUNT = "ACC-1"
PERIOD_START = date(2024, 1, 1)
PERIOD_END = date(2024, 1, 31)

EXACT_AUTO_RULE = {
    "name": "Exact amount and date",
    "priority": 10,
    "conditions": [
        {"field": "amount", "operator": "exact"},
        {"field": "date", "operator": "within_days", "value": 0},
    ],
    "actions": {"auto_match": True},
}


def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def config():
    return ReconConfig()


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def statements():
    return InMemoryStatementSource()


@pytest.fixture
def make_facade(db, ledger, statements, config):
    """Build a facade over the shared database, with overrides."""

    def _make(**overrides) -> ReconciliationFacade:
        kwargs = {
            "ledger": ledger,
            "statements": statements,
            "config": config,
            "worker_id": "worker-a",
            "sleep": no_sleep,
        }
        kwargs.update(overrides)
        return ReconciliationFacade(db, **kwargs)

    return _make


@pytest.fixture
def facade(make_facade):
    return make_facade()


@pytest.fixture
def ledger_txn():
    def _make(id: str, day: int, amount: str, description: str = "", account_id: str = ACCOUNT):
        return LedgerTransaction(
            id=id,
            account_id=account_id,
            date=date(2024, 1, day),
            amount=Decimal(amount),
            description=description,
        )

    return _make


@pytest.fixture
def statement_txn():
    def _make(id: str, day: int, amount: str, description: str = "", account_id: str = ACCOUNT):
        return StatementTransaction(
            id=id,
            account_id=account_id,
            date=date(2024, 1, day),
            amount=Decimal(amount),
            description=description,
        )

    return _make


@pytest.fixture
def scenario(facade, ledger, statements, ledger_txn, statement_txn):
    """Rent / Coffee / Utility session with the exact auto-match rule."""
    ledger.add(
        ledger_txn("L-RENT", 1, "100.00", "Rent"),
        ledger_txn("L-COFFEE", 3, "50.00", "Coffee"),
        ledger_txn("L-UTILITY", 5, "75.00", "Utility"),
    )
    session = facade.create_session(ACCOUNT, PERIOD_START, PERIOD_END, name="January")
    statements.add(
        session.id,
        statement_txn("S-RENT", 1, "100.00", "RENT PAYMENT"),
        statement_txn("S-STARBUCKS", 4, "50.00", "STARBUCKS"),
        statement_txn("S-ELECTRIC", 6, "80.00", "ELECTRIC"),
    )
    rule = facade.create_rule(ACCOUNT, EXACT_AUTO_RULE)
    return session, rule
