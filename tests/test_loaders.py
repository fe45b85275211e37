"""
CSV Loader Tests

Tests for:
- Loading canonical ledger and statement CSV files
- Account defaults, derived statement ids, amount cleanup
- Skipping unusable rows (including NaN and Infinity amounts) and reporting unreadable files
- Identical statement lines and duplicate imports
"""

from datetime import date
from decimal import Decimal
import logging

import pytest

from ledger_recon.models.transaction import StatementTransaction
from ledger_recon.sources.loaders import load_ledger_csv, load_statement_csv
from ledger_recon.sources.memory import InMemoryStatementSource
from ledger_recon.utils.exceptions import SourceError


class TestLedgerCsv:
    """Ledger file loading."""

    def test_load_ledger(self, tmp_path):
        """Test that rows become ledger transactions with the default account."""
        path = tmp_path / "ledger.csv"
        path.write_text(
            "id,date,amount,description\n"
            "L1,2024-01-01,\"$1,250.00\",Rent\n"
            "L2,2024-01-03,-50.00,Coffee\n"
        )

        txns = load_ledger_csv(path, account_id="ACC-1")

        assert [t.id for t in txns] == ["L1", "L2"]
        assert txns[0].amount == Decimal("1250.00")
        assert txns[1].amount == Decimal("-50.00")
        assert txns[0].date == date(2024, 1, 1)
        assert all(t.account_id == "ACC-1" for t in txns)

    def test_bad_rows_skipped(self, tmp_path):
        """Test that rows without a date or amount are dropped."""
        path = tmp_path / "ledger.csv"
        path.write_text(
            "id,date,amount,description\n"
            "L1,,10.00,No date\n"
            "L2,2024-01-02,abc,Bad amount\n"
            "L3,2024-01-03,10.00,Good\n"
        )
        assert [t.id for t in load_ledger_csv(path)] == ["L3"]

    def test_missing_columns(self, tmp_path):
        """Test that files without date/amount columns raise SourceError."""
        path = tmp_path / "ledger.csv"
        path.write_text("id,description\nL1,Rent\n")
        with pytest.raises(SourceError):
            load_ledger_csv(path)

    def test_missing_file(self, tmp_path):
        """Test that an unreadable file raises SourceError."""
        with pytest.raises(SourceError):
            load_ledger_csv(tmp_path / "nope.csv")


class TestStatementCsv:
    """Statement file loading."""

    def test_ids_are_derived_and_stable(self, tmp_path):
        """Test that rows without ids get the same derived id on every load."""
        path = tmp_path / "statement.csv"
        path.write_text(
            "date,amount,description,external_ref\n"
            "2024-01-04,50.00,STARBUCKS,REF-9\n"
        )

        first = load_statement_csv(path, account_id="ACC-1")
        second = load_statement_csv(path, account_id="ACC-1")

        assert first[0].id.startswith("stmt-")
        assert first[0].id == second[0].id
        assert first[0].external_ref == "REF-9"

    def test_explicit_account_column_wins(self, tmp_path):
        """Test that an account_id column overrides the default."""
        path = tmp_path / "statement.csv"
        path.write_text("id,account_id,date,amount\nS1,ACC-9,2024-01-04,5\n")

        (txn,) = load_statement_csv(path, account_id="ACC-1")
        assert txn.account_id == "ACC-9"
        assert txn.external_ref is None

    def test_identical_lines_keep_distinct_ids(self, tmp_path):
        """Test that two genuine identical rows get two stable ids."""
        path = tmp_path / "statement.csv"
        path.write_text(
            "date,amount,description\n"
            "2024-01-04,4.50,COFFEE\n"
            "2024-01-04,4.50,COFFEE\n"
        )

        first = load_statement_csv(path, account_id="ACC-1")
        second = load_statement_csv(path, account_id="ACC-1")

        assert len({t.id for t in first}) == 2
        assert [t.id for t in first] == [t.id for t in second]

    def test_non_finite_amounts_skipped(self, tmp_path):
        """Test that NaN and Infinity amounts are treated as unusable rows."""
        path = tmp_path / "statement.csv"
        path.write_text(
            "id,date,amount\n"
            "S1,2024-01-04,NaN\n"
            "S2,2024-01-04,Infinity\n"
            "S3,2024-01-04,-inf\n"
            "S4,2024-01-04,12.00\n"
        )
        assert [t.id for t in load_statement_csv(path, account_id="ACC-1")] == ["S4"]


class TestInMemoryStatements:
    """Importing statements into a session."""

    def test_duplicate_id_dropped_with_warning(self, caplog):
        """Test that re-adding an id keeps the first line and logs the drop."""
        source = InMemoryStatementSource()
        txn = StatementTransaction.create("ACC-1", date(2024, 1, 4), Decimal("4.50"), "COFFEE")

        with caplog.at_level(logging.WARNING, logger="ledger_recon.sources.memory"):
            source.add("session-1", txn, txn)

        assert source.count("session-1") == 1
        assert "already imported" in caplog.text
