"""
CLI Tests

Tests for:
- init-config / init-db
- create-session, add-rule, run, show, confirm and export against a SQLite file
- Error exit codes
"""

from datetime import date
import logging

import pytest
from click.testing import CliRunner

from ledger_recon.cli import main
from ledger_recon.config import ReconConfig
from ledger_recon.facade import ReconciliationFacade
from ledger_recon.models.match import MatchStatus
from ledger_recon.sources.memory import InMemoryLedger, InMemoryStatementSource

RULE_YAML = """\
name: Exact amount and date
priority: 10
conditions:
  - field: amount
    operator: exact
  - field: date
    operator: within_days
    value: 0
actions:
  auto_match: true
"""


@pytest.fixture
def runner():
    yield CliRunner()
    logging.getLogger("ledger_recon").handlers = []


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'recon.db'}"


@pytest.fixture
def files(tmp_path):
    ledger_csv = tmp_path / "ledger.csv"
    ledger_csv.write_text(
        "id,date,amount,description\n"
        "L-RENT,2024-01-01,100.00,Rent\n"
        "L-COFFEE,2024-01-03,50.00,Coffee\n"
    )
    statement_csv = tmp_path / "statement.csv"
    statement_csv.write_text(
        "id,date,amount,description\n"
        "S-RENT,2024-01-01,100.00,RENT PAYMENT\n"
        "S-STARBUCKS,2024-01-04,50.00,STARBUCKS\n"
    )
    rule_yaml = tmp_path / "rule.yaml"
    rule_yaml.write_text(RULE_YAML)
    return ledger_csv, statement_csv, rule_yaml


def open_facade(database_url):
    config = ReconConfig()
    config.storage.database_url = database_url
    return ReconciliationFacade.from_config(config, InMemoryLedger(), InMemoryStatementSource())


class TestCommands:
    """Command wiring."""

    def test_init_config(self, runner, tmp_path):
        """Test that init-config writes a YAML file."""
        output = tmp_path / "config.yaml"
        result = runner.invoke(main, ["init-config", "-o", str(output)])

        assert result.exit_code == 0
        assert "batch_size" in output.read_text()

    def test_init_db(self, runner, database_url, tmp_path):
        """Test that init-db creates the database file."""
        result = runner.invoke(main, ["init-db", "--database-url", database_url])

        assert result.exit_code == 0
        assert (tmp_path / "recon.db").exists()

    def test_create_session(self, runner, database_url):
        """Test that create-session stores a pending session."""
        result = runner.invoke(
            main,
            ["create-session", "ACC-1", "2024-01-01", "2024-01-31", "--database-url", database_url],
        )

        assert result.exit_code == 0
        assert "Session created" in result.output

    def test_invalid_period_exits_nonzero(self, runner, database_url):
        """Test that a validation error exits with status 1."""
        result = runner.invoke(
            main,
            ["create-session", "ACC-1", "2024-02-01", "2024-01-01", "--database-url", database_url],
        )

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_full_workflow(self, runner, database_url, files, tmp_path):
        """Test add-rule, run, show, confirm and export on one session."""
        ledger_csv, statement_csv, rule_yaml = files
        session = open_facade(database_url).create_session(
            "ACC-1", date(2024, 1, 1), date(2024, 1, 31)
        )
        db_args = ["--database-url", database_url]

        result = runner.invoke(main, ["add-rule", "ACC-1", str(rule_yaml), *db_args])
        assert result.exit_code == 0
        assert "Rule created" in result.output

        result = runner.invoke(
            main,
            ["run", session.id, "--ledger", str(ledger_csv), "--statements", str(statement_csv), *db_args],
        )
        assert result.exit_code == 0, result.output

        facade = open_facade(database_url)
        matches = facade.get_session(session.id).matches
        assert {m.statement_txn_id: m.status for m in matches} == {
            "S-RENT": MatchStatus.CONFIRMED,
            "S-STARBUCKS": MatchStatus.SUGGESTED,
        }

        result = runner.invoke(main, ["show", session.id, "--status", "suggested", *db_args])
        assert result.exit_code == 0

        suggested = next(m for m in matches if m.status == MatchStatus.SUGGESTED)
        result = runner.invoke(main, ["confirm", suggested.id, "--by", "alice", *db_args])
        assert result.exit_code == 0
        assert open_facade(database_url).get_session(session.id).matches[0].status == MatchStatus.CONFIRMED

        report = tmp_path / "report.xlsx"
        result = runner.invoke(
            main,
            [
                "export",
                session.id,
                "--ledger",
                str(ledger_csv),
                "--statements",
                str(statement_csv),
                "-o",
                str(report),
                *db_args,
            ],
        )
        assert result.exit_code == 0
        assert report.exists()

    def test_confirm_unknown_match(self, runner, database_url):
        """Test that resolving a missing match exits with status 1."""
        result = runner.invoke(main, ["confirm", "missing", "--database-url", database_url])
        assert result.exit_code == 1
