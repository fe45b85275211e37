"""
Public entry point for reconciliation.

``ReconciliationFacade`` wires the rule store, the session manager and
the report generator over one database, and is what the CLI and any
embedding service call.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Optional
import logging

from .config import ReconConfig
from .models.match import Match
from .models.rule import MatchRule
from .models.session import (
    Pagination,
    PassResult,
    ReconciliationSession,
    SessionPage,
    SessionSummary,
)
from .reports.excel_generator import ExcelReportGenerator
from .rules.store import RuleStore
from .session.manager import SessionManager
from .sources.base import LedgerAdapter, StatementSource
from .storage.database import Database, utc_now

logger = logging.getLogger(__name__)


class ReconciliationFacade:
    """Bank statement to ledger reconciliation service."""

    def __init__(
        self,
        db: Database,
        ledger: LedgerAdapter,
        statements: StatementSource,
        config: Optional[ReconConfig] = None,
        worker_id: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize the facade.

        Args:
            db: Database handle (schema must exist)
            ledger: Ledger adapter
            statements: Statement source
            config: Application configuration
            worker_id: Lease owner name for passes run through this facade
            clock: Source of the current UTC time
            monotonic: Clock for batch time limits
            sleep: Sleep used between storage retries
        """
        self.config = config or ReconConfig()
        self.db = db
        self.ledger = ledger
        self.statements = statements
        self.rules = RuleStore(db, self.config.retry.policy(), clock=clock, sleep=sleep)
        self.sessions = SessionManager(
            db,
            self.config,
            ledger,
            statements,
            self.rules,
            worker_id=worker_id,
            clock=clock,
            monotonic=monotonic,
            sleep=sleep,
        )
        self.reports = ExcelReportGenerator(self.config)

    @classmethod
    def from_config(
        cls,
        config: ReconConfig,
        ledger: LedgerAdapter,
        statements: StatementSource,
        create_schema: bool = True,
    ) -> "ReconciliationFacade":
        """Build a facade on the database named in the config."""
        db = Database.from_config(config.storage)
        if create_schema:
            db.create_all()
        return cls(db, ledger, statements, config=config)

    # Sessions

    def create_session(
        self,
        account_id: str,
        period_start: date,
        period_end: date,
        name: Optional[str] = None,
    ) -> ReconciliationSession:
        return self.sessions.create(account_id, period_start, period_end, name or "")

    def run_matching_pass(self, session_id: str) -> PassResult:
        return self.sessions.run_pass(session_id)

    def get_session(
        self, session_id: str, pagination: Optional[Pagination] = None
    ) -> SessionPage:
        return self.sessions.get_page(session_id, pagination)

    def cancel_session(self, session_id: str) -> ReconciliationSession:
        return self.sessions.cancel(session_id)

    def stop_pass(self, session_id: str) -> ReconciliationSession:
        """Stop a running pass at the next batch boundary without cancelling."""
        return self.sessions.request_stop(session_id)

    def complete_session(self, session_id: str) -> ReconciliationSession:
        return self.sessions.complete(session_id)

    def session_summary(self, session_id: str) -> SessionSummary:
        return self.sessions.summary(session_id)

    # Matches

    def confirm_match(self, match_id: str, resolved_by: Optional[str] = None) -> Match:
        return self.sessions.confirm_match(match_id, resolved_by)

    def reject_match(self, match_id: str, resolved_by: Optional[str] = None) -> Match:
        return self.sessions.reject_match(match_id, resolved_by)

    # Rules

    def list_rules(self, account_id: str) -> list[MatchRule]:
        return self.rules.list_rules(account_id)

    def get_rule(self, rule_id: str) -> MatchRule:
        return self.rules.get_rule(rule_id)

    def create_rule(self, account_id: str, rule_input: Any) -> MatchRule:
        return self.rules.create_rule(account_id, rule_input)

    def update_rule(self, rule_id: str, patch: Any) -> MatchRule:
        return self.rules.update_rule(rule_id, patch)

    def delete_rule(self, rule_id: str, version: int) -> None:
        self.rules.delete_rule(rule_id, version)

    # Reporting

    def export_report(self, session_id: str, output_path: Optional[Path] = None) -> Path:
        """
        Write the session's Excel report.

        Args:
            session_id: Session to export
            output_path: Target file; defaults to the configured filename template

        Returns:
            Path to the written workbook
        """
        summary = self.sessions.summary(session_id)
        session = summary.session
        matches = self.sessions.matches.list_all(session_id)
        statement_txns = {t.id: t for t in self.sessions.iter_statements(session_id)}
        ledger_txns = {
            t.id: t
            for t in self.ledger.list_ledger_transactions(
                session.account_id, session.period_start, session.period_end
            )
        }

        if output_path is None:
            output_path = Path(self.reports.default_filename(session_id))

        return self.reports.generate_report(
            summary, matches, statement_txns, ledger_txns, Path(output_path)
        )
