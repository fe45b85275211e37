"""
Reconciliation session lifecycle.

The session manager owns sessions and matches. A matching pass:

1. takes the session lease (one pass per session at a time),
2. walks the statement source in batches from the persisted checkpoint,
3. runs the matching pipeline on each batch under a time limit,
4. persists accepted matches and advances the checkpoint,
5. releases the lease.

Stopping, cancelling, timeouts and storage failures are all plain state
transitions on the persisted session, so any worker can resume the pass
later from the checkpoint.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterator, Optional
import logging
import os
import socket
import uuid

from ..config import ReconConfig
from ..matching.deadline import Deadline
from ..matching.engine import MatchingEngine
from ..models.match import CLAIMING_STATUSES, ConfidenceLevel, Match, MatchStatus
from ..models.rule import ConditionKind, MatchRule
from ..models.session import (
    ErrorSummary,
    FailureKind,
    Pagination,
    PartialFailure,
    PassResult,
    ReconciliationSession,
    SESSION_TRANSITIONS,
    SessionPage,
    SessionStatus,
    SessionSummary,
)
from ..models.transaction import LedgerTransaction, StatementTransaction
from ..rules.store import RuleStore
from ..sources.base import LedgerAdapter, StatementSource
from ..storage.database import Database, generate_uuid, utc_now
from ..storage.repositories import LeaseRepository, MatchRepository, SessionRepository
from ..utils.exceptions import (
    BatchTimeoutError,
    ConflictError,
    InternalError,
    ReconciliationError,
    SourceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Consecutive unreadable batches before the pass gives up and fails
MAX_CONSECUTIVE_SOURCE_FAILURES = 5

# Errors a statement source or ledger adapter may raise for a bad batch
SOURCE_ERRORS = (SourceError, ValueError, TypeError, KeyError, OSError)


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _finite(amount) -> bool:
    return isinstance(amount, Decimal) and amount.is_finite()


def _sources_from(status: SessionStatus) -> list[SessionStatus]:
    """States from which ``status`` may be entered."""
    return [s for s, targets in SESSION_TRANSITIONS.items() if status in targets]


class SessionManager:
    """Owns reconciliation session and match lifecycles."""

    def __init__(
        self,
        db: Database,
        config: ReconConfig,
        ledger: LedgerAdapter,
        statements: StatementSource,
        rule_store: RuleStore,
        worker_id: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize the session manager.

        Args:
            db: Database handle
            config: Application configuration
            ledger: Ledger adapter
            statements: Statement source
            rule_store: Rule store for the account rules
            worker_id: Lease owner name for this worker
            clock: Source of the current UTC time
            monotonic: Clock for batch time limits
            sleep: Sleep used between storage retries
        """
        self.config = config
        self.settings = config.session
        self.ledger = ledger
        self.statements = statements
        self.rule_store = rule_store
        self.worker_id = worker_id or default_worker_id()
        self.clock = clock
        self.monotonic = monotonic

        policy = config.retry.policy()
        self.sessions = SessionRepository(db, policy, sleep)
        self.matches = MatchRepository(db, policy, sleep)
        self.leases = LeaseRepository(db, policy, sleep)
        self.engine = MatchingEngine(config.matching)

    @property
    def lease_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.lease_ttl_seconds)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        account_id: str,
        period_start: date,
        period_end: date,
        name: str = "",
    ) -> ReconciliationSession:
        """
        Create a pending session.

        Raises:
            ValidationError: Missing account or ``period_end < period_start``
        """
        if not account_id:
            raise ValidationError("account_id is required")
        if period_end < period_start:
            raise ValidationError(
                f"Invalid period: end {period_end.isoformat()} is before start "
                f"{period_start.isoformat()}"
            )

        now = self.clock()
        session = ReconciliationSession(
            id=generate_uuid(),
            account_id=account_id,
            name=name or "",
            period_start=period_start,
            period_end=period_end,
            status=SessionStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.sessions.insert(session)
        logger.info(
            f"Created session {session.id} for account {account_id} "
            f"({period_start.isoformat()} to {period_end.isoformat()})"
        )
        return session

    def get(self, session_id: str) -> ReconciliationSession:
        return self.sessions.get(session_id)

    def cancel(self, session_id: str) -> ReconciliationSession:
        """
        Cancel a non-terminal session.

        A pass running elsewhere notices at its next batch boundary and stops.

        Raises:
            ConflictError: Session is already completed or cancelled
        """
        session = self.sessions.transition(
            session_id,
            _sources_from(SessionStatus.CANCELLED),
            SessionStatus.CANCELLED,
            self.clock(),
            stop_requested=True,
        )
        logger.info(f"Session {session_id} cancelled")
        return session

    def request_stop(self, session_id: str) -> ReconciliationSession:
        """
        Ask a running pass to stop at the next batch boundary.

        The session stays ``in_progress`` and the next pass resumes from the
        checkpoint.
        """
        session = self.sessions.get(session_id)
        if session.is_terminal:
            raise ConflictError(f"Session {session_id} is {session.status.value}")
        self.sessions.set_stop_requested(session_id, True, self.clock())
        logger.info(f"Stop requested for session {session_id}")
        return self.sessions.get(session_id)

    def complete(self, session_id: str) -> ReconciliationSession:
        """
        Close a session by hand once every suggestion has been reviewed.

        Raises:
            ConflictError: A pass is running, suggestions are open, or the
                session is not in progress
        """
        now = self.clock()
        if self.leases.is_live(session_id, now):
            raise ConflictError(f"Session {session_id} has an active matching pass")
        open_suggestions = self.matches.count_suggested(session_id)
        if open_suggestions:
            raise ConflictError(
                f"Session {session_id} has {open_suggestions} suggested matches awaiting review"
            )
        session = self.sessions.transition(
            session_id, [SessionStatus.IN_PROGRESS], SessionStatus.COMPLETED, now
        )
        logger.info(f"Session {session_id} completed manually")
        return session

    # ------------------------------------------------------------------
    # Matching pass
    # ------------------------------------------------------------------

    def run_pass(self, session_id: str) -> PassResult:
        """
        Run (or resume) a matching pass.

        Returns:
            Matches created, unresolved statement count and partial failures

        Raises:
            NotFoundError: Unknown session
            ConflictError: Session cancelled, or another pass holds the lease
            InternalError: Storage failed after retries; the session is marked failed
        """
        session = self.sessions.get(session_id)
        if session.status == SessionStatus.COMPLETED:
            logger.info(f"Session {session_id} already completed, nothing to do")
            return PassResult(session_id=session_id, status=SessionStatus.COMPLETED)
        if session.status == SessionStatus.CANCELLED:
            raise ConflictError(f"Session {session_id} is cancelled")

        lease = self.leases.acquire(session_id, self._pass_token(), self.lease_ttl, self.clock())
        result = PassResult(session_id=session_id)
        error_summary = session.error_summary

        try:
            session = self.sessions.transition(
                session_id,
                _sources_from(SessionStatus.IN_PROGRESS),
                SessionStatus.IN_PROGRESS,
                self.clock(),
                stop_requested=False,
            )
            logger.info(
                f"Matching pass started on session {session_id} at offset {session.checkpoint}"
            )
            self._run_batches(session, lease, result, error_summary)
            self._finish_pass(session, result, error_summary)
        except InternalError as e:
            self._record(
                result,
                error_summary,
                PartialFailure(FailureKind.INTERNAL, result.batches_processed, str(e)),
            )
            self._mark_failed(session_id, error_summary)
            raise
        finally:
            try:
                self.leases.release(lease)
            except ReconciliationError as e:
                # The lease expires on its own after the TTL
                logger.warning(f"Could not release lease on session {session_id}: {e}")

        return result

    def _pass_token(self) -> str:
        """Lease owner for one pass; two passes from this worker never share it."""
        return f"{self.worker_id}:{uuid.uuid4().hex[:8]}"

    def _run_batches(
        self,
        session: ReconciliationSession,
        lease,
        result: PassResult,
        error_summary: ErrorSummary,
    ) -> None:
        batch_size = self.settings.batch_size
        rules = self.rule_store.list_rules(session.account_id, enabled_only=True)
        window_days = self._ledger_window_days(rules)
        offset = session.checkpoint
        failure_streak_start: Optional[int] = None
        consecutive_failures = 0

        while True:
            current = self.sessions.get(session.id)
            if current.status == SessionStatus.CANCELLED or current.stop_requested:
                logger.info(f"Session {session.id}: stopping at batch boundary (offset {offset})")
                result.stopped = True
                return

            batch_no = offset // batch_size
            try:
                batch = self.statements.list_statement_transactions(session.id, offset, batch_size)
                usable = self._usable(session, batch, batch_no, result, error_summary)
                ledger_txns = self._ledger_for(session, usable, window_days)
            except InternalError:
                raise
            except SOURCE_ERRORS as e:
                self._record(
                    result,
                    error_summary,
                    PartialFailure(FailureKind.PARSE, batch_no, f"Batch at offset {offset}: {e}"),
                )
                if failure_streak_start is None:
                    failure_streak_start = offset
                consecutive_failures += 1
                if consecutive_failures >= MAX_CONSECUTIVE_SOURCE_FAILURES:
                    # Resume from the first unreadable batch next time
                    self.sessions.save_progress(
                        session.id, failure_streak_start, error_summary, self.clock()
                    )
                    raise InternalError(
                        f"Statement source failed {consecutive_failures} batches in a row "
                        f"starting at offset {failure_streak_start}"
                    ) from e
                offset += batch_size
                self.sessions.save_progress(session.id, offset, error_summary, self.clock())
                lease = self.leases.renew(lease, self.lease_ttl, self.clock())
                continue

            failure_streak_start = None
            consecutive_failures = 0
            if not batch:
                return

            claimed_ledger, claimed_statements = self.matches.claimed_ids(session.id)
            rejected = self.matches.rejected_pairs(session.id)
            deadline = Deadline(self.settings.batch_timeout_seconds, clock=self.monotonic)
            try:
                outcome = self.engine.run_batch(
                    rules,
                    ledger_txns,
                    usable,
                    claimed_ledger,
                    claimed_statements,
                    deadline,
                    rejected_pairs=rejected,
                )
            except BatchTimeoutError as e:
                self._record(
                    result,
                    error_summary,
                    PartialFailure(FailureKind.TIMEOUT, batch_no, f"Batch at offset {offset}: {e}"),
                )
            else:
                created = self.matches.add_matches(session.id, outcome.accepted, self.clock())
                result.matches_created += len(created)

            offset += len(batch)
            result.batches_processed += 1
            self.sessions.save_progress(session.id, offset, error_summary, self.clock())
            lease = self.leases.renew(lease, self.lease_ttl, self.clock())
            logger.debug(f"Session {session.id}: batch {batch_no} done, checkpoint {offset}")

            if len(batch) < batch_size:
                return

    def _finish_pass(
        self, session: ReconciliationSession, result: PassResult, error_summary: ErrorSummary
    ) -> None:
        if result.stopped:
            current = self.sessions.get(session.id)
            if current.status != SessionStatus.CANCELLED:
                self.sessions.set_stop_requested(session.id, False, self.clock())
            result.status = current.status
            result.unresolved_count = self._count_unresolved(current, result, error_summary) or 0
            return

        self.sessions.save_progress(
            session.id, 0, error_summary, self.clock(), pass_count=session.pass_count + 1
        )
        unresolved = self._count_unresolved(session, result, error_summary)
        result.unresolved_count = unresolved or 0
        result.status = SessionStatus.IN_PROGRESS

        # An unreadable source leaves the count unknown, which is pending work
        if unresolved == 0 and self.matches.count_suggested(session.id) == 0:
            try:
                self.sessions.transition(
                    session.id, [SessionStatus.IN_PROGRESS], SessionStatus.COMPLETED, self.clock()
                )
                result.status = SessionStatus.COMPLETED
            except ConflictError as e:
                logger.info(f"Session {session.id} not completed: {e}")
                result.status = self.sessions.get(session.id).status

        logger.info(
            f"Matching pass on session {session.id} finished: {result.matches_created} matches "
            f"created, {result.unresolved_count} unresolved, {len(result.errors)} partial "
            f"failures, status {result.status.value}"
        )

    def _count_unresolved(
        self, session: ReconciliationSession, result: PassResult, error_summary: ErrorSummary
    ) -> Optional[int]:
        try:
            return len(self.unresolved_statement_ids(session))
        except SourceError as e:
            self._record(
                result,
                error_summary,
                PartialFailure(FailureKind.PARSE, result.batches_processed, str(e)),
            )
            current = self.sessions.get(session.id)
            self.sessions.save_progress(session.id, current.checkpoint, error_summary, self.clock())
            return None

    def _mark_failed(self, session_id: str, error_summary: ErrorSummary) -> None:
        try:
            self.sessions.transition(
                session_id,
                [SessionStatus.IN_PROGRESS],
                SessionStatus.FAILED,
                self.clock(),
                error_summary=error_summary.to_dict(),
            )
            logger.error(f"Session {session_id} marked failed; rerun the pass to resume")
        except ReconciliationError as e:
            logger.error(f"Could not mark session {session_id} failed: {e}")

    def _record(
        self, result: PassResult, error_summary: ErrorSummary, failure: PartialFailure
    ) -> None:
        logger.warning(
            f"Session {result.session_id}: {failure.kind.value} failure in batch "
            f"{failure.batch}: {failure.message}"
        )
        result.errors.append(failure)
        error_summary.record(failure, self.settings.max_error_samples)

    def _usable(
        self,
        session: ReconciliationSession,
        batch: list[StatementTransaction],
        batch_no: int,
        result: PassResult,
        error_summary: ErrorSummary,
    ) -> list[StatementTransaction]:
        usable: list[StatementTransaction] = []
        for txn in batch:
            problem = self._problem_with(session, txn)
            if problem:
                self._record(
                    result,
                    error_summary,
                    PartialFailure(FailureKind.SKIPPED, batch_no, f"{getattr(txn, 'id', '?')}: {problem}"),
                )
            else:
                usable.append(txn)
        return usable

    @staticmethod
    def _problem_with(session: ReconciliationSession, txn: StatementTransaction) -> Optional[str]:
        if not getattr(txn, "id", None):
            return "missing id"
        if txn.account_id != session.account_id:
            return f"belongs to account {txn.account_id}"
        if not isinstance(txn.date, date):
            return "missing date"
        if txn.amount is None:
            return "missing amount"
        if not _finite(txn.amount):
            return f"invalid amount {txn.amount}"
        return None

    def _ledger_window_days(self, rules: list[MatchRule]) -> int:
        """Widest date gap any rule or the fuzzy matcher can accept."""
        window = self.config.matching.fuzzy.date_window_days
        for rule in rules:
            for condition in rule.conditions:
                if condition.kind is ConditionKind.DATE_WITHIN_DAYS:
                    window = max(window, int(condition.value))
        return window

    def _ledger_for(
        self,
        session: ReconciliationSession,
        statement_txns: list[StatementTransaction],
        window_days: int,
    ) -> list[LedgerTransaction]:
        if not statement_txns:
            return []
        span = timedelta(days=window_days)
        start = max(session.period_start, min(t.date for t in statement_txns) - span)
        end = min(session.period_end, max(t.date for t in statement_txns) + span)
        if end < start:
            return []
        ledger_txns = []
        for txn in self.ledger.list_ledger_transactions(session.account_id, start, end):
            if _finite(txn.amount):
                ledger_txns.append(txn)
            else:
                logger.warning(f"Ledger transaction {txn.id} has invalid amount {txn.amount}, ignored")
        return ledger_txns

    # ------------------------------------------------------------------
    # Manual review
    # ------------------------------------------------------------------

    def confirm_match(self, match_id: str, resolved_by: Optional[str] = None) -> Match:
        """Confirm a suggested match."""
        return self._resolve(match_id, MatchStatus.CONFIRMED, resolved_by)

    def reject_match(self, match_id: str, resolved_by: Optional[str] = None) -> Match:
        """Reject a suggested match; both sides become eligible in the next pass."""
        return self._resolve(match_id, MatchStatus.REJECTED, resolved_by)

    def _resolve(self, match_id: str, to_status: MatchStatus, resolved_by: Optional[str]) -> Match:
        match = self.matches.get(match_id)
        session = self.sessions.get(match.session_id)
        if session.is_terminal:
            raise ConflictError(f"Session {session.id} is {session.status.value}")
        resolved = self.matches.resolve(match_id, to_status, resolved_by, self.clock())
        logger.info(
            f"Match {match_id} {to_status.value} by {resolved_by or 'unknown'} "
            f"(ledger {resolved.ledger_txn_id}, statement {resolved.statement_txn_id})"
        )
        return resolved

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_page(self, session_id: str, pagination: Optional[Pagination] = None) -> SessionPage:
        """A session with one page of its matches."""
        pagination = pagination or Pagination(page_size=self.settings.default_page_size)
        if pagination.page < 1 or pagination.page_size < 1:
            raise ValidationError("page and page_size must be positive")
        session = self.sessions.get(session_id)
        matches, total = self.matches.list_page(session_id, pagination)
        return SessionPage(
            session=session,
            matches=matches,
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )

    def iter_statements(self, session_id: str) -> Iterator[StatementTransaction]:
        """Every statement transaction of a session, page by page."""
        offset = 0
        batch_size = self.settings.batch_size
        while True:
            batch = self.statements.list_statement_transactions(session_id, offset, batch_size)
            yield from batch
            if len(batch) < batch_size:
                return
            offset += len(batch)

    def unresolved_statement_ids(self, session: ReconciliationSession) -> list[str]:
        """
        Statement transactions without a suggested or confirmed match.

        Raises:
            SourceError: The statement source could not be read
        """
        _, claimed_statements = self.matches.claimed_ids(session.id)
        try:
            return [
                txn.id
                for txn in self.iter_statements(session.id)
                if self._problem_with(session, txn) is None and txn.id not in claimed_statements
            ]
        except SourceError:
            raise
        except SOURCE_ERRORS as e:
            raise SourceError(f"Could not read statements for session {session.id}: {e}") from e

    def summary(self, session_id: str) -> SessionSummary:
        """Match counts, unresolved transactions and an overall confidence."""
        session = self.sessions.get(session_id)
        matches = self.matches.list_all(session_id)

        by_status: dict[str, int] = {s.value: 0 for s in MatchStatus}
        by_source: dict[str, int] = {}
        for match in matches:
            by_status[match.status.value] += 1
            if match.status in CLAIMING_STATUSES:
                label = match.source.label()
                by_source[label] = by_source.get(label, 0) + 1

        claimed_ledger = {m.ledger_txn_id for m in matches if m.status in CLAIMING_STATUSES}
        claimed_statements = {m.statement_txn_id for m in matches if m.status in CLAIMING_STATUSES}

        statements = [
            t for t in self.iter_statements(session_id) if self._problem_with(session, t) is None
        ]
        ledger_txns = list(
            self.ledger.list_ledger_transactions(
                session.account_id, session.period_start, session.period_end
            )
        )

        return SessionSummary(
            session=session,
            matches_by_status=by_status,
            matches_by_source=by_source,
            statement_total=len(statements),
            ledger_total=len(ledger_txns),
            unresolved_statement_ids=[t.id for t in statements if t.id not in claimed_statements],
            unresolved_ledger_ids=[t.id for t in ledger_txns if t.id not in claimed_ledger],
            confidence=self._session_confidence(matches, len(statements)),
        )

    @staticmethod
    def _session_confidence(matches: list[Match], statement_total: int) -> float:
        """
        Blend of coverage and certainty.

        70% weight on the share of statement lines with a confirmed match,
        30% on the share of confirmed matches with high confidence.
        """
        if statement_total == 0:
            return 0.0
        confirmed = [m for m in matches if m.status == MatchStatus.CONFIRMED]
        if not confirmed:
            return 0.0
        match_rate = len({m.statement_txn_id for m in confirmed}) / statement_total
        high_rate = sum(1 for m in confirmed if m.confidence_level == ConfidenceLevel.HIGH) / len(
            confirmed
        )
        return max(0.0, min(1.0, match_rate * 0.7 + high_rate * 0.3))
