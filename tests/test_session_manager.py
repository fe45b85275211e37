"""
Reconciliation Session Tests

Tests for:
- End-to-end Rent / Coffee / Utility scenario
- Idempotent reruns and one-to-one uniqueness
- Auto-match confidence and rule precedence inside a pass
- Manual confirm / reject, and rejection reopening candidates
- Lease conflicts across and within workers, leftover lease rows
- Stop and resume, failure and resume
- Batch timeouts, unreadable batches and skipped records (wrong account, non-finite amounts)
- State machine: cancel, complete, illegal transitions
- Pagination and session summary
"""

from datetime import date, timedelta
import itertools

import pytest

from ledger_recon.models.match import CandidatePair, FuzzySource, MatchStatus, RuleSource
from ledger_recon.models.session import FailureKind, Pagination, SessionStatus
from ledger_recon.sources.memory import InMemoryStatementSource
from ledger_recon.storage.database import utc_now
from ledger_recon.utils.exceptions import (
    ConflictError,
    InternalError,
    NotFoundError,
    SourceError,
    ValidationError,
)

ACCOUNT = "ACC-1"
START = date(2024, 1, 1)
END = date(2024, 1, 31)

AUTO_RULE = {
    "name": "Exact amount and date",
    "priority": 10,
    "conditions": [
        {"field": "amount", "operator": "exact"},
        {"field": "date", "operator": "within_days", "value": 0},
    ],
    "actions": {"auto_match": True},
}


def matches_of(facade, session_id, status=None):
    return facade.get_session(session_id, Pagination(page_size=500, status=status)).matches


@pytest.fixture
def small_batches(config):
    config.session.batch_size = 2
    return config


@pytest.fixture
def four_exact(facade, ledger, statements, ledger_txn, statement_txn):
    """Four statement lines, each with one exact ledger counterpart."""
    session = facade.create_session(ACCOUNT, START, END)
    for day in range(1, 5):
        ledger.add(ledger_txn(f"L{day}", day, f"{day}00.00", f"Invoice {day}"))
        statements.add(session.id, statement_txn(f"S{day}", day, f"{day}00.00", f"PAYMENT {day}"))
    facade.create_rule(ACCOUNT, AUTO_RULE)
    return session


class TestEndToEnd:
    """The Rent / Coffee / Utility walkthrough."""

    def test_scenario(self, facade, scenario):
        """Test rule confirmation, fuzzy suggestion and unresolved leftovers."""
        session, rule = scenario
        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 2
        assert result.unresolved_count == 1
        assert result.errors == []
        assert result.status == SessionStatus.IN_PROGRESS

        by_statement = {m.statement_txn_id: m for m in matches_of(facade, session.id)}
        rent = by_statement["S-RENT"]
        assert rent.ledger_txn_id == "L-RENT"
        assert rent.status == MatchStatus.CONFIRMED
        assert rent.confidence == 1.0
        assert rent.source == RuleSource(rule_id=rule.id)

        coffee = by_statement["S-STARBUCKS"]
        assert coffee.ledger_txn_id == "L-COFFEE"
        assert coffee.status == MatchStatus.SUGGESTED
        assert isinstance(coffee.source, FuzzySource)
        assert coffee.confidence >= 0.6

        assert "S-ELECTRIC" not in by_statement

        summary = facade.session_summary(session.id)
        assert summary.unresolved_statement_ids == ["S-ELECTRIC"]
        assert summary.unresolved_ledger_ids == ["L-UTILITY"]
        assert summary.matches_by_status == {"suggested": 1, "confirmed": 1, "rejected": 0}

    def test_rerun_is_idempotent(self, facade, scenario):
        """Test that a second pass creates no duplicate matches."""
        session, _ = scenario
        facade.run_matching_pass(session.id)
        before = matches_of(facade, session.id)

        second = facade.run_matching_pass(session.id)

        assert second.matches_created == 0
        assert len(matches_of(facade, session.id)) == len(before)
        assert facade.get_session(session.id).session.pass_count == 2

    def test_confirming_everything_completes_session(self, facade, scenario, ledger, ledger_txn):
        """Test that the session completes once nothing is pending."""
        session, _ = scenario
        facade.run_matching_pass(session.id)
        suggested = matches_of(facade, session.id, MatchStatus.SUGGESTED)[0]
        facade.confirm_match(suggested.id, resolved_by="reviewer")

        ledger.add(ledger_txn("L-ELECTRIC", 6, "80.00", "Electric bill"))
        result = facade.run_matching_pass(session.id)

        assert result.completed
        assert facade.get_session(session.id).session.status == SessionStatus.COMPLETED

        again = facade.run_matching_pass(session.id)
        assert again.matches_created == 0
        assert again.status == SessionStatus.COMPLETED


class TestMatchingGuarantees:
    """Uniqueness, precedence and auto-match confidence inside a pass."""

    def test_each_transaction_in_one_live_match(self, facade, ledger, statements, ledger_txn, statement_txn):
        """Test uniqueness when many statement lines look alike."""
        session = facade.create_session(ACCOUNT, START, END)
        for i in range(1, 6):
            amount = f"{20 + i}.00"
            ledger.add(ledger_txn(f"L{i}", 10, amount, "Coffee shop"))
            statements.add(session.id, statement_txn(f"S{i}", 10 + i % 2, amount, "COFFEE SHOP"))

        facade.run_matching_pass(session.id)
        live = [m for m in matches_of(facade, session.id) if m.status != MatchStatus.REJECTED]

        assert len(live) == 5
        assert len({m.ledger_txn_id for m in live}) == 5
        assert len({m.statement_txn_id for m in live}) == 5

    def test_auto_match_confidence_is_one_without_fuzzy(self, facade, four_exact, monkeypatch):
        """Test that auto-matched pairs skip the fuzzy matcher and score 1.0."""
        scored = []
        fuzzy = facade.sessions.engine.fuzzy
        original = fuzzy.score

        def spy(ledger_txn, statement_txn):
            scored.append((ledger_txn.id, statement_txn.id))
            return original(ledger_txn, statement_txn)

        monkeypatch.setattr(fuzzy, "score", spy)
        facade.run_matching_pass(four_exact.id)

        confirmed = matches_of(facade, four_exact.id, MatchStatus.CONFIRMED)
        assert len(confirmed) == 4
        assert all(m.confidence == 1.0 for m in confirmed)
        assert scored == []

    def test_higher_priority_rule_wins(self, facade, ledger, statements, ledger_txn, statement_txn, monkeypatch):
        """Test that only the first matching rule is evaluated and credited."""
        session = facade.create_session(ACCOUNT, START, END)
        ledger.add(ledger_txn("L1", 5, "40.00", "Gym"))
        statements.add(session.id, statement_txn("S1", 5, "40.00", "GYM MEMBERSHIP"))
        low = facade.create_rule(ACCOUNT, {**AUTO_RULE, "name": "low", "priority": 50})
        high = facade.create_rule(
            ACCOUNT,
            {
                "name": "high",
                "priority": 1,
                "conditions": [{"field": "description", "operator": "contains", "value": "gym"}],
                "actions": {"confidence_override": 0.9},
            },
        )

        evaluated = []
        evaluator = facade.sessions.engine.evaluator
        original = evaluator.evaluate

        def spy(rule, ledger_txn, statement_txn):
            evaluated.append(rule.id)
            return original(rule, ledger_txn, statement_txn)

        monkeypatch.setattr(evaluator, "evaluate", spy)
        facade.run_matching_pass(session.id)

        (match,) = matches_of(facade, session.id)
        assert match.source == RuleSource(rule_id=high.id)
        assert match.status == MatchStatus.SUGGESTED
        assert match.confidence == pytest.approx(0.9)
        assert low.id not in evaluated

    def test_ledger_outside_period_is_ignored(self, facade, ledger, statements, ledger_txn, statement_txn):
        """Test that ledger entries outside the session period are never matched."""
        session = facade.create_session(ACCOUNT, date(2024, 1, 10), END)
        ledger.add(ledger_txn("L-EARLY", 8, "30.00", "Parking"))
        statements.add(session.id, statement_txn("S1", 10, "30.00", "PARKING"))

        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 0
        assert result.unresolved_count == 1


class TestManualReview:
    """Confirm and reject."""

    def test_confirm_records_reviewer(self, facade, scenario):
        """Test that confirming stamps resolved_by and resolved_at."""
        session, _ = scenario
        facade.run_matching_pass(session.id)
        suggested = matches_of(facade, session.id, MatchStatus.SUGGESTED)[0]

        confirmed = facade.confirm_match(suggested.id, resolved_by="alex")

        assert confirmed.status == MatchStatus.CONFIRMED
        assert confirmed.resolved_by == "alex"
        assert confirmed.resolved_at is not None

    def test_only_suggested_matches_can_be_resolved(self, facade, scenario):
        """Test that resolving a confirmed match raises ConflictError."""
        session, _ = scenario
        facade.run_matching_pass(session.id)
        confirmed = matches_of(facade, session.id, MatchStatus.CONFIRMED)[0]

        with pytest.raises(ConflictError):
            facade.reject_match(confirmed.id)
        with pytest.raises(ConflictError):
            facade.confirm_match(confirmed.id)

    def test_unknown_match(self, facade):
        """Test that an unknown match id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            facade.confirm_match("missing")

    def test_rejection_reopens_both_sides(self, facade, ledger, statements, ledger_txn, statement_txn):
        """Test that rejected sides are matched again, but not to each other."""
        session = facade.create_session(ACCOUNT, START, END)
        ledger.add(
            ledger_txn("L-BEST", 3, "50.00", "Coffee"),
            ledger_txn("L-NEXT", 5, "50.00", "Coffee"),
        )
        statements.add(session.id, statement_txn("S1", 4, "50.00", "COFFEE"))

        facade.run_matching_pass(session.id)
        (first,) = matches_of(facade, session.id)
        assert first.ledger_txn_id in {"L-BEST", "L-NEXT"}

        facade.reject_match(first.id, resolved_by="alex")
        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 1
        live = matches_of(facade, session.id, MatchStatus.SUGGESTED)
        assert [m.statement_txn_id for m in live] == ["S1"]
        assert live[0].ledger_txn_id != first.ledger_txn_id

    def test_resolving_in_cancelled_session_conflicts(self, facade, scenario):
        """Test that terminal sessions reject manual actions."""
        session, _ = scenario
        facade.run_matching_pass(session.id)
        suggested = matches_of(facade, session.id, MatchStatus.SUGGESTED)[0]
        facade.cancel_session(session.id)

        with pytest.raises(ConflictError):
            facade.confirm_match(suggested.id)


class TestLeases:
    """One pass per session at a time."""

    def test_live_lease_blocks_second_pass(self, facade, scenario):
        """Test that a live lease held by another worker raises ConflictError."""
        session, _ = scenario
        facade.sessions.leases.acquire(session.id, "worker-b", timedelta(minutes=5), utc_now())

        with pytest.raises(ConflictError):
            facade.run_matching_pass(session.id)
        assert matches_of(facade, session.id) == []

    def test_expired_lease_is_taken_over(self, facade, scenario):
        """Test that an expired lease does not block a new pass."""
        session, _ = scenario
        facade.sessions.leases.acquire(
            session.id, "worker-b", timedelta(seconds=1), utc_now() - timedelta(hours=1)
        )

        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 2
        assert facade.sessions.leases.get(session.id) is None

    def test_lease_released_after_pass(self, facade, scenario):
        """Test that the lease row is removed once the pass ends."""
        session, _ = scenario
        facade.run_matching_pass(session.id)
        assert facade.sessions.leases.get(session.id) is None

    def test_complete_blocked_while_pass_runs(self, facade, scenario):
        """Test that manual completion conflicts with a live lease."""
        session, _ = scenario
        facade.run_matching_pass(session.id)
        suggested = matches_of(facade, session.id, MatchStatus.SUGGESTED)[0]
        facade.reject_match(suggested.id)
        facade.sessions.leases.acquire(session.id, "worker-b", timedelta(minutes=5), utc_now())

        with pytest.raises(ConflictError):
            facade.complete_session(session.id)

        facade.sessions.leases.release(facade.sessions.leases.get(session.id))
        assert facade.complete_session(session.id).status == SessionStatus.COMPLETED

    def test_same_worker_cannot_run_two_passes_at_once(
        self, make_facade, ledger, ledger_txn, statement_txn
    ):
        """Test that a second pass through the same facade conflicts while the first runs."""
        source = StopAfterFirstFetch()
        facade = make_facade(statements=source)
        session = facade.create_session(ACCOUNT, START, END)
        ledger.add(ledger_txn("L1", 1, "10.00"))
        source.add(session.id, statement_txn("S1", 1, "10.00"))
        facade.create_rule(ACCOUNT, AUTO_RULE)
        outcomes = []

        def second_pass(session_id):
            try:
                facade.run_matching_pass(session_id)
                outcomes.append("ran")
            except ConflictError:
                outcomes.append("conflict")

        source.on_first_fetch = second_pass
        result = facade.run_matching_pass(session.id)

        assert outcomes == ["conflict"]
        assert result.matches_created == 1
        confirmed = matches_of(facade, session.id, MatchStatus.CONFIRMED)
        assert [(m.ledger_txn_id, m.statement_txn_id) for m in confirmed] == [("L1", "S1")]
        assert facade.sessions.leases.get(session.id) is None

    def test_existing_lease_row_of_same_worker(self, facade, scenario):
        """Test that a leftover lease row blocks while live and is taken over once expired."""
        session, _ = scenario
        leases = facade.sessions.leases
        leases.acquire(session.id, facade.sessions.worker_id, timedelta(minutes=5), utc_now())

        with pytest.raises(ConflictError):
            facade.run_matching_pass(session.id)

        leases.release(leases.get(session.id))
        leases.acquire(
            session.id, facade.sessions.worker_id, timedelta(seconds=1), utc_now() - timedelta(hours=1)
        )

        result = facade.run_matching_pass(session.id)
        assert result.matches_created == 2
        assert leases.get(session.id) is None

    def test_lease_acquire_conflicts_for_every_owner(self, facade, scenario):
        """Test that a live lease rejects both other owners and its own owner."""
        session, _ = scenario
        leases = facade.sessions.leases
        leases.acquire(session.id, "worker-b", timedelta(minutes=5), utc_now())

        for owner in ("worker-b", "worker-c"):
            with pytest.raises(ConflictError):
                leases.acquire(session.id, owner, timedelta(minutes=5), utc_now())
        assert leases.get(session.id).lease_owner == "worker-b"

    def test_inserting_an_already_matched_side_is_dropped(self, facade, scenario, ledger_txn, statement_txn):
        """Test that storing a candidate whose sides are already matched creates nothing."""
        session, rule = scenario
        facade.run_matching_pass(session.id)
        duplicate = CandidatePair(
            ledger_txn=ledger_txn("L-RENT", 1, "100.00", "Rent"),
            statement_txn=statement_txn("S-RENT", 1, "100.00", "RENT PAYMENT"),
            source=RuleSource(rule_id=rule.id),
            confidence=1.0,
            status=MatchStatus.CONFIRMED,
        )

        created = facade.sessions.matches.add_matches(session.id, [duplicate], utc_now())

        assert created == []
        rent = [m for m in matches_of(facade, session.id) if m.statement_txn_id == "S-RENT"]
        assert len(rent) == 1


class StopAfterFirstFetch(InMemoryStatementSource):
    """Statement source that asks for a stop the first time it is read."""

    def __init__(self):
        super().__init__()
        self.on_first_fetch = None

    def list_statement_transactions(self, session_id, offset, limit):
        if self.on_first_fetch is not None:
            hook, self.on_first_fetch = self.on_first_fetch, None
            hook(session_id)
        return super().list_statement_transactions(session_id, offset, limit)


class FlakySource(InMemoryStatementSource):
    """Statement source whose first read at a given offset fails."""

    def __init__(self, failing_offset):
        super().__init__()
        self.failing_offset = failing_offset

    def list_statement_transactions(self, session_id, offset, limit):
        if offset == self.failing_offset:
            self.failing_offset = None
            raise SourceError("unreadable batch")
        return super().list_statement_transactions(session_id, offset, limit)


class TestResumability:
    """Stop, failure and timeout leave a resumable session."""

    def _load_four(self, facade, ledger, statements, ledger_txn, statement_txn):
        session = facade.create_session(ACCOUNT, START, END)
        for day in range(1, 5):
            ledger.add(ledger_txn(f"L{day}", day, f"{day}00.00"))
            statements.add(session.id, statement_txn(f"S{day}", day, f"{day}00.00"))
        facade.create_rule(ACCOUNT, AUTO_RULE)
        return session

    def test_stop_and_resume(self, make_facade, small_batches, ledger, ledger_txn, statement_txn):
        """Test that a stopped pass keeps its checkpoint and the next pass finishes the work."""
        source = StopAfterFirstFetch()
        facade = make_facade(statements=source)
        session = self._load_four(facade, ledger, source, ledger_txn, statement_txn)
        source.on_first_fetch = facade.stop_pass

        first = facade.run_matching_pass(session.id)
        stored = facade.get_session(session.id).session

        assert first.stopped
        assert first.matches_created == 2
        assert stored.status == SessionStatus.IN_PROGRESS
        assert stored.checkpoint == 2
        assert stored.stop_requested is False

        second = facade.run_matching_pass(session.id)

        assert second.matches_created == 2
        assert second.completed
        confirmed = matches_of(facade, session.id, MatchStatus.CONFIRMED)
        assert sorted(m.statement_txn_id for m in confirmed) == ["S1", "S2", "S3", "S4"]

    def test_storage_failure_marks_failed_and_resumes(
        self, facade, small_batches, ledger, statements, ledger_txn, statement_txn, monkeypatch
    ):
        """Test that exhausted retries fail the session and a rerun picks up from the checkpoint."""
        session = self._load_four(facade, ledger, statements, ledger_txn, statement_txn)
        matches = facade.sessions.matches
        original = matches.add_matches
        calls = itertools.count(1)

        def failing_second_batch(session_id, candidates, now):
            if next(calls) == 2:
                raise InternalError("insert matches failed after 3 attempts")
            return original(session_id, candidates, now)

        monkeypatch.setattr(matches, "add_matches", failing_second_batch)

        with pytest.raises(InternalError):
            facade.run_matching_pass(session.id)

        stored = facade.get_session(session.id).session
        assert stored.status == SessionStatus.FAILED
        assert stored.checkpoint == 2
        assert stored.error_summary.count == 1
        assert stored.error_summary.samples[0].kind == FailureKind.INTERNAL
        assert facade.sessions.leases.get(session.id) is None

        monkeypatch.setattr(matches, "add_matches", original)
        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 2
        assert result.completed
        assert len(matches_of(facade, session.id)) == 4

    def test_batch_timeout_is_partial_failure(self, make_facade, small_batches, ledger, statements, ledger_txn, statement_txn):
        """Test that a batch over its time limit is recorded and the pass carries on."""
        ticks = itertools.count(0, 100)
        facade = make_facade(monotonic=lambda: next(ticks))
        session = self._load_four(facade, ledger, statements, ledger_txn, statement_txn)

        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 0
        assert [e.kind for e in result.errors] == [FailureKind.TIMEOUT, FailureKind.TIMEOUT]
        assert result.unresolved_count == 4
        assert result.status == SessionStatus.IN_PROGRESS
        assert facade.get_session(session.id).session.error_summary.count == 2

    def test_unreadable_batch_is_skipped(self, make_facade, small_batches, ledger, ledger_txn, statement_txn):
        """Test that a source error skips one batch and a later pass retries it."""
        source = FlakySource(failing_offset=0)
        facade = make_facade(statements=source)
        session = self._load_four(facade, ledger, source, ledger_txn, statement_txn)

        first = facade.run_matching_pass(session.id)

        assert [e.kind for e in first.errors] == [FailureKind.PARSE]
        assert first.matches_created == 2
        assert first.unresolved_count == 2
        assert not first.completed

        second = facade.run_matching_pass(session.id)
        assert second.matches_created == 2
        assert second.completed

    def test_invalid_records_are_skipped(self, facade, ledger, statements, ledger_txn, statement_txn):
        """Test that records for another account are skipped and reported."""
        session = facade.create_session(ACCOUNT, START, END)
        facade.create_rule(ACCOUNT, AUTO_RULE)
        ledger.add(ledger_txn("L1", 2, "10.00"))
        statements.add(
            session.id,
            statement_txn("S1", 2, "10.00"),
            statement_txn("S-OTHER", 2, "10.00", account_id="ACC-2"),
        )

        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 1
        assert [e.kind for e in result.errors] == [FailureKind.SKIPPED]
        assert "S-OTHER" in result.errors[0].message
        assert result.completed

    def test_non_finite_amounts_are_skipped(self, facade, ledger, statements, ledger_txn, statement_txn):
        """Test that NaN and infinite amounts are skipped instead of aborting the pass."""
        session = facade.create_session(ACCOUNT, START, END)
        facade.create_rule(ACCOUNT, AUTO_RULE)
        ledger.add(ledger_txn("L1", 2, "10.00"), ledger_txn("L-NAN", 2, "NaN"))
        statements.add(
            session.id,
            statement_txn("S1", 2, "10.00"),
            statement_txn("S-NAN", 2, "NaN"),
            statement_txn("S-INF", 3, "Infinity"),
        )

        result = facade.run_matching_pass(session.id)

        assert result.matches_created == 1
        assert [e.kind for e in result.errors] == [FailureKind.SKIPPED, FailureKind.SKIPPED]
        assert "S-NAN" in result.errors[0].message
        assert result.completed
        confirmed = matches_of(facade, session.id, MatchStatus.CONFIRMED)
        assert [(m.ledger_txn_id, m.statement_txn_id) for m in confirmed] == [("L1", "S1")]


class TestSessionLifecycle:
    """State machine and read models."""

    def test_create_validates_period(self, facade):
        """Test that an inverted period is rejected."""
        with pytest.raises(ValidationError):
            facade.create_session(ACCOUNT, END, START)

    def test_new_session_is_pending(self, facade):
        """Test the initial state."""
        session = facade.create_session(ACCOUNT, START, END, name="Jan")
        page = facade.get_session(session.id)

        assert page.session.status == SessionStatus.PENDING
        assert page.session.name == "Jan"
        assert page.total == 0

    def test_unknown_session(self, facade):
        """Test that unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            facade.run_matching_pass("missing")
        with pytest.raises(NotFoundError):
            facade.get_session("missing")

    def test_cancel_is_terminal(self, facade, scenario):
        """Test that cancelled sessions refuse passes and a second cancel."""
        session, _ = scenario
        cancelled = facade.cancel_session(session.id)

        assert cancelled.status == SessionStatus.CANCELLED
        with pytest.raises(ConflictError):
            facade.run_matching_pass(session.id)
        with pytest.raises(ConflictError):
            facade.cancel_session(session.id)
        with pytest.raises(ConflictError):
            facade.stop_pass(session.id)

    def test_cancel_during_pass_stops_at_batch_boundary(
        self, make_facade, small_batches, ledger, ledger_txn, statement_txn
    ):
        """Test that a cancel mid-pass stops the pass and keeps the cancelled status."""
        source = StopAfterFirstFetch()
        facade = make_facade(statements=source)
        session = facade.create_session(ACCOUNT, START, END)
        for day in range(1, 5):
            ledger.add(ledger_txn(f"L{day}", day, f"{day}00.00"))
            source.add(session.id, statement_txn(f"S{day}", day, f"{day}00.00"))
        facade.create_rule(ACCOUNT, AUTO_RULE)
        source.on_first_fetch = facade.cancel_session

        result = facade.run_matching_pass(session.id)

        assert result.stopped
        assert result.status == SessionStatus.CANCELLED
        assert facade.get_session(session.id).session.status == SessionStatus.CANCELLED

    def test_manual_complete(self, facade, scenario):
        """Test that completion needs every suggestion reviewed."""
        session, _ = scenario
        with pytest.raises(ConflictError):
            facade.complete_session(session.id)

        facade.run_matching_pass(session.id)
        with pytest.raises(ConflictError):
            facade.complete_session(session.id)

        suggested = matches_of(facade, session.id, MatchStatus.SUGGESTED)[0]
        facade.reject_match(suggested.id)
        completed = facade.complete_session(session.id)

        assert completed.status == SessionStatus.COMPLETED
        with pytest.raises(ConflictError):
            facade.cancel_session(session.id)

    def test_pagination(self, facade, four_exact):
        """Test page slicing and totals."""
        facade.run_matching_pass(four_exact.id)

        first = facade.get_session(four_exact.id, Pagination(page=1, page_size=3))
        second = facade.get_session(four_exact.id, Pagination(page=2, page_size=3))

        assert first.total == 4
        assert first.total_pages == 2
        assert len(first.matches) == 3
        assert len(second.matches) == 1
        assert {m.id for m in first.matches}.isdisjoint({m.id for m in second.matches})

    def test_invalid_pagination(self, facade, four_exact):
        """Test that a zero page is rejected."""
        with pytest.raises(ValidationError):
            facade.get_session(four_exact.id, Pagination(page=0))

    def test_summary_confidence(self, facade, four_exact):
        """Test that a fully auto-matched session has full confidence."""
        facade.run_matching_pass(four_exact.id)
        summary = facade.session_summary(four_exact.id)

        assert summary.statement_total == 4
        assert summary.match_rate == pytest.approx(100.0)
        assert summary.confidence == pytest.approx(1.0)
        assert sum(summary.matches_by_source.values()) == 4
