"""
Matching pipeline for one batch of statement transactions.
Rules first, then fuzzy scoring for what the rules left, then aggregation.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import time

from ..config import MatchingConfig
from ..models.match import CandidatePair, MatchStatus, RuleSource
from ..models.rule import MatchRule
from ..models.transaction import LedgerTransaction, StatementTransaction
from ..rules.evaluator import RuleEvaluator, order_rules
from .aggregator import AggregationResult, MatchAggregator
from .deadline import Deadline, NoDeadline
from .fuzzy import FuzzyMatcher

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """What one batch produced."""

    aggregation: AggregationResult
    rule_candidates: int = 0
    fuzzy_candidates: int = 0
    elapsed_seconds: float = 0.0

    @property
    def accepted(self) -> list[CandidatePair]:
        return self.aggregation.accepted

    @property
    def matches_by_source(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for candidate in self.accepted:
            label = candidate.source.label()
            counts[label] = counts.get(label, 0) + 1
        return counts


class MatchingEngine:
    """
    Runs rules, the fuzzy matcher and the aggregator over a batch.

    Holds no per-session state; the caller supplies the rules, the
    transactions and the ids already claimed by earlier matches.
    """

    def __init__(self, config: Optional[MatchingConfig] = None):
        """
        Initialize the matching engine.

        Args:
            config: Matching configuration
        """
        self.config = config or MatchingConfig()
        self.evaluator = RuleEvaluator(self.config.rules)
        self.fuzzy = FuzzyMatcher(self.config.fuzzy)
        self.aggregator = MatchAggregator()

    def run_batch(
        self,
        rules: list[MatchRule],
        ledger_txns: list[LedgerTransaction],
        statement_txns: list[StatementTransaction],
        claimed_ledger_ids: Optional[set[str]] = None,
        claimed_statement_ids: Optional[set[str]] = None,
        deadline: Optional[Deadline] = None,
        rejected_pairs: Optional[set[tuple[str, str]]] = None,
    ) -> BatchOutcome:
        """
        Match one batch.

        Args:
            rules: Account rules (any order; disabled ones are skipped)
            ledger_txns: Ledger transactions in scope for the batch
            statement_txns: Statement transactions of the batch
            claimed_ledger_ids: Ledger ids held by existing live matches
            claimed_statement_ids: Statement ids held by existing live matches
            deadline: Time limit for the batch
            rejected_pairs: ``(ledger_id, statement_id)`` pairs never to propose again

        Returns:
            Batch outcome with accepted candidates and unresolved ids

        Raises:
            BatchTimeoutError: If the deadline expires mid-batch
        """
        start_time = time.monotonic()
        claimed_ledger_ids = claimed_ledger_ids or set()
        claimed_statement_ids = claimed_statement_ids or set()
        deadline = deadline or NoDeadline()
        rejected_pairs = rejected_pairs or set()

        open_ledger = [t for t in ledger_txns if t.id not in claimed_ledger_ids]
        open_statements = [t for t in statement_txns if t.id not in claimed_statement_ids]
        ordered = order_rules(rules)

        rule_confirmed, rule_suggested, decided_pairs = self._apply_rules(
            ordered, open_ledger, open_statements, deadline, rejected_pairs
        )

        # Auto-matched transactions never reach the fuzzy matcher
        locked_ledger = {c.ledger_id for c in rule_confirmed}
        locked_statements = {c.statement_id for c in rule_confirmed}
        fuzzy_candidates = self.fuzzy.candidates(
            [t for t in open_statements if t.id not in locked_statements],
            [t for t in open_ledger if t.id not in locked_ledger],
            excluded_pairs=decided_pairs | rejected_pairs,
            deadline=deadline,
        )

        aggregation = self.aggregator.aggregate(
            rule_confirmed,
            rule_suggested + fuzzy_candidates,
            claimed_ledger_ids,
            claimed_statement_ids,
            statement_ids=[t.id for t in open_statements],
            ledger_ids=[t.id for t in open_ledger],
        )

        elapsed = time.monotonic() - start_time
        logger.debug(
            f"Batch of {len(statement_txns)} statement txns against {len(ledger_txns)} ledger "
            f"txns: {len(rule_confirmed) + len(rule_suggested)} rule and "
            f"{len(fuzzy_candidates)} fuzzy candidates, {len(aggregation.accepted)} accepted "
            f"in {elapsed:.2f}s"
        )

        return BatchOutcome(
            aggregation=aggregation,
            rule_candidates=len(rule_confirmed) + len(rule_suggested),
            fuzzy_candidates=len(fuzzy_candidates),
            elapsed_seconds=elapsed,
        )

    def _apply_rules(
        self,
        ordered_rules: list[MatchRule],
        ledger_txns: list[LedgerTransaction],
        statement_txns: list[StatementTransaction],
        deadline: Deadline,
        rejected_pairs: set[tuple[str, str]],
    ) -> tuple[list[CandidatePair], list[CandidatePair], set[tuple[str, str]]]:
        """
        Evaluate rules against every open pair.

        Returns:
            Tuple of (confirmed candidates, suggested candidates, decided pairs)
        """
        confirmed: list[CandidatePair] = []
        suggested: list[CandidatePair] = []
        decided: set[tuple[str, str]] = set()

        if not ordered_rules:
            return confirmed, suggested, decided

        for statement_txn in statement_txns:
            deadline.check()
            for ledger_txn in ledger_txns:
                if (ledger_txn.id, statement_txn.id) in rejected_pairs:
                    continue
                rule = self.evaluator.first_match(ordered_rules, ledger_txn, statement_txn)
                if rule is None:
                    continue

                decided.add((ledger_txn.id, statement_txn.id))
                status = MatchStatus.CONFIRMED if rule.actions.auto_match else MatchStatus.SUGGESTED
                candidate = CandidatePair(
                    ledger_txn=ledger_txn,
                    statement_txn=statement_txn,
                    source=RuleSource(rule_id=rule.id),
                    confidence=rule.actions.confidence,
                    status=status,
                    reason=f"Matched by rule: {rule.name or rule.id}",
                    rule_order=rule.sort_key,
                )
                if status == MatchStatus.CONFIRMED:
                    confirmed.append(candidate)
                else:
                    suggested.append(candidate)

        return confirmed, suggested, decided
