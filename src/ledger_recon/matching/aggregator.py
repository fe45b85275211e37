"""
Conflict resolution across rule and fuzzy candidates.

Rule-confirmed candidates are locked first, then the remaining
candidates are accepted greedily by descending confidence. A candidate
is only accepted when neither of its transactions is already claimed,
either earlier in this pass or by a live match from a prior pass.
"""

from dataclasses import dataclass, field
from typing import Iterable
import logging

from ..models.match import CandidatePair, MatchStatus, RuleSource

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    """Accepted candidates and what was left over."""

    accepted: list[CandidatePair] = field(default_factory=list)
    unresolved_statement_ids: list[str] = field(default_factory=list)
    unresolved_ledger_ids: list[str] = field(default_factory=list)

    @property
    def confirmed(self) -> list[CandidatePair]:
        return [c for c in self.accepted if c.status == MatchStatus.CONFIRMED]

    @property
    def suggested(self) -> list[CandidatePair]:
        return [c for c in self.accepted if c.status == MatchStatus.SUGGESTED]


def _confirmed_order(candidate: CandidatePair) -> tuple:
    return (
        candidate.rule_order or (0, 0),
        candidate.date_gap_days,
        candidate.statement_id,
        candidate.ledger_id,
    )


def _suggested_order(candidate: CandidatePair) -> tuple:
    # Rule suggestions beat fuzzy ones of equal confidence
    source_rank = 0 if isinstance(candidate.source, RuleSource) else 1
    return (-candidate.confidence, source_rank, candidate.statement_id, candidate.ledger_id)


class MatchAggregator:
    """Merges candidates into a one-to-one set of matches."""

    def aggregate(
        self,
        rule_confirmed: Iterable[CandidatePair],
        candidates: Iterable[CandidatePair],
        claimed_ledger_ids: set[str],
        claimed_statement_ids: set[str],
        statement_ids: Iterable[str] = (),
        ledger_ids: Iterable[str] = (),
    ) -> AggregationResult:
        """
        Resolve conflicts between candidates.

        Args:
            rule_confirmed: Candidates from rules with ``auto_match`` set
            candidates: Rule-suggested and fuzzy candidates
            claimed_ledger_ids: Ledger ids held by existing confirmed/suggested matches
            claimed_statement_ids: Statement ids held by existing confirmed/suggested matches
            statement_ids: Statement ids in scope, for unresolved reporting
            ledger_ids: Ledger ids in scope, for unresolved reporting

        Returns:
            Accepted candidates plus the ids nobody claimed
        """
        taken_ledger = set(claimed_ledger_ids)
        taken_statement = set(claimed_statement_ids)
        result = AggregationResult()
        dropped = 0

        for candidate in sorted(rule_confirmed, key=_confirmed_order):
            if candidate.ledger_id in taken_ledger or candidate.statement_id in taken_statement:
                dropped += 1
                continue
            candidate.status = MatchStatus.CONFIRMED
            result.accepted.append(candidate)
            taken_ledger.add(candidate.ledger_id)
            taken_statement.add(candidate.statement_id)

        for candidate in sorted(candidates, key=_suggested_order):
            if candidate.ledger_id in taken_ledger or candidate.statement_id in taken_statement:
                dropped += 1
                continue
            candidate.status = MatchStatus.SUGGESTED
            result.accepted.append(candidate)
            taken_ledger.add(candidate.ledger_id)
            taken_statement.add(candidate.statement_id)

        result.unresolved_statement_ids = [i for i in statement_ids if i not in taken_statement]
        result.unresolved_ledger_ids = [i for i in ledger_ids if i not in taken_ledger]

        logger.debug(
            f"Aggregated {len(result.accepted)} matches "
            f"({len(result.confirmed)} confirmed), dropped {dropped} conflicting candidates"
        )
        return result
