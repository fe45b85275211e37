"""
Heuristic similarity scoring for pairs no rule resolved.

The score is a weighted sum of three signals, each in [0, 1]:

- amount: ``exp(-|Δamount| / amount_scale)``
- date: ``exp(-|Δdays| / date_scale)``
- description: Jaccard overlap of lowercased word tokens

Every signal is non-increasing in its delta and the weights are
non-negative, so the combined score never rises as the amount or date
gap widens.

Candidates are pre-filtered into buckets by date and amount proximity so
each statement transaction is only scored against a small slice of the
ledger.
"""

from bisect import bisect_left, bisect_right
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Optional
import math
import re

from ..config import FuzzySettings
from ..models.match import CandidatePair, FuzzySource, MatchStatus
from ..models.transaction import LedgerTransaction, StatementTransaction
from .deadline import Deadline, NoDeadline

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> set[str]:
    """Lowercased alphanumeric word tokens."""
    return set(_TOKEN_RE.findall((text or "").lower()))


def jaccard(left: set[str], right: set[str]) -> float:
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


class LedgerIndex:
    """Ledger transactions sorted by date for windowed lookups."""

    def __init__(self, transactions: Iterable[LedgerTransaction]):
        self.transactions = sorted(transactions, key=lambda t: (t.date, t.id))
        self._dates = [t.date for t in self.transactions]

    def __len__(self) -> int:
        return len(self.transactions)

    def within_days(self, statement_txn: StatementTransaction, days: int) -> list[LedgerTransaction]:
        lo = bisect_left(self._dates, statement_txn.date - timedelta(days=days))
        hi = bisect_right(self._dates, statement_txn.date + timedelta(days=days))
        return self.transactions[lo:hi]


class FuzzyMatcher:
    """Scores and ranks fuzzy candidates."""

    def __init__(self, settings: Optional[FuzzySettings] = None):
        """
        Initialize the matcher.

        Args:
            settings: Windows, scales, weights, threshold and top-K
        """
        self.settings = settings or FuzzySettings()
        weights = self.settings.weights
        total = weights.total
        if total > 0:
            self._weights = (weights.amount / total, weights.date / total, weights.description / total)
        else:
            self._weights = (0.0, 0.0, 0.0)

    def amount_signal(self, delta: Decimal) -> float:
        return math.exp(-abs(float(delta)) / self.settings.amount_scale)

    def date_signal(self, days: int) -> float:
        return math.exp(-abs(days) / self.settings.date_scale)

    def description_signal(self, left: str, right: str) -> float:
        return jaccard(tokenize(left), tokenize(right))

    def score(self, ledger_txn: LedgerTransaction, statement_txn: StatementTransaction) -> float:
        """Combined confidence for a pair, in [0, 1]."""
        w_amount, w_date, w_description = self._weights
        total = (
            w_amount * self.amount_signal(statement_txn.amount - ledger_txn.amount)
            + w_date * self.date_signal((statement_txn.date - ledger_txn.date).days)
            + w_description
            * self.description_signal(statement_txn.description, ledger_txn.description)
        )
        return max(0.0, min(1.0, total))

    def in_amount_bucket(
        self, ledger_txn: LedgerTransaction, statement_txn: StatementTransaction
    ) -> bool:
        window = max(
            abs(statement_txn.amount) * Decimal(str(self.settings.amount_window_pct)) / Decimal(100),
            self.settings.amount_window_floor,
        )
        return abs(statement_txn.amount - ledger_txn.amount) <= window

    def bucket(
        self, statement_txn: StatementTransaction, index: LedgerIndex
    ) -> list[LedgerTransaction]:
        """Ledger transactions close enough in date and amount to be scored."""
        return [
            ledger_txn
            for ledger_txn in index.within_days(statement_txn, self.settings.date_window_days)
            if self.in_amount_bucket(ledger_txn, statement_txn)
        ]

    def explain(
        self, ledger_txn: LedgerTransaction, statement_txn: StatementTransaction, score: float
    ) -> str:
        delta = abs(statement_txn.amount - ledger_txn.amount)
        days = abs((statement_txn.date - ledger_txn.date).days)
        overlap = self.description_signal(statement_txn.description, ledger_txn.description)
        return (
            f"Fuzzy score {score:.2f}: amount difference {delta:.2f}, "
            f"{days} day(s) apart, description overlap {overlap:.0%}"
        )

    def candidates(
        self,
        statement_txns: Iterable[StatementTransaction],
        ledger_txns: Iterable[LedgerTransaction],
        excluded_pairs: Optional[set[tuple[str, str]]] = None,
        deadline: Optional[Deadline] = None,
    ) -> list[CandidatePair]:
        """
        Produce fuzzy candidates at or above the threshold.

        Args:
            statement_txns: Statement transactions still unresolved
            ledger_txns: Ledger transactions still unresolved
            excluded_pairs: ``(ledger_id, statement_id)`` pairs a rule already decided
            deadline: Time limit, checked once per statement transaction

        Returns:
            At most ``top_k`` candidates per statement transaction
        """
        excluded_pairs = excluded_pairs or set()
        deadline = deadline or NoDeadline()
        index = LedgerIndex(ledger_txns)
        results: list[CandidatePair] = []

        for statement_txn in statement_txns:
            deadline.check()
            scored: list[tuple[float, LedgerTransaction]] = []
            for ledger_txn in self.bucket(statement_txn, index):
                if (ledger_txn.id, statement_txn.id) in excluded_pairs:
                    continue
                score = self.score(ledger_txn, statement_txn)
                if score >= self.settings.threshold:
                    scored.append((score, ledger_txn))

            scored.sort(key=lambda item: (-item[0], item[1].id))
            for score, ledger_txn in scored[: self.settings.top_k]:
                results.append(
                    CandidatePair(
                        ledger_txn=ledger_txn,
                        statement_txn=statement_txn,
                        source=FuzzySource(score=score),
                        confidence=score,
                        status=MatchStatus.SUGGESTED,
                        reason=self.explain(ledger_txn, statement_txn, score),
                    )
                )

        return results
