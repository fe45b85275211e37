"""Match records, their provenance and in-memory candidate pairs."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from .transaction import LedgerTransaction, StatementTransaction


class MatchStatus(str, Enum):
    """Lifecycle status of a persisted match."""

    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


# Statuses that hold both sides of a match
CLAIMING_STATUSES = (MatchStatus.SUGGESTED, MatchStatus.CONFIRMED)


class ConfidenceLevel(str, Enum):
    """Coarse confidence bands for reviewers."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def for_score(cls, score: float) -> "ConfidenceLevel":
        if score >= 0.8:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class RuleSource:
    """Match produced by a deterministic rule."""

    rule_id: str

    @property
    def kind(self) -> str:
        return "rule"

    def label(self) -> str:
        return f"rule:{self.rule_id}"


@dataclass(frozen=True)
class FuzzySource:
    """Match produced by the heuristic scorer."""

    score: float

    @property
    def kind(self) -> str:
        return "fuzzy"

    def label(self) -> str:
        return "fuzzy"


MatchSource = Union[RuleSource, FuzzySource]


def source_from_columns(
    kind: str, rule_id: Optional[str], score: Optional[float]
) -> MatchSource:
    """Rebuild a match source from its persisted columns."""
    if kind == "rule":
        if not rule_id:
            raise ValueError("rule source without rule_id")
        return RuleSource(rule_id=rule_id)
    if kind == "fuzzy":
        return FuzzySource(score=float(score or 0.0))
    raise ValueError(f"Unknown match source kind: {kind!r}")


def source_to_columns(source: MatchSource) -> dict[str, object]:
    """Flatten a match source into persisted columns."""
    if isinstance(source, RuleSource):
        return {"source_kind": "rule", "source_rule_id": source.rule_id, "source_score": None}
    if isinstance(source, FuzzySource):
        return {"source_kind": "fuzzy", "source_rule_id": None, "source_score": source.score}
    raise TypeError(f"Unsupported match source: {source!r}")


@dataclass
class CandidatePair:
    """
    A proposed match produced and consumed within one matching pass.

    Never persisted; the aggregator turns accepted candidates into matches.
    """

    ledger_txn: LedgerTransaction
    statement_txn: StatementTransaction
    source: MatchSource
    confidence: float
    status: MatchStatus = MatchStatus.SUGGESTED
    reason: str = ""
    # Ordering of the winning rule; None for fuzzy candidates
    rule_order: Optional[tuple[int, int]] = None

    @property
    def ledger_id(self) -> str:
        return self.ledger_txn.id

    @property
    def statement_id(self) -> str:
        return self.statement_txn.id

    @property
    def date_gap_days(self) -> int:
        return abs((self.statement_txn.date - self.ledger_txn.date).days)


@dataclass
class Match:
    """A persisted association between one statement and one ledger transaction."""

    id: str
    session_id: str
    ledger_txn_id: str
    statement_txn_id: str
    confidence: float
    status: MatchStatus
    source: MatchSource
    created_at: datetime
    reason: str = ""
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return ConfidenceLevel.for_score(self.confidence)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "session_id": self.session_id,
            "ledger_txn_id": self.ledger_txn_id,
            "statement_txn_id": self.statement_txn_id,
            "confidence": self.confidence,
            "confidence_level": self.confidence_level.value,
            "status": self.status.value,
            "reason": self.reason,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }
        data.update(source_to_columns(self.source))
        return data

