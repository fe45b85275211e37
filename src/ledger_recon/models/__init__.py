"""Data models for reconciliation."""

from .transaction import LedgerTransaction, StatementTransaction, make_statement_id
from .rule import (
    ConditionKind,
    RuleCondition,
    RuleActions,
    RuleInput,
    RulePatch,
    MatchRule,
)
from .match import (
    MatchStatus,
    ConfidenceLevel,
    RuleSource,
    FuzzySource,
    MatchSource,
    CandidatePair,
    Match,
)
from .session import (
    SessionStatus,
    FailureKind,
    PartialFailure,
    ErrorSummary,
    ReconciliationSession,
    Lease,
    PassResult,
    Pagination,
    SessionPage,
    SessionSummary,
)

__all__ = [
    "LedgerTransaction",
    "StatementTransaction",
    "make_statement_id",
    "ConditionKind",
    "RuleCondition",
    "RuleActions",
    "RuleInput",
    "RulePatch",
    "MatchRule",
    "MatchStatus",
    "ConfidenceLevel",
    "RuleSource",
    "FuzzySource",
    "MatchSource",
    "CandidatePair",
    "Match",
    "SessionStatus",
    "FailureKind",
    "PartialFailure",
    "ErrorSummary",
    "ReconciliationSession",
    "Lease",
    "PassResult",
    "Pagination",
    "SessionPage",
    "SessionSummary",
]
