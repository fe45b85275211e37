"""Reconciliation session state, pass results and read models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from .match import Match, MatchStatus


class SessionStatus(str, Enum):
    """Lifecycle status of a reconciliation session."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED})

# Allowed transitions; anything else is a ConflictError
SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.CANCELLED}),
    SessionStatus.IN_PROGRESS: frozenset(
        {
            SessionStatus.IN_PROGRESS,
            SessionStatus.COMPLETED,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.FAILED: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


class FailureKind(str, Enum):
    """Kinds of partial failure recorded during a pass."""

    SKIPPED = "skipped"  # Unusable record, dropped from the batch
    PARSE = "parse"  # Source failed to produce the batch
    TIMEOUT = "timeout"  # Batch exceeded its time limit
    INTERNAL = "internal"  # Storage gave up after retries


@dataclass(frozen=True)
class PartialFailure:
    """A batch-level problem that did not abort the pass."""

    kind: FailureKind
    batch: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "batch": self.batch, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PartialFailure":
        return cls(
            kind=FailureKind(data["kind"]),
            batch=int(data.get("batch", 0)),
            message=str(data.get("message", "")),
        )


@dataclass
class ErrorSummary:
    """Count of partial failures plus a bounded sample of them."""

    count: int = 0
    samples: list[PartialFailure] = field(default_factory=list)

    def record(self, failure: PartialFailure, max_samples: int) -> None:
        self.count += 1
        if len(self.samples) < max_samples:
            self.samples.append(failure)

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "samples": [s.to_dict() for s in self.samples]}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ErrorSummary":
        if not data:
            return cls()
        return cls(
            count=int(data.get("count", 0)),
            samples=[PartialFailure.from_dict(s) for s in data.get("samples", [])],
        )


@dataclass
class ReconciliationSession:
    """A bounded unit of reconciliation work for one account and period."""

    id: str
    account_id: str
    period_start: date
    period_end: date
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    name: str = ""
    error_summary: ErrorSummary = field(default_factory=ErrorSummary)
    # Offset of the next statement batch in the current pass
    checkpoint: int = 0
    stop_requested: bool = False
    pass_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "name": self.name,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "status": self.status.value,
            "error_summary": self.error_summary.to_dict(),
            "checkpoint": self.checkpoint,
            "stop_requested": self.stop_requested,
            "pass_count": self.pass_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Lease:
    """Exclusive right to run a matching pass on one session."""

    session_id: str
    lease_owner: str
    expires_at: datetime


@dataclass
class PassResult:
    """Outcome of one ``run_matching_pass`` call."""

    session_id: str
    matches_created: int = 0
    unresolved_count: int = 0
    errors: list[PartialFailure] = field(default_factory=list)
    batches_processed: int = 0
    # True when the pass stopped at a batch boundary on request
    stopped: bool = False
    status: SessionStatus = SessionStatus.IN_PROGRESS

    @property
    def completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED


@dataclass(frozen=True)
class Pagination:
    """Page selection for match listings."""

    page: int = 1
    page_size: int = 50
    status: Optional[MatchStatus] = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class SessionPage:
    """A session together with one page of its matches."""

    session: ReconciliationSession
    matches: list[Match]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass
class SessionSummary:
    """Read-time reporting for a session."""

    session: ReconciliationSession
    matches_by_status: dict[str, int]
    matches_by_source: dict[str, int]
    statement_total: int
    ledger_total: int
    unresolved_statement_ids: list[str]
    unresolved_ledger_ids: list[str]
    confidence: float

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved_statement_ids)

    @property
    def match_rate(self) -> float:
        """Percentage of statement transactions holding a live match."""
        if self.statement_total == 0:
            return 0.0
        matched = self.statement_total - len(self.unresolved_statement_ids)
        return (matched / self.statement_total) * 100
