"""
Repositories for sessions, matches and leases.

Every public method is one unit of work wrapped in the retry policy, so
transient storage errors are retried and surface as ``InternalError``
once the policy is exhausted. Domain errors are raised inside the unit
of work and are never retried.
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, TypeVar
import logging

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from ..models.match import (
    CLAIMING_STATUSES,
    CandidatePair,
    Match,
    MatchStatus,
    source_from_columns,
    source_to_columns,
)
from ..models.session import (
    ErrorSummary,
    Lease,
    Pagination,
    ReconciliationSession,
    SessionStatus,
)
from ..utils.exceptions import ConflictError, NotFoundError
from ..utils.retry import RetryPolicy, retry_call
from .database import (
    Database,
    LeaseRow,
    MatchRow,
    SessionRow,
    as_utc,
    generate_uuid,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Repository:
    def __init__(
        self,
        db: Database,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.db = db
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def _retry(self, fn: Callable[[], T], description: str) -> T:
        return retry_call(fn, self.retry_policy, description=description, sleep=self._sleep)


def _session_from_row(row: SessionRow) -> ReconciliationSession:
    return ReconciliationSession(
        id=row.id,
        account_id=row.account_id,
        name=row.name or "",
        period_start=row.period_start,
        period_end=row.period_end,
        status=SessionStatus(row.status),
        error_summary=ErrorSummary.from_dict(row.error_summary),
        checkpoint=row.checkpoint or 0,
        stop_requested=bool(row.stop_requested),
        pass_count=row.pass_count or 0,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _match_from_row(row: MatchRow) -> Match:
    return Match(
        id=row.id,
        session_id=row.session_id,
        ledger_txn_id=row.ledger_txn_id,
        statement_txn_id=row.statement_txn_id,
        confidence=row.confidence,
        status=MatchStatus(row.status),
        source=source_from_columns(row.source_kind, row.source_rule_id, row.source_score),
        reason=row.reason or "",
        created_at=as_utc(row.created_at),
        resolved_at=as_utc(row.resolved_at),
        resolved_by=row.resolved_by,
    )


class SessionRepository(_Repository):
    """Persistence for reconciliation sessions."""

    def insert(self, session: ReconciliationSession) -> ReconciliationSession:
        def _insert() -> ReconciliationSession:
            with self.db.session() as db:
                db.add(
                    SessionRow(
                        id=session.id,
                        account_id=session.account_id,
                        name=session.name,
                        period_start=session.period_start,
                        period_end=session.period_end,
                        status=session.status.value,
                        error_summary=session.error_summary.to_dict(),
                        checkpoint=session.checkpoint,
                        stop_requested=session.stop_requested,
                        pass_count=session.pass_count,
                        created_at=session.created_at,
                        updated_at=session.updated_at,
                    )
                )
            return session

        return self._retry(_insert, "insert session")

    def get(self, session_id: str) -> ReconciliationSession:
        def _get() -> ReconciliationSession:
            with self.db.session() as db:
                row = db.get(SessionRow, session_id)
                if row is None:
                    raise NotFoundError(f"Session {session_id} not found")
                return _session_from_row(row)

        return self._retry(_get, "load session")

    def transition(
        self,
        session_id: str,
        allowed_from: Iterable[SessionStatus],
        to_status: SessionStatus,
        now: datetime,
        **fields,
    ) -> ReconciliationSession:
        """
        Move a session to ``to_status`` if it is currently in ``allowed_from``.

        The check and the write are one conditional UPDATE, so a concurrent
        cancel cannot be overwritten by a pass finishing.

        Raises:
            NotFoundError: Unknown session
            ConflictError: Session is not in an allowed state
        """
        allowed = [s.value for s in allowed_from]

        def _transition() -> ReconciliationSession:
            with self.db.session() as db:
                result = db.execute(
                    update(SessionRow)
                    .where(SessionRow.id == session_id, SessionRow.status.in_(allowed))
                    .values(status=to_status.value, updated_at=now, **fields)
                )
                row = db.get(SessionRow, session_id)
                if row is None:
                    raise NotFoundError(f"Session {session_id} not found")
                if result.rowcount == 0:
                    raise ConflictError(
                        f"Session {session_id} cannot move from {row.status} to {to_status.value}"
                    )
                db.refresh(row)
                return _session_from_row(row)

        return self._retry(_transition, f"transition session to {to_status.value}")

    def save_progress(
        self,
        session_id: str,
        checkpoint: int,
        error_summary: ErrorSummary,
        now: datetime,
        pass_count: Optional[int] = None,
    ) -> None:
        """Persist the batch checkpoint and accumulated partial failures."""
        values: dict = {
            "checkpoint": checkpoint,
            "error_summary": error_summary.to_dict(),
            "updated_at": now,
        }
        if pass_count is not None:
            values["pass_count"] = pass_count

        def _save() -> None:
            with self.db.session() as db:
                db.execute(update(SessionRow).where(SessionRow.id == session_id).values(**values))

        self._retry(_save, "save session progress")

    def set_stop_requested(self, session_id: str, value: bool, now: datetime) -> None:
        def _set() -> None:
            with self.db.session() as db:
                result = db.execute(
                    update(SessionRow)
                    .where(SessionRow.id == session_id)
                    .values(stop_requested=value, updated_at=now)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Session {session_id} not found")

        self._retry(_set, "set stop flag")


class MatchRepository(_Repository):
    """Persistence for matches."""

    def claimed_ids(self, session_id: str) -> tuple[set[str], set[str]]:
        """Ledger and statement ids held by a suggested or confirmed match."""

        def _claimed() -> tuple[set[str], set[str]]:
            with self.db.session() as db:
                rows = db.execute(
                    select(MatchRow.ledger_txn_id, MatchRow.statement_txn_id).where(
                        MatchRow.session_id == session_id,
                        MatchRow.status.in_([s.value for s in CLAIMING_STATUSES]),
                    )
                ).all()
            return {r[0] for r in rows}, {r[1] for r in rows}

        return self._retry(_claimed, "load claimed ids")

    def rejected_pairs(self, session_id: str) -> set[tuple[str, str]]:
        """``(ledger_id, statement_id)`` pairs a reviewer has rejected."""

        def _rejected() -> set[tuple[str, str]]:
            with self.db.session() as db:
                rows = db.execute(
                    select(MatchRow.ledger_txn_id, MatchRow.statement_txn_id).where(
                        MatchRow.session_id == session_id,
                        MatchRow.status == MatchStatus.REJECTED.value,
                    )
                ).all()
            return {(r[0], r[1]) for r in rows}

        return self._retry(_rejected, "load rejected pairs")

    def add_matches(
        self, session_id: str, candidates: list[CandidatePair], now: datetime
    ) -> list[Match]:
        """
        Insert accepted candidates.

        Sides already held by a suggested or confirmed match are re-read in
        the same unit of work, and candidates touching them are dropped.

        Returns:
            The matches actually created
        """
        if not candidates:
            return []

        def _add() -> list[Match]:
            created: list[Match] = []
            with self.db.session() as db:
                held = db.execute(
                    select(MatchRow.ledger_txn_id, MatchRow.statement_txn_id).where(
                        MatchRow.session_id == session_id,
                        MatchRow.status.in_([s.value for s in CLAIMING_STATUSES]),
                    )
                ).all()
                held_ledger = {r[0] for r in held}
                held_statement = {r[1] for r in held}

                for candidate in candidates:
                    if (
                        candidate.ledger_id in held_ledger
                        or candidate.statement_id in held_statement
                    ):
                        logger.warning(
                            f"Session {session_id}: dropping match "
                            f"{candidate.statement_id} -> {candidate.ledger_id}, "
                            f"a side is already matched"
                        )
                        continue
                    held_ledger.add(candidate.ledger_id)
                    held_statement.add(candidate.statement_id)
                    row = MatchRow(
                        id=generate_uuid(),
                        session_id=session_id,
                        ledger_txn_id=candidate.ledger_id,
                        statement_txn_id=candidate.statement_id,
                        confidence=candidate.confidence,
                        status=candidate.status.value,
                        reason=candidate.reason,
                        created_at=now,
                        **source_to_columns(candidate.source),
                    )
                    db.add(row)
                    created.append(_match_from_row(row))
            return created

        return self._retry(_add, "insert matches")

    def get(self, match_id: str) -> Match:
        def _get() -> Match:
            with self.db.session() as db:
                row = db.get(MatchRow, match_id)
                if row is None:
                    raise NotFoundError(f"Match {match_id} not found")
                return _match_from_row(row)

        return self._retry(_get, "load match")

    def resolve(
        self,
        match_id: str,
        to_status: MatchStatus,
        resolved_by: Optional[str],
        now: datetime,
    ) -> Match:
        """
        Move a suggested match to confirmed or rejected.

        Confirming re-checks, in the same unit of work, that neither side
        already belongs to another confirmed match in the session.

        Raises:
            NotFoundError: Unknown match
            ConflictError: Match is not suggested, or a side is already confirmed
        """

        def _resolve() -> Match:
            with self.db.session() as db:
                row = db.get(MatchRow, match_id)
                if row is None:
                    raise NotFoundError(f"Match {match_id} not found")

                if to_status == MatchStatus.CONFIRMED:
                    clash = db.execute(
                        select(func.count())
                        .select_from(MatchRow)
                        .where(
                            MatchRow.session_id == row.session_id,
                            MatchRow.id != row.id,
                            MatchRow.status == MatchStatus.CONFIRMED.value,
                            or_(
                                MatchRow.ledger_txn_id == row.ledger_txn_id,
                                MatchRow.statement_txn_id == row.statement_txn_id,
                            ),
                        )
                    ).scalar_one()
                    if clash:
                        raise ConflictError(
                            f"Match {match_id}: a side is already in a confirmed match"
                        )

                result = db.execute(
                    update(MatchRow)
                    .where(
                        MatchRow.id == match_id,
                        MatchRow.status == MatchStatus.SUGGESTED.value,
                    )
                    .values(status=to_status.value, resolved_at=now, resolved_by=resolved_by)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise ConflictError(
                        f"Match {match_id} is {row.status}, only suggested matches can be "
                        f"{to_status.value}"
                    )
                db.refresh(row)
                return _match_from_row(row)

        return self._retry(_resolve, f"{to_status.value} match")

    def list_page(self, session_id: str, pagination: Pagination) -> tuple[list[Match], int]:
        """One page of a session's matches, highest confidence first."""

        def _page() -> tuple[list[Match], int]:
            filters = [MatchRow.session_id == session_id]
            if pagination.status is not None:
                filters.append(MatchRow.status == pagination.status.value)
            with self.db.session() as db:
                total = db.execute(
                    select(func.count()).select_from(MatchRow).where(*filters)
                ).scalar_one()
                rows = (
                    db.execute(
                        select(MatchRow)
                        .where(*filters)
                        .order_by(MatchRow.confidence.desc(), MatchRow.created_at, MatchRow.id)
                        .offset(pagination.offset)
                        .limit(pagination.page_size)
                    )
                    .scalars()
                    .all()
                )
                return [_match_from_row(r) for r in rows], total

        return self._retry(_page, "list matches")

    def list_all(
        self, session_id: str, statuses: Optional[Iterable[MatchStatus]] = None
    ) -> list[Match]:
        def _all() -> list[Match]:
            query = select(MatchRow).where(MatchRow.session_id == session_id)
            if statuses is not None:
                query = query.where(MatchRow.status.in_([s.value for s in statuses]))
            with self.db.session() as db:
                rows = (
                    db.execute(query.order_by(MatchRow.confidence.desc(), MatchRow.id))
                    .scalars()
                    .all()
                )
                return [_match_from_row(r) for r in rows]

        return self._retry(_all, "list all matches")

    def count_suggested(self, session_id: str) -> int:
        def _count() -> int:
            with self.db.session() as db:
                return db.execute(
                    select(func.count())
                    .select_from(MatchRow)
                    .where(
                        MatchRow.session_id == session_id,
                        MatchRow.status == MatchStatus.SUGGESTED.value,
                    )
                ).scalar_one()

        return self._retry(_count, "count suggested matches")


class LeaseRepository(_Repository):
    """Session-level leases guarding matching passes."""

    def acquire(self, session_id: str, owner: str, ttl: timedelta, now: datetime) -> Lease:
        """
        Take the lease for a session.

        Succeeds only when no lease exists or the existing one has expired.
        A live lease blocks every caller, its own owner included, so each
        pass must use its own owner token.

        Raises:
            ConflictError: A live lease exists
        """
        expires_at = now + ttl

        def _acquire() -> Lease:
            with self.db.session() as db:
                # Column select, not an ORM load: expiry is only compared in SQL
                row = db.execute(
                    select(LeaseRow.lease_owner, LeaseRow.expires_at).where(
                        LeaseRow.session_id == session_id
                    )
                ).first()
                if row is None:
                    db.add(LeaseRow(session_id=session_id, lease_owner=owner, expires_at=expires_at))
                    try:
                        db.flush()
                    except IntegrityError as e:
                        raise ConflictError(
                            f"Session {session_id} lease was taken concurrently"
                        ) from e
                else:
                    result = db.execute(
                        update(LeaseRow)
                        .where(
                            LeaseRow.session_id == session_id,
                            LeaseRow.expires_at <= now,
                        )
                        .values(lease_owner=owner, expires_at=expires_at)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        raise ConflictError(
                            f"Session {session_id} already has an active matching pass "
                            f"(lease held by {row.lease_owner} until "
                            f"{as_utc(row.expires_at).isoformat()})"
                        )
            return Lease(session_id=session_id, lease_owner=owner, expires_at=expires_at)

        lease = self._retry(_acquire, "acquire lease")
        logger.debug(f"Lease acquired on session {session_id} by {owner}")
        return lease

    def renew(self, lease: Lease, ttl: timedelta, now: datetime) -> Lease:
        """
        Extend a lease we hold.

        Raises:
            ConflictError: The lease expired and was taken by someone else
        """
        expires_at = now + ttl

        def _renew() -> Lease:
            with self.db.session() as db:
                result = db.execute(
                    update(LeaseRow)
                    .where(
                        LeaseRow.session_id == lease.session_id,
                        LeaseRow.lease_owner == lease.lease_owner,
                    )
                    .values(expires_at=expires_at)
                )
                if result.rowcount == 0:
                    raise ConflictError(
                        f"Lease on session {lease.session_id} lost by {lease.lease_owner}"
                    )
            return Lease(
                session_id=lease.session_id, lease_owner=lease.lease_owner, expires_at=expires_at
            )

        return self._retry(_renew, "renew lease")

    def release(self, lease: Lease) -> None:
        def _release() -> None:
            with self.db.session() as db:
                db.execute(
                    delete(LeaseRow).where(
                        LeaseRow.session_id == lease.session_id,
                        LeaseRow.lease_owner == lease.lease_owner,
                    )
                )

        self._retry(_release, "release lease")
        logger.debug(f"Lease released on session {lease.session_id} by {lease.lease_owner}")

    def get(self, session_id: str) -> Optional[Lease]:
        def _get() -> Optional[Lease]:
            with self.db.session() as db:
                row = db.get(LeaseRow, session_id)
                if row is None:
                    return None
                return Lease(
                    session_id=row.session_id,
                    lease_owner=row.lease_owner,
                    expires_at=as_utc(row.expires_at),
                )

        return self._retry(_get, "load lease")

    def is_live(self, session_id: str, now: datetime) -> bool:
        lease = self.get(session_id)
        return lease is not None and lease.expires_at > now
