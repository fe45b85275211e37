"""
Database models and connection handling.

Tables:
- sessions: reconciliation sessions and their pass checkpoints
- rules: matching rules, versioned for optimistic concurrency
- matches: persisted matches with provenance
- leases: one row per session currently running a matching pass
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
import logging
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import StorageConfig

logger = logging.getLogger(__name__)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to datetimes read back from backends that drop the zone."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class SessionRow(Base):
    """Reconciliation session."""

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, index=True)

    # {"count": int, "samples": [{"kind", "batch", "message"}]}
    error_summary = Column(JSON, nullable=False, default=dict)

    # Resumable pass state
    checkpoint = Column(Integer, nullable=False, default=0)
    stop_requested = Column(Boolean, nullable=False, default=False)
    pass_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class RuleRow(Base):
    """Matching rule scoped to an account."""

    __tablename__ = "rules"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    priority = Column(Integer, nullable=False, default=100)
    position = Column(Integer, nullable=False, default=0)
    conditions = Column(JSON, nullable=False)
    actions = Column(JSON, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (Index("ix_rules_account_order", "account_id", "priority", "position"),)


class MatchRow(Base):
    """Persisted match between a ledger and a statement transaction."""

    __tablename__ = "matches"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    ledger_txn_id = Column(String(128), nullable=False)
    statement_txn_id = Column(String(128), nullable=False)
    confidence = Column(Float, nullable=False)
    status = Column(String(20), nullable=False)

    # MatchSource = Rule(rule_id) | Fuzzy(score)
    source_kind = Column(String(10), nullable=False)
    source_rule_id = Column(String(36), nullable=True)
    source_score = Column(Float, nullable=True)

    reason = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(128), nullable=True)

    __table_args__ = (
        Index("ix_matches_session_status", "session_id", "status"),
        Index("ix_matches_session_ledger", "session_id", "ledger_txn_id"),
        Index("ix_matches_session_statement", "session_id", "statement_txn_id"),
    )


class LeaseRow(Base):
    """Session-level lease held by the worker running a matching pass."""

    __tablename__ = "leases"

    session_id = Column(String(36), ForeignKey("sessions.id"), primary_key=True)
    lease_owner = Column(String(128), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class Database:
    """Engine and session factory for the reconciliation tables."""

    def __init__(self, database_url: str, echo: bool = False):
        """
        Create the engine.

        Args:
            database_url: SQLAlchemy URL
            echo: Log emitted SQL
        """
        kwargs: dict = {}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise each checkout sees an empty database
                kwargs["poolclass"] = StaticPool

        self.database_url = database_url
        self.engine = create_engine(database_url, echo=echo, **kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_config(cls, config: StorageConfig) -> "Database":
        return cls(config.database_url, echo=config.echo)

    def create_all(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(self.engine)
        logger.info(f"Database schema ready: {self.engine.url.render_as_string(hide_password=True)}")

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Unit of work: commit on success, roll back on any error."""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
