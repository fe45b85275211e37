"""Persistence for sessions, rules, matches and leases."""

from .database import Base, Database, utc_now
from .repositories import LeaseRepository, MatchRepository, SessionRepository

__all__ = [
    "Base",
    "Database",
    "utc_now",
    "LeaseRepository",
    "MatchRepository",
    "SessionRepository",
]
