"""Reconciliation session lifecycle and matching passes."""

from .manager import SessionManager, default_worker_id

__all__ = ["SessionManager", "default_worker_id"]
