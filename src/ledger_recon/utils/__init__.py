"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    ConflictError,
    InternalError,
    ConfigurationError,
    SourceError,
    ReportGenerationError,
    BatchTimeoutError,
)
from .logging_config import setup_logging
from .retry import RetryPolicy, retry_call

__all__ = [
    "ReconciliationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InternalError",
    "ConfigurationError",
    "SourceError",
    "ReportGenerationError",
    "BatchTimeoutError",
    "setup_logging",
    "RetryPolicy",
    "retry_call",
]
