"""Custom exceptions for the reconciliation engine."""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ValidationError(ReconciliationError):
    """Malformed input: rule conditions, session period, field references."""

    pass


class NotFoundError(ReconciliationError):
    """Unknown session, rule or match id."""

    pass


class ConflictError(ReconciliationError):
    """Lease already held, stale rule version or illegal state transition."""

    pass


class InternalError(ReconciliationError):
    """Storage failure that survived the retry policy."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class SourceError(ReconciliationError):
    """Error reading canonical ledger or statement records."""

    pass


class ReportGenerationError(ReconciliationError):
    """Error generating Excel report."""

    pass


class BatchTimeoutError(ReconciliationError):
    """A batch exceeded its time limit; recorded as a partial failure."""

    pass
