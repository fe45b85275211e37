"""Bank statement to ledger reconciliation."""

__version__ = "0.1.0"
