"""Matching engine, fuzzy scorer and aggregator."""

from .aggregator import AggregationResult, MatchAggregator
from .deadline import Deadline, NoDeadline
from .engine import BatchOutcome, MatchingEngine
from .fuzzy import FuzzyMatcher, LedgerIndex, jaccard, tokenize

__all__ = [
    "AggregationResult",
    "MatchAggregator",
    "Deadline",
    "NoDeadline",
    "BatchOutcome",
    "MatchingEngine",
    "FuzzyMatcher",
    "LedgerIndex",
    "jaccard",
    "tokenize",
]
