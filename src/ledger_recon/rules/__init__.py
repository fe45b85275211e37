"""Rule evaluation and storage."""

from .evaluator import CONDITION_HANDLERS, RuleEvaluator, order_rules
from .store import RuleStore

__all__ = ["CONDITION_HANDLERS", "RuleEvaluator", "order_rules", "RuleStore"]
