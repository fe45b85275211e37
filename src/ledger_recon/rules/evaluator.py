"""
Deterministic rule evaluation.

Each condition kind maps to a plain function in ``CONDITION_HANDLERS``;
there is no dynamic code generation. Evaluation is pure: no storage
access, no mutation of rules or transactions.
"""

from decimal import Decimal
from typing import Callable, Iterable, Optional
import re

from ..config import RuleSettings
from ..models.rule import ConditionKind, MatchRule, RuleCondition
from ..models.transaction import LedgerTransaction, StatementTransaction
from ..utils.exceptions import ValidationError

ConditionHandler = Callable[
    [RuleCondition, LedgerTransaction, StatementTransaction, RuleSettings], bool
]


def _amount_exact(
    condition: RuleCondition,
    ledger_txn: LedgerTransaction,
    statement_txn: StatementTransaction,
    settings: RuleSettings,
) -> bool:
    tolerance = (
        Decimal(str(condition.value))
        if condition.value is not None
        else settings.amount_exact_tolerance
    )
    return abs(statement_txn.amount - ledger_txn.amount) <= tolerance


def _amount_tolerance(
    condition: RuleCondition,
    ledger_txn: LedgerTransaction,
    statement_txn: StatementTransaction,
    settings: RuleSettings,
) -> bool:
    limit = Decimal(str(condition.value))
    if condition.mode == "pct":
        limit = abs(statement_txn.amount) * limit / Decimal(100)
    return abs(statement_txn.amount - ledger_txn.amount) <= limit


def _date_within_days(
    condition: RuleCondition,
    ledger_txn: LedgerTransaction,
    statement_txn: StatementTransaction,
    settings: RuleSettings,
) -> bool:
    return abs((statement_txn.date - ledger_txn.date).days) <= int(condition.value)


def _description_contains(
    condition: RuleCondition,
    ledger_txn: LedgerTransaction,
    statement_txn: StatementTransaction,
    settings: RuleSettings,
) -> bool:
    needle = str(condition.value)
    haystacks = (statement_txn.description or "", ledger_txn.description or "")
    if condition.case_insensitive:
        needle = needle.casefold()
        return any(needle in h.casefold() for h in haystacks)
    return any(needle in h for h in haystacks)


def _description_matches(
    condition: RuleCondition,
    ledger_txn: LedgerTransaction,
    statement_txn: StatementTransaction,
    settings: RuleSettings,
) -> bool:
    pattern = str(condition.value)
    return bool(
        re.search(pattern, statement_txn.description or "")
        or re.search(pattern, ledger_txn.description or "")
    )


CONDITION_HANDLERS: dict[ConditionKind, ConditionHandler] = {
    ConditionKind.AMOUNT_EXACT: _amount_exact,
    ConditionKind.AMOUNT_TOLERANCE: _amount_tolerance,
    ConditionKind.DATE_WITHIN_DAYS: _date_within_days,
    ConditionKind.DESCRIPTION_CONTAINS: _description_contains,
    ConditionKind.DESCRIPTION_MATCHES: _description_matches,
}


def order_rules(rules: Iterable[MatchRule]) -> list[MatchRule]:
    """Enabled rules in evaluation order: priority, then insertion order."""
    return sorted((r for r in rules if r.enabled), key=lambda r: r.sort_key)


class RuleEvaluator:
    """Evaluates rule conditions against a ledger/statement pair."""

    def __init__(self, settings: Optional[RuleSettings] = None):
        """
        Initialize the evaluator.

        Args:
            settings: Defaults for conditions that omit their own parameters
        """
        self.settings = settings or RuleSettings()

    def evaluate(
        self,
        rule: MatchRule,
        ledger_txn: LedgerTransaction,
        statement_txn: StatementTransaction,
    ) -> bool:
        """
        Check whether every condition of a rule holds for the pair.

        Raises:
            ValidationError: If a condition references an unsupported kind
        """
        for condition in rule.conditions:
            handler = CONDITION_HANDLERS.get(condition.kind)
            if handler is None:
                raise ValidationError(
                    f"Rule {rule.id}: no handler for condition {condition.kind.value}"
                )
            if not handler(condition, ledger_txn, statement_txn, self.settings):
                return False
        return True

    def first_match(
        self,
        ordered_rules: list[MatchRule],
        ledger_txn: LedgerTransaction,
        statement_txn: StatementTransaction,
    ) -> Optional[MatchRule]:
        """
        Return the first rule that holds for the pair.

        ``ordered_rules`` must already be filtered and sorted by
        ``order_rules``; later rules are never evaluated once one holds.
        """
        for rule in ordered_rules:
            if self.evaluate(rule, ledger_txn, statement_txn):
                return rule
        return None
