"""
Matching rule definitions.

A rule is an ordered list of conditions (implicitly AND-ed) plus the
actions to take when all of them hold. Each condition resolves to one
``ConditionKind`` from its field/operator pair; the evaluator dispatches
on that kind through a static table.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal, Optional
import re

from pydantic import BaseModel, Field, model_validator


class ConditionKind(Enum):
    """Supported condition variants."""

    AMOUNT_EXACT = "amount.exact"
    AMOUNT_TOLERANCE = "amount.tolerance"
    DATE_WITHIN_DAYS = "date.within_days"
    DESCRIPTION_CONTAINS = "description.contains"
    DESCRIPTION_MATCHES = "description.matches"


CONDITION_KINDS: dict[tuple[str, str], ConditionKind] = {
    ("amount", "exact"): ConditionKind.AMOUNT_EXACT,
    ("amount", "tolerance"): ConditionKind.AMOUNT_TOLERANCE,
    ("date", "within_days"): ConditionKind.DATE_WITHIN_DAYS,
    ("description", "contains"): ConditionKind.DESCRIPTION_CONTAINS,
    ("description", "matches"): ConditionKind.DESCRIPTION_MATCHES,
}


def _non_negative_decimal(value: Any, label: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"{label} must be a number, got {value!r}") from e
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"{label} must be a non-negative number, got {value!r}")
    return amount


class RuleCondition(BaseModel):
    """A single ``{field, operator, value}`` condition."""

    field: str
    operator: str
    value: Optional[Any] = None
    # amount.tolerance only: percentage of the statement amount or absolute
    mode: Literal["pct", "abs"] = "abs"
    # description.contains only
    case_insensitive: bool = True

    @model_validator(mode="after")
    def _validate_kind(self) -> "RuleCondition":
        kind = CONDITION_KINDS.get((self.field, self.operator))
        if kind is None:
            raise ValueError(f"Unknown condition '{self.field}.{self.operator}'")

        if kind is ConditionKind.AMOUNT_EXACT:
            if self.value is not None:
                _non_negative_decimal(self.value, "amount.exact tolerance")
        elif kind is ConditionKind.AMOUNT_TOLERANCE:
            if self.value is None:
                raise ValueError("amount.tolerance requires a value")
            _non_negative_decimal(self.value, "amount.tolerance value")
        elif kind is ConditionKind.DATE_WITHIN_DAYS:
            if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value < 0:
                raise ValueError(f"date.within_days requires a non-negative integer, got {self.value!r}")
        elif kind is ConditionKind.DESCRIPTION_CONTAINS:
            if not isinstance(self.value, str) or not self.value:
                raise ValueError("description.contains requires a non-empty string")
        elif kind is ConditionKind.DESCRIPTION_MATCHES:
            if not isinstance(self.value, str) or not self.value:
                raise ValueError("description.matches requires a pattern")
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"Invalid pattern {self.value!r}: {e}") from e
        return self

    @property
    def kind(self) -> ConditionKind:
        return CONDITION_KINDS[(self.field, self.operator)]


class RuleActions(BaseModel):
    """What happens to a pair when every condition holds."""

    auto_match: bool = False
    confidence_override: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def confidence(self) -> float:
        return 1.0 if self.confidence_override is None else self.confidence_override


class RuleInput(BaseModel):
    """Payload for creating a rule."""

    name: str = ""
    description: str = ""
    priority: int = 100
    conditions: list[RuleCondition] = Field(min_length=1)
    actions: RuleActions = Field(default_factory=RuleActions)
    enabled: bool = True


class RulePatch(BaseModel):
    """
    Partial update for a rule.

    ``version`` must equal the stored version; it is the optimistic
    concurrency token.
    """

    version: int
    name: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[int] = None
    conditions: Optional[list[RuleCondition]] = Field(default=None, min_length=1)
    actions: Optional[RuleActions] = None
    enabled: Optional[bool] = None


class MatchRule(BaseModel):
    """A stored rule scoped to one account."""

    id: str
    account_id: str
    name: str = ""
    description: str = ""
    priority: int = 100
    conditions: list[RuleCondition] = Field(min_length=1)
    actions: RuleActions = Field(default_factory=RuleActions)
    enabled: bool = True
    version: int = 1
    # Stable insertion order, breaks ties between equal priorities
    position: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority, self.position)
