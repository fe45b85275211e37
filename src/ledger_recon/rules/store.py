"""
Rule store: CRUD for matching rules, scoped per account.

Writes use optimistic concurrency. Every rule carries a ``version``
which a patch must echo back; the UPDATE only applies when the stored
version still matches.
"""

from datetime import datetime
from typing import Any, Callable, Optional
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select, update

from ..models.rule import MatchRule, RuleInput, RulePatch
from ..storage.database import Database, RuleRow, as_utc, generate_uuid, utc_now
from ..utils.exceptions import ConflictError, NotFoundError, ValidationError
from ..utils.retry import RetryPolicy, retry_call

logger = logging.getLogger(__name__)


def _rule_from_row(row: RuleRow) -> MatchRule:
    return MatchRule(
        id=row.id,
        account_id=row.account_id,
        name=row.name or "",
        description=row.description or "",
        priority=row.priority,
        conditions=row.conditions,
        actions=row.actions,
        enabled=bool(row.enabled),
        version=row.version,
        position=row.position,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _parse(model: type, payload: Any):
    """Build a pydantic model, translating its errors to ours."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e}") from e


class RuleStore:
    """Persistence and validation for ``MatchRule`` definitions."""

    def __init__(
        self,
        db: Database,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize the store.

        Args:
            db: Database handle
            retry_policy: Retry policy for transient storage errors
            clock: Source of the current UTC time
            sleep: Sleep used between retries
        """
        self.db = db
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock
        self._sleep = sleep

    def _retry(self, fn, description: str):
        return retry_call(fn, self.retry_policy, description=description, sleep=self._sleep)

    def list_rules(self, account_id: str, enabled_only: bool = False) -> list[MatchRule]:
        """Rules for an account in evaluation order (priority, then insertion)."""

        def _list() -> list[MatchRule]:
            query = select(RuleRow).where(RuleRow.account_id == account_id)
            if enabled_only:
                query = query.where(RuleRow.enabled.is_(True))
            with self.db.session() as db:
                rows = (
                    db.execute(query.order_by(RuleRow.priority, RuleRow.position))
                    .scalars()
                    .all()
                )
                return [_rule_from_row(r) for r in rows]

        return self._retry(_list, "list rules")

    def get_rule(self, rule_id: str) -> MatchRule:
        def _get() -> MatchRule:
            with self.db.session() as db:
                row = db.get(RuleRow, rule_id)
                if row is None:
                    raise NotFoundError(f"Rule {rule_id} not found")
                return _rule_from_row(row)

        return self._retry(_get, "load rule")

    def create_rule(self, account_id: str, rule_input: Any) -> MatchRule:
        """
        Validate and store a new rule.

        Args:
            account_id: Account the rule applies to
            rule_input: ``RuleInput`` or an equivalent mapping

        Raises:
            ValidationError: Empty conditions, unknown field/operator, bad values
        """
        if not account_id:
            raise ValidationError("account_id is required")
        data: RuleInput = _parse(RuleInput, rule_input)
        now = self.clock()

        def _create() -> MatchRule:
            with self.db.session() as db:
                next_position = (
                    db.execute(
                        select(func.coalesce(func.max(RuleRow.position), -1) + 1).where(
                            RuleRow.account_id == account_id
                        )
                    ).scalar_one()
                )
                row = RuleRow(
                    id=generate_uuid(),
                    account_id=account_id,
                    name=data.name,
                    description=data.description,
                    priority=data.priority,
                    position=next_position,
                    conditions=[c.model_dump(mode="json") for c in data.conditions],
                    actions=data.actions.model_dump(mode="json"),
                    enabled=data.enabled,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                db.add(row)
                db.flush()
                return _rule_from_row(row)

        rule = self._retry(_create, "create rule")
        logger.info(f"Created rule {rule.id} ({rule.name or 'unnamed'}) for account {account_id}")
        return rule

    def update_rule(self, rule_id: str, patch: Any) -> MatchRule:
        """
        Apply a partial update guarded by the rule's version.

        Raises:
            NotFoundError: Unknown rule
            ValidationError: Patch does not validate, or the patched rule is invalid
            ConflictError: ``patch.version`` is stale
        """
        data: RulePatch = _parse(RulePatch, patch)
        now = self.clock()

        def _update() -> MatchRule:
            with self.db.session() as db:
                row = db.get(RuleRow, rule_id)
                if row is None:
                    raise NotFoundError(f"Rule {rule_id} not found")

                changes: dict[str, Any] = {}
                for name in ("name", "description", "priority", "enabled"):
                    value = getattr(data, name)
                    if value is not None:
                        changes[name] = value
                if data.conditions is not None:
                    changes["conditions"] = [c.model_dump(mode="json") for c in data.conditions]
                if data.actions is not None:
                    changes["actions"] = data.actions.model_dump(mode="json")

                # Validate the rule as it would look after the patch
                merged = _rule_from_row(row).model_dump()
                merged.update(changes)
                _parse(MatchRule, merged)

                result = db.execute(
                    update(RuleRow)
                    .where(RuleRow.id == rule_id, RuleRow.version == data.version)
                    .values(version=RuleRow.version + 1, updated_at=now, **changes)
                )
                if result.rowcount == 0:
                    raise ConflictError(
                        f"Rule {rule_id} was modified concurrently "
                        f"(expected version {data.version}, found {row.version})"
                    )
                db.refresh(row)
                return _rule_from_row(row)

        rule = self._retry(_update, "update rule")
        logger.info(f"Updated rule {rule_id} to version {rule.version}")
        return rule

    def delete_rule(self, rule_id: str, version: int) -> None:
        """
        Delete a rule, guarded by its version.

        Existing matches keep their provenance (the rule id) for audit.
        """

        def _delete() -> None:
            with self.db.session() as db:
                row = db.get(RuleRow, rule_id)
                if row is None:
                    raise NotFoundError(f"Rule {rule_id} not found")
                result = db.execute(
                    delete(RuleRow).where(RuleRow.id == rule_id, RuleRow.version == version)
                )
                if result.rowcount == 0:
                    raise ConflictError(
                        f"Rule {rule_id} was modified concurrently "
                        f"(expected version {version}, found {row.version})"
                    )

        self._retry(_delete, "delete rule")
        logger.info(f"Deleted rule {rule_id}")
