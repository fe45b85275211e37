"""
Rule Store Tests

Tests for:
- Creating rules with validation (empty conditions, unknown operators, bad regex, confidence range)
- Listing per account in priority / insertion order
- Optimistic concurrency on update and delete
"""

import pytest

from ledger_recon.models.rule import RulePatch
from ledger_recon.rules.store import RuleStore
from ledger_recon.utils.exceptions import ConflictError, NotFoundError, ValidationError

DATE_RULE = {
    "name": "Same week",
    "conditions": [{"field": "date", "operator": "within_days", "value": 7}],
}


@pytest.fixture
def store(db):
    return RuleStore(db)


class TestCreateRule:
    """Rule creation and validation."""

    def test_create_assigns_version_and_position(self, store):
        """Test that new rules start at version 1 with increasing positions."""
        first = store.create_rule("ACC-1", DATE_RULE)
        second = store.create_rule("ACC-1", DATE_RULE)
        other = store.create_rule("ACC-2", DATE_RULE)

        assert first.version == 1
        assert (first.position, second.position) == (0, 1)
        assert other.position == 0
        assert store.get_rule(first.id).name == "Same week"

    @pytest.mark.parametrize(
        "payload",
        [
            {"conditions": []},
            {"conditions": [{"field": "amount", "operator": "between", "value": 1}]},
            {"conditions": [{"field": "memo", "operator": "contains", "value": "x"}]},
            {"conditions": [{"field": "description", "operator": "matches", "value": "("}]},
            {"conditions": [{"field": "date", "operator": "within_days", "value": -1}]},
            {"conditions": [{"field": "amount", "operator": "tolerance"}]},
            {
                "conditions": [{"field": "amount", "operator": "exact"}],
                "actions": {"confidence_override": 1.5},
            },
        ],
    )
    def test_invalid_rules_rejected(self, store, payload):
        """Test that malformed rules raise ValidationError and are not stored."""
        with pytest.raises(ValidationError):
            store.create_rule("ACC-1", payload)
        assert store.list_rules("ACC-1") == []

    def test_account_required(self, store):
        """Test that a rule needs an account."""
        with pytest.raises(ValidationError):
            store.create_rule("", DATE_RULE)

    def test_unknown_rule(self, store):
        """Test that loading an unknown rule raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.get_rule("missing")


class TestListRules:
    """Per-account listing."""

    def test_sorted_by_priority_then_position(self, store):
        """Test evaluation order with duplicate priorities."""
        a = store.create_rule("ACC-1", {**DATE_RULE, "name": "a", "priority": 20})
        b = store.create_rule("ACC-1", {**DATE_RULE, "name": "b", "priority": 10})
        c = store.create_rule("ACC-1", {**DATE_RULE, "name": "c", "priority": 20})

        assert [r.id for r in store.list_rules("ACC-1")] == [b.id, a.id, c.id]

    def test_enabled_only(self, store):
        """Test that disabled rules can be filtered out."""
        store.create_rule("ACC-1", {**DATE_RULE, "enabled": False})
        enabled = store.create_rule("ACC-1", DATE_RULE)

        assert [r.id for r in store.list_rules("ACC-1", enabled_only=True)] == [enabled.id]
        assert len(store.list_rules("ACC-1")) == 2


class TestOptimisticConcurrency:
    """Version-guarded updates and deletes."""

    def test_update_increments_version(self, store):
        """Test that a patch with the current version applies and bumps the version."""
        rule = store.create_rule("ACC-1", DATE_RULE)
        updated = store.update_rule(rule.id, RulePatch(version=1, priority=5, name="Renamed"))

        assert updated.version == 2
        assert updated.priority == 5
        assert updated.name == "Renamed"
        assert updated.conditions == rule.conditions

    def test_stale_version_conflicts(self, store):
        """Test that a second writer with the old version gets ConflictError."""
        rule = store.create_rule("ACC-1", DATE_RULE)
        store.update_rule(rule.id, {"version": 1, "priority": 5})

        with pytest.raises(ConflictError):
            store.update_rule(rule.id, {"version": 1, "priority": 7})
        assert store.get_rule(rule.id).priority == 5

    def test_invalid_patch_rejected(self, store):
        """Test that patched conditions are validated."""
        rule = store.create_rule("ACC-1", DATE_RULE)
        with pytest.raises(ValidationError):
            store.update_rule(rule.id, {"version": 1, "conditions": []})
        assert store.get_rule(rule.id).version == 1

    def test_update_unknown_rule(self, store):
        """Test that updating a missing rule raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.update_rule("missing", {"version": 1, "priority": 1})

    def test_delete_guarded_by_version(self, store):
        """Test that delete needs the current version."""
        rule = store.create_rule("ACC-1", DATE_RULE)
        with pytest.raises(ConflictError):
            store.delete_rule(rule.id, version=2)

        store.delete_rule(rule.id, version=1)
        with pytest.raises(NotFoundError):
            store.get_rule(rule.id)
