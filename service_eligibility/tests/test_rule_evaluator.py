"""
Unit tests for the Eligibility rule evaluator and dependency gate.
"""

import pytest
from unittest.mock import MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_eligibility.app.rules.comparator import MISSING
from service_eligibility.app.rules.evaluator import (
    DependencyGate, RuleEvaluator, resolve_field, DEPENDENCY_NOT_MET
)
from service_eligibility.app.rules.models import Condition, Operator, Rule
from shared.errors import ConfigurationError


class TestResolveField:
    """Test cases for dot-path field resolution."""

    @pytest.fixture
    def subject(self):
        """Create nested subject."""
        return {
            "income": 5000,
            "applicant": {"age": 30, "address": {"country": "US"}},
            "accounts": [{"balance": 100}, {"balance": 250}],
            "flat.key": "literal",
            "nothing": None,
        }

    def test_top_level_field(self, subject):
        """Top-level keys resolve directly."""
        assert resolve_field(subject, "income") == 5000

    def test_nested_mapping(self, subject):
        """Dots walk nested mappings."""
        assert resolve_field(subject, "applicant.address.country") == "US"

    def test_list_index(self, subject):
        """Integer segments index into lists."""
        assert resolve_field(subject, "accounts.1.balance") == 250
        assert resolve_field(subject, "accounts.5.balance") is MISSING
        assert resolve_field(subject, "accounts.first") is MISSING

    def test_literal_dotted_key_wins(self, subject):
        """A key containing dots is matched before traversal."""
        assert resolve_field(subject, "flat.key") == "literal"

    def test_missing_and_null_are_distinct(self, subject):
        """Present null values are not MISSING."""
        assert resolve_field(subject, "nothing") is None
        assert resolve_field(subject, "applicant.email") is MISSING
        assert resolve_field(subject, "income.amount") is MISSING
        assert resolve_field(subject, "") is MISSING


class TestDependencyGate:
    """Test cases for DependencyGate."""

    @pytest.fixture
    def gate(self):
        """Create DependencyGate instance."""
        return DependencyGate()

    def test_all_conditions_must_hold(self, gate):
        """Dependencies use AND semantics."""
        rule = Rule(
            rule_id="r1",
            field="income",
            operator=Operator.GTE,
            expected=3000,
            dependencies=[
                Condition("employed", Operator.EQ, True),
                Condition("age", Operator.GTE, 18),
            ]
        )

        assert gate.satisfied(rule, {"employed": True, "age": 20}) is True
        assert gate.satisfied(rule, {"employed": True, "age": 17}) is False
        assert gate.satisfied(rule, {"age": 20}) is False

    def test_no_dependencies(self, gate):
        """A rule without dependencies always applies."""
        assert gate.satisfied(Rule("r1", "x", Operator.EXISTS), {}) is True

    def test_unknown_operator_raises(self, gate):
        """A dependency with an unknown operator is a configuration error."""
        rule = Rule("r1", "x", Operator.EQ, 1, dependencies=[Condition("y", "around", 1)])

        with pytest.raises(ConfigurationError):
            gate.satisfied(rule, {"x": 1, "y": 1})


class TestRuleEvaluator:
    """Test cases for RuleEvaluator."""

    @pytest.fixture
    def evaluator(self):
        """Create RuleEvaluator instance."""
        return RuleEvaluator()

    @pytest.fixture
    def income_rule(self):
        """Create sample weighted rule."""
        return Rule(rule_id="income", field="income", operator=Operator.GTE, expected=3000, weight=40)

    def test_passing_rule(self, evaluator, income_rule):
        """A passing rule contributes its weight."""
        result = evaluator.evaluate(income_rule, {"income": 5000})

        assert result.passed is True
        assert result.skipped is False
        assert result.actual == 5000
        assert result.score_contribution == 40
        assert result.weight == 40
        assert result.operator == ">="

    def test_failing_rule(self, evaluator, income_rule):
        """A failing rule contributes nothing."""
        result = evaluator.evaluate(income_rule, {"income": 2000})

        assert result.passed is False
        assert result.score_contribution == 0
        assert result.error is None

    def test_missing_field_reports_null_actual(self, evaluator, income_rule):
        """Absent fields are reported as null and fail."""
        result = evaluator.evaluate(income_rule, {})

        assert result.passed is False
        assert result.actual is None

    def test_unknown_operator_fails_closed(self, evaluator):
        """Unknown operators produce a failed result with a diagnostic."""
        rule = Rule(rule_id="r1", field="x", operator="approximately", expected=1)

        result = evaluator.evaluate(rule, {"x": 1})

        assert result.passed is False
        assert result.operator == "approximately"
        assert "Unknown operator" in result.error

    def test_negative_weight_fails_closed(self, evaluator):
        """Negative weights are configuration errors."""
        rule = Rule(rule_id="r1", field="x", operator=Operator.EQ, expected=1, weight=-5)

        result = evaluator.evaluate(rule, {"x": 1})

        assert result.passed is False
        assert result.weight == 0
        assert result.error is not None

    def test_check_skips_when_dependency_fails(self, evaluator):
        """Unmet dependencies skip the rule instead of failing it."""
        rule = Rule(
            rule_id="bonus",
            field="bonus",
            operator=Operator.GT,
            expected=0,
            weight=10,
            dependencies=[Condition("employed", Operator.EQ, True)]
        )

        result = evaluator.check(rule, {"employed": False, "bonus": 100})

        assert result.skipped is True
        assert result.passed is False
        assert result.score_contribution == 0
        assert result.reason == DEPENDENCY_NOT_MET

    def test_check_does_not_call_comparator_for_skipped_rule(self):
        """The rule itself is not evaluated when its gate fails."""
        evaluator = RuleEvaluator()
        evaluator.evaluate = MagicMock()
        rule = Rule("r1", "x", Operator.EQ, 1, dependencies=[Condition("flag", Operator.EXISTS)])

        evaluator.check(rule, {"x": 1})

        evaluator.evaluate.assert_not_called()

    def test_evaluate_does_not_mutate_inputs(self, evaluator, income_rule):
        """Rules and subjects are left untouched."""
        subject = {"income": 5000, "nested": {"a": 1}}
        snapshot = {"income": 5000, "nested": {"a": 1}}

        evaluator.evaluate(income_rule, subject)

        assert subject == snapshot
        assert income_rule.expected == 3000
