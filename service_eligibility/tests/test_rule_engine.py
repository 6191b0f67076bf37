"""
Unit tests for the Eligibility Rule Engine.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_eligibility.app.rules.engine import RuleEngine
from service_eligibility.app.rules.models import (
    Combinator, Condition, Criteria, Operator, Rule, RuleGroup, ScoringMethod, ThresholdTable
)
from shared.config import EligibilityConfig


class TestRuleEngine:
    """Test cases for RuleEngine."""

    @pytest.fixture
    def config(self):
        """Create engine configuration."""
        return EligibilityConfig(pass_threshold=65, scoring_method="weighted", default_decision="Rejected")

    @pytest.fixture
    def rule_engine(self, config):
        """Create RuleEngine instance."""
        return RuleEngine(config)

    @pytest.fixture
    def loan_criteria(self):
        """Weighted criteria with threshold 70."""
        return Criteria(
            criteria_id="loan",
            name="Loan approval",
            rules=[
                Rule(rule_id="income", field="income", operator=Operator.GTE, expected=3000, weight=40),
                Rule(rule_id="credit", field="credit_score", operator=Operator.GTE, expected=650, weight=60),
            ],
            scoring_method=ScoringMethod.WEIGHTED,
            pass_threshold=70
        )

    def test_weighted_scenario_passes(self, rule_engine, loan_criteria):
        """All rules passing scores 100."""
        result = rule_engine.evaluate(loan_criteria, {"income": 5000, "credit_score": 750})

        assert result.passed is True
        assert result.score == 100
        assert result.failed_rules == []
        assert result.decision == "Excellent"

    def test_weighted_scenario_fails(self, rule_engine, loan_criteria):
        """Failing the lighter rule scores the heavier weight."""
        result = rule_engine.evaluate(loan_criteria, {"income": 2000, "credit_score": 750})

        assert result.passed is False
        assert result.score == 60
        assert [r.rule_id for r in result.failed_rules] == ["income"]
        assert result.decision == "Needs Improvement"

    def test_pass_fail_scenario(self, rule_engine):
        """PASS_FAIL reports zero on any failure."""
        criteria = Criteria(
            criteria_id="adult",
            rules=[
                Rule(rule_id="age", field="age", operator=Operator.GTE, expected=18),
                Rule(rule_id="verified", field="verified", operator=Operator.EQ, expected=True),
            ],
            scoring_method=ScoringMethod.PASS_FAIL
        )

        result = rule_engine.evaluate(criteria, {"age": 17, "verified": True})

        assert result.score == 0
        assert result.passed is False
        assert [r.rule_id for r in result.failed_rules] == ["age"]

    def test_defaults_come_from_config(self, rule_engine):
        """Unset scoring method and threshold use the configuration."""
        criteria = Criteria(criteria_id="c1", rules=[Rule("r1", "x", Operator.EQ, 1)])

        result = rule_engine.evaluate(criteria, {"x": 1})

        assert result.scoring_method == "weighted"
        assert result.threshold == 65

    def test_unknown_scoring_method_falls_back_to_weighted(self, rule_engine):
        """Unknown methods are treated as weighted."""
        criteria = Criteria(criteria_id="c1", rules=[Rule("r1", "x", Operator.EQ, 1)], scoring_method="median")

        assert rule_engine.evaluate(criteria, {"x": 1}).scoring_method == "weighted"

    def test_invalid_threshold_falls_back_to_config(self, rule_engine):
        """A non-numeric threshold uses the configured default."""
        criteria = Criteria(criteria_id="c1", rules=[Rule("r1", "x", Operator.EQ, 1)], pass_threshold="high")

        result = rule_engine.evaluate(criteria, {"x": 1})

        assert result.threshold == 65
        assert result.passed is True

    def test_empty_criteria(self, rule_engine):
        """No rules and no groups is valid input."""
        result = rule_engine.evaluate(Criteria(criteria_id="empty"), {"x": 1})

        assert result.passed is False
        assert result.score == 0
        assert result.decision == "Rejected"
        assert result.group_results == []

    def test_explicit_groups_in_order(self, rule_engine):
        """Explicit groups are evaluated in declared order."""
        criteria = Criteria(
            criteria_id="c1",
            groups=[
                RuleGroup(group_id="identity", rules=[Rule("age", "age", Operator.GTE, 18)]),
                RuleGroup(
                    group_id="finance",
                    combination=Combinator.ANY,
                    rules=[
                        Rule("income", "income", Operator.GTE, 3000),
                        Rule("assets", "assets", Operator.GTE, 10000),
                    ]
                ),
            ],
            scoring_method=ScoringMethod.AVERAGE,
            pass_threshold=50
        )

        result = rule_engine.evaluate(criteria, {"age": 30, "income": 1000, "assets": 50000})

        assert [g.group_id for g in result.group_results] == ["identity", "finance"]
        assert all(g.passed for g in result.group_results)
        assert result.group_combination_passed is True
        assert result.score == 66.67
        assert result.passed is True

    def test_score_and_group_combination_are_reported_independently(self, rule_engine):
        """Groups can be satisfied while the score misses the threshold."""
        criteria = Criteria(
            criteria_id="c1",
            groups=[
                RuleGroup(
                    group_id="g1",
                    combination=Combinator.ANY,
                    rules=[
                        Rule("r1", "a", Operator.EQ, 1, weight=10),
                        Rule("r2", "b", Operator.EQ, 1, weight=90),
                    ]
                ),
            ],
            pass_threshold=50
        )

        result = rule_engine.evaluate(criteria, {"a": 1, "b": 0})

        assert result.group_combination_passed is True
        assert result.passed is False
        assert result.score == 10

    def test_top_level_boolean_combination(self, rule_engine):
        """Groups map to letters for criteria-level expressions."""
        criteria = Criteria(
            criteria_id="c1",
            groups=[
                RuleGroup(group_id="g1", rules=[Rule("r1", "a", Operator.EQ, 1)]),
                RuleGroup(group_id="g2", rules=[Rule("r2", "b", Operator.EQ, 1)]),
            ],
            combination=Combinator.BOOLEAN,
            boolean_expression="a AND NOT b"
        )

        result = rule_engine.evaluate(criteria, {"a": 1, "b": 0})

        assert result.group_combination_passed is True
        assert result.combination_error is None

    def test_top_level_min_without_min_required(self, rule_engine):
        """Criteria-level configuration errors are reported, not raised."""
        criteria = Criteria(
            criteria_id="c1",
            rules=[Rule("r1", "a", Operator.EQ, 1)],
            combination=Combinator.MIN
        )

        result = rule_engine.evaluate(criteria, {"a": 1})

        assert result.group_combination_passed is False
        assert result.combination_error
        assert result.score == 100

    def test_skipped_rules_do_not_affect_score(self, rule_engine):
        """Skipped rules are not failed rules and do not change the score."""
        criteria = Criteria(
            criteria_id="c1",
            rules=[
                Rule("r1", "income", Operator.GTE, 3000, weight=50),
                Rule(
                    "r2", "spouse_income", Operator.GTE, 1000, weight=50,
                    dependencies=[Condition("married", Operator.EQ, True)]
                ),
            ]
        )

        result = rule_engine.evaluate(criteria, {"income": 4000, "married": False})

        assert result.score == 100
        assert result.failed_rules == []
        assert result.group_results[0].rule_results[1].skipped is True

    def test_ungrouped_rules_ignored_with_explicit_groups(self, rule_engine):
        """Explicit groups take precedence over ungrouped rules."""
        criteria = Criteria(
            criteria_id="c1",
            groups=[RuleGroup(group_id="g1", rules=[Rule("r1", "a", Operator.EQ, 1)])],
            rules=[Rule("r2", "b", Operator.EQ, 1)]
        )

        result = rule_engine.evaluate(criteria, {"a": 1, "b": 0})

        assert result.passed is True
        assert [r.rule_id for g in result.group_results for r in g.rule_results] == ["r1"]

    def test_custom_decision_thresholds(self, rule_engine, loan_criteria):
        """Criteria tables replace the built-in bands."""
        loan_criteria.decision_thresholds = ThresholdTable({100: "Approved", 50: "Review"}, default_label="Declined")

        assert rule_engine.evaluate(loan_criteria, {"income": 5000, "credit_score": 750}).decision == "Approved"
        assert rule_engine.evaluate(loan_criteria, {"income": 2000, "credit_score": 750}).decision == "Review"
        assert rule_engine.evaluate(loan_criteria, {"income": 2000, "credit_score": 600}).decision == "Declined"

    def test_mapping_thresholds_are_normalized(self):
        """Plain mappings become threshold tables."""
        criteria = Criteria(criteria_id="c1", decision_thresholds={90: "A", 0: "F"})

        assert isinstance(criteria.decision_thresholds, ThresholdTable)

    def test_evaluation_is_deterministic(self, rule_engine, loan_criteria):
        """Repeated evaluations serialize identically."""
        subject = {"income": 2000, "credit_score": 750}

        first = rule_engine.evaluate(loan_criteria, subject).model_dump_json()
        second = rule_engine.evaluate(loan_criteria, subject).model_dump_json()

        assert first == second

    def test_execution_plan(self, rule_engine):
        """Execution plans describe groups and rules without evaluating."""
        criteria = Criteria(
            criteria_id="c1",
            rules=[
                Rule("r1", "a", Operator.EQ, 1, group_logic="OR"),
                Rule("r2", "b", ">=", 2, weight=3, dependencies=[Condition("c", Operator.EXISTS)]),
                Rule("r3", "c", Operator.EQ, 1, active=False, group_logic="AND"),
            ]
        )

        plan = rule_engine.get_execution_plan(criteria)

        assert plan["criteria_id"] == "c1"
        assert plan["scoring_method"] == "weighted"
        assert plan["pass_threshold"] == 65
        assert [g["combination"] for g in plan["groups"]] == ["any", "all"]
        assert plan["groups"][0]["rules"][1]["dependencies"] == [
            {"field": "c", "operator": "exists", "expected": None}
        ]
        assert plan["total_rules"] == 3
        assert plan["active_rules"] == 2
        assert plan["decision_thresholds"]["default_label"] == "Rejected"
