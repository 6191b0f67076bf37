"""
Criteria evaluation engine for the Eligibility Service.
"""

from typing import Any, Dict, List, Mapping, Optional

from shared.config import EligibilityConfig, resolve_config
from shared.logging import get_logger
from .comparator import ValueComparator
from .evaluator import RuleEvaluator
from .groups import GroupEvaluator, cluster_rules, combine
from .models import (
    Criteria, EvaluationResult, GroupResult, Rule, RuleGroup,
    RuleResult, ScoringMethod
)
from .scoring import BUILTIN_DECISION_BANDS, DecisionLabeler, compute_score, is_passing


def _label(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


class RuleEngine:
    """Criteria evaluation engine."""

    def __init__(
        self,
        config: Optional[EligibilityConfig] = None,
        comparator: Optional[ValueComparator] = None
    ):
        self.logger = get_logger("eligibility.rule_engine")
        self.config = resolve_config(config)
        self.rule_evaluator = RuleEvaluator(comparator)
        self.group_evaluator = GroupEvaluator(self.rule_evaluator)
        self.labeler = DecisionLabeler(self.config.default_decision)

    def resolve_groups(self, criteria: Criteria) -> List[RuleGroup]:
        """Explicit groups in declared order, or clusters built from ungrouped rules."""
        if criteria.groups:
            if criteria.rules:
                self.logger.warning(
                    "Ungrouped rules ignored for criteria with explicit groups",
                    criteria_id=criteria.criteria_id,
                    ignored=len(criteria.rules)
                )
            return list(criteria.groups)
        return cluster_rules(criteria.rules)

    def resolve_scoring_method(self, criteria: Criteria) -> ScoringMethod:
        """Criteria scoring method, falling back to the configured default."""
        method = criteria.scoring_method if criteria.scoring_method is not None else self.config.scoring_method
        try:
            return ScoringMethod(method)
        except ValueError:
            self.logger.warning(
                "Unknown scoring method, using weighted",
                criteria_id=criteria.criteria_id,
                scoring_method=str(method)
            )
            return ScoringMethod.WEIGHTED

    def resolve_threshold(self, criteria: Criteria) -> float:
        """Criteria pass threshold, falling back to the configured default."""
        if criteria.pass_threshold is not None:
            try:
                return float(criteria.pass_threshold)
            except (TypeError, ValueError):
                self.logger.warning(
                    "Invalid pass threshold, using configured default",
                    criteria_id=criteria.criteria_id,
                    pass_threshold=criteria.pass_threshold
                )
        return float(self.config.pass_threshold)

    def evaluate(self, criteria: Criteria, subject: Mapping[str, Any]) -> EvaluationResult:
        """Evaluate a criteria against one subject."""
        groups = self.resolve_groups(criteria)
        method = self.resolve_scoring_method(criteria)
        threshold = self.resolve_threshold(criteria)

        if not groups:
            self.logger.debug("Criteria has no rules", criteria_id=criteria.criteria_id)
            return EvaluationResult(
                criteria_id=criteria.criteria_id,
                passed=False,
                score=0.0,
                decision=self.config.default_decision,
                scoring_method=method.value,
                threshold=threshold,
                group_combination_passed=False
            )

        group_results: List[GroupResult] = [
            self.group_evaluator.evaluate(group, subject) for group in groups
        ]
        rule_results: List[RuleResult] = [
            result for group_result in group_results for result in group_result.rule_results
        ]

        combination = combine(
            criteria.combination,
            [group_result.passed for group_result in group_results],
            criteria.min_required,
            criteria.boolean_expression
        )
        if combination.error:
            self.logger.warning(
                "Criteria combination error",
                criteria_id=criteria.criteria_id,
                error=combination.error
            )

        score = compute_score(method, rule_results)
        passed = is_passing(method, score, threshold)
        decision = self.labeler.label(score, criteria.decision_thresholds)

        result = EvaluationResult(
            criteria_id=criteria.criteria_id,
            passed=passed,
            score=score,
            decision=decision,
            scoring_method=method.value,
            threshold=threshold,
            group_combination_passed=combination.passed,
            combination_error=combination.error,
            failed_rules=[item for item in rule_results if not item.passed and not item.skipped],
            group_results=group_results
        )

        self.logger.debug(
            "Criteria evaluated",
            criteria_id=criteria.criteria_id,
            passed=passed,
            score=score,
            decision=decision,
            groups_passed=combination.passed
        )

        return result

    def get_execution_plan(self, criteria: Criteria) -> Dict[str, Any]:
        """Describe how a criteria would be evaluated, without evaluating it."""
        groups = self.resolve_groups(criteria)
        table = criteria.decision_thresholds
        if table is None:
            decision_thresholds = BUILTIN_DECISION_BANDS.to_dict()
            decision_thresholds["default_label"] = self.config.default_decision
        else:
            decision_thresholds = table.to_dict()
            decision_thresholds["default_label"] = table.default_label or self.config.default_decision

        return {
            "criteria_id": criteria.criteria_id,
            "name": criteria.name,
            "combination": _label(criteria.combination),
            "min_required": criteria.min_required,
            "boolean_expression": criteria.boolean_expression,
            "scoring_method": self.resolve_scoring_method(criteria).value,
            "pass_threshold": self.resolve_threshold(criteria),
            "decision_thresholds": decision_thresholds,
            "groups": [self._describe_group(group) for group in groups],
            "total_rules": sum(len(group.rules) for group in groups),
            "active_rules": sum(1 for group in groups for rule in group.rules if rule.active),
        }

    def _describe_group(self, group: RuleGroup) -> Dict[str, Any]:
        return {
            "group_id": group.group_id,
            "name": group.name,
            "combination": _label(group.combination),
            "min_required": group.min_required,
            "boolean_expression": group.boolean_expression,
            "weight": group.weight,
            "rules": [self._describe_rule(rule) for rule in group.rules],
        }

    def _describe_rule(self, rule: Rule) -> Dict[str, Any]:
        return {
            "rule_id": rule.rule_id,
            "name": rule.name,
            "field": rule.field,
            "operator": _label(rule.operator),
            "expected": rule.expected,
            "weight": rule.weight,
            "active": rule.active,
            "dependencies": [
                {
                    "field": condition.field,
                    "operator": _label(condition.operator),
                    "expected": condition.expected,
                }
                for condition in rule.dependencies
            ],
        }
