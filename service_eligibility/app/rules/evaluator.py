"""
Rule evaluator and dependency gate for the Eligibility engine.
"""

from typing import Any, Mapping, Optional, Tuple

from shared.logging import get_logger
from shared.errors import ConfigurationError
from .comparator import ValueComparator, MISSING, coerce_operator, to_number
from .models import Rule, RuleResult

DEPENDENCY_NOT_MET = "Dependency not met"


def resolve_field(subject: Mapping[str, Any], path: str) -> Any:
    """
    Resolve a dotted field path against a subject.

    A literal key containing dots wins over traversal. Nested mappings are
    walked by key and lists by integer index. Returns MISSING when any
    segment is absent.
    """
    if not isinstance(subject, Mapping) or not path:
        return MISSING

    if path in subject:
        return subject[path]

    current: Any = subject
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(segment)
            except ValueError:
                return MISSING
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING

    return current


def _operator_label(operator: Any) -> str:
    return operator.value if hasattr(operator, "value") else str(operator)


class DependencyGate:
    """Checks a rule's prerequisite conditions (AND semantics)."""

    def __init__(self, comparator: Optional[ValueComparator] = None):
        self.comparator = comparator or ValueComparator()

    def satisfied(self, rule: Rule, subject: Mapping[str, Any]) -> bool:
        """
        Return True when every dependency condition holds.

        Raises ConfigurationError when a condition carries an unknown operator.
        """
        for condition in rule.dependencies:
            actual = resolve_field(subject, condition.field)
            if not self.comparator.compare(actual, condition.operator, condition.expected):
                return False
        return True


class RuleEvaluator:
    """Evaluates single rules against a subject."""

    def __init__(self, comparator: Optional[ValueComparator] = None):
        self.logger = get_logger("eligibility.rule_evaluator")
        self.comparator = comparator or ValueComparator()
        self.gate = DependencyGate(self.comparator)

    def check(self, rule: Rule, subject: Mapping[str, Any]) -> RuleResult:
        """Run the dependency gate, then evaluate the rule if it applies."""
        if rule.dependencies and not self.gate.satisfied(rule, subject):
            self.logger.debug("Rule skipped", rule_id=rule.rule_id, reason=DEPENDENCY_NOT_MET)
            return self.skipped(rule)
        return self.evaluate(rule, subject)

    def evaluate(self, rule: Rule, subject: Mapping[str, Any]) -> RuleResult:
        """Evaluate one rule; configuration errors fail the rule closed."""
        actual = resolve_field(subject, rule.field)
        reported_actual = None if actual is MISSING else actual

        weight, weight_error = self._weight(rule)
        if weight_error:
            return self._failed(rule, reported_actual, weight_error)

        try:
            operator = coerce_operator(rule.operator)
        except ConfigurationError as e:
            return self._failed(rule, reported_actual, e.message)

        passed = self.comparator.compare(actual, operator, rule.expected)

        return RuleResult(
            rule_id=rule.rule_id,
            field=rule.field,
            operator=operator.value,
            expected=rule.expected,
            actual=reported_actual,
            passed=passed,
            score_contribution=weight if passed else 0.0,
            weight=weight
        )

    def skipped(self, rule: Rule) -> RuleResult:
        """Result for a rule whose dependencies were not met."""
        weight, _ = self._weight(rule)
        return RuleResult(
            rule_id=rule.rule_id,
            field=rule.field,
            operator=_operator_label(rule.operator),
            expected=rule.expected,
            passed=False,
            skipped=True,
            weight=weight,
            reason=DEPENDENCY_NOT_MET
        )

    def _weight(self, rule: Rule) -> Tuple[float, Optional[str]]:
        weight = to_number(rule.weight)
        if weight is None:
            return 0.0, f"Invalid rule weight: {rule.weight!r}"
        if weight < 0:
            return 0.0, f"Rule weight must be >= 0, got {weight}"
        return weight, None

    def _failed(self, rule: Rule, actual: Any, error: str) -> RuleResult:
        self.logger.warning("Rule configuration error", rule_id=rule.rule_id, error=error)
        return RuleResult(
            rule_id=rule.rule_id,
            field=rule.field,
            operator=_operator_label(rule.operator),
            expected=rule.expected,
            actual=actual,
            passed=False,
            error=error
        )
