"""
Group evaluation, combinator logic and legacy rule clustering.
"""

import string
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Union

from shared.logging import get_logger
from .evaluator import RuleEvaluator
from .expression import evaluate_expression
from .models import Combinator, Rule, RuleGroup, RuleResult, GroupResult

logger = get_logger("eligibility.groups")

LETTERS = string.ascii_lowercase

_LEGACY_TAGS = {
    "AND": Combinator.ALL,
    "ALL": Combinator.ALL,
    "OR": Combinator.ANY,
    "ANY": Combinator.ANY,
    "MAJORITY": Combinator.MAJORITY,
    "NAND": Combinator.NAND,
    "NOR": Combinator.NOR,
    "XOR": Combinator.XOR,
}


@dataclass(frozen=True)
class CombinationOutcome:
    """Reduced pass flag plus a diagnostic when the combinator was misconfigured."""
    passed: bool
    error: Optional[str] = None


def combine(
    combination: Union[Combinator, str],
    flags: Sequence[bool],
    min_required: Optional[int] = None,
    boolean_expression: Optional[str] = None
) -> CombinationOutcome:
    """
    Reduce pass flags with one combinator.

    ``flags`` holds only effective (non-skipped) results, in declaration
    order. Used for rules inside a group and for groups inside a criteria.
    """
    try:
        mode = Combinator(combination)
    except ValueError:
        return CombinationOutcome(False, f"Unknown combination logic: {combination}")

    passed_count = sum(1 for flag in flags if flag)

    if mode == Combinator.ALL:
        return CombinationOutcome(passed_count == len(flags))

    elif mode == Combinator.ANY:
        return CombinationOutcome(passed_count > 0)

    elif mode == Combinator.MIN:
        if isinstance(min_required, bool) or not isinstance(min_required, int) or min_required < 1:
            return CombinationOutcome(False, "MIN combination requires min_required >= 1")
        return CombinationOutcome(passed_count >= min_required)

    elif mode == Combinator.MAJORITY:
        return CombinationOutcome(passed_count > len(flags) / 2)

    elif mode == Combinator.NAND:
        return CombinationOutcome(passed_count != len(flags))

    elif mode == Combinator.NOR:
        return CombinationOutcome(passed_count == 0)

    elif mode == Combinator.XOR:
        return CombinationOutcome(passed_count == 1)

    # BOOLEAN
    if len(flags) > len(LETTERS):
        return CombinationOutcome(False, f"Boolean expressions support at most {len(LETTERS)} operands")
    values = {LETTERS[index]: bool(flag) for index, flag in enumerate(flags)}
    outcome = evaluate_expression(boolean_expression, values)
    return CombinationOutcome(outcome.value, outcome.error)


def _legacy_combinator(tag: str) -> Union[Combinator, str]:
    combinator = _LEGACY_TAGS.get(tag)
    if combinator is None:
        # unresolved tags fail closed in combine()
        logger.warning("Unsupported legacy group logic", group_logic=tag)
        return tag
    return combinator


def cluster_rules(rules: Sequence[Rule]) -> List[RuleGroup]:
    """
    Build implicit groups from ungrouped rules.

    A change of ``group_logic`` tag starts a new group; repeated tags extend
    the current one. Untagged rules extend the open group, or open an ALL
    group when none exists yet. Rules with no tags at all form one
    ``default`` group.
    """
    if not rules:
        return []

    if all(not rule.group_logic for rule in rules):
        return [RuleGroup(group_id="default", name="Default", combination=Combinator.ALL, rules=list(rules))]

    groups: List[RuleGroup] = []
    current: Optional[RuleGroup] = None
    current_tag: Optional[str] = None

    for rule in rules:
        tag = rule.group_logic.strip().upper() if rule.group_logic else None

        if current is None or (tag is not None and tag != current_tag):
            combinator = _legacy_combinator(tag) if tag else Combinator.ALL
            current = RuleGroup(
                group_id=f"cluster_{len(groups) + 1}",
                name=f"{tag or 'ALL'} cluster",
                combination=combinator
            )
            current_tag = tag or "ALL"
            groups.append(current)

        current.rules.append(rule)

    return groups


class GroupEvaluator:
    """Evaluates all rules of a group and applies its combinator."""

    def __init__(self, rule_evaluator: Optional[RuleEvaluator] = None):
        self.logger = get_logger("eligibility.group_evaluator")
        self.rule_evaluator = rule_evaluator or RuleEvaluator()

    def evaluate(self, group: RuleGroup, subject: Mapping[str, Any]) -> GroupResult:
        """Evaluate one group. Never raises for a misconfigured rule or combinator."""
        rule_results: List[RuleResult] = []

        for rule in group.rules:
            if not rule.active:
                continue
            rule_results.append(self._evaluate_rule(rule, subject))

        effective = [result for result in rule_results if not result.skipped]
        passed_count = sum(1 for result in effective if result.passed)

        outcome = combine(
            group.combination,
            [result.passed for result in effective],
            group.min_required,
            group.boolean_expression
        )
        if outcome.error:
            self.logger.warning("Group combination error", group_id=group.group_id, error=outcome.error)

        score = round(passed_count / len(effective) * 100, 2) if effective else 0.0

        return GroupResult(
            group_id=group.group_id,
            name=group.name,
            combination=_enum_label(group.combination),
            passed=outcome.passed,
            score=score,
            passed_count=passed_count,
            effective_count=len(effective),
            rule_results=rule_results,
            error=outcome.error
        )

    def _evaluate_rule(self, rule: Rule, subject: Mapping[str, Any]) -> RuleResult:
        try:
            return self.rule_evaluator.check(rule, subject)
        except Exception as e:
            self.logger.warning("Rule evaluation error", rule_id=rule.rule_id, error=str(e))
            return RuleResult(
                rule_id=rule.rule_id,
                field=rule.field,
                operator=_enum_label(rule.operator),
                expected=rule.expected,
                passed=False,
                error=str(e)
            )


def _enum_label(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)
