"""
Scoring strategies and decision labeling for the Eligibility engine.
"""

from typing import Callable, Dict, Iterable, List, Optional

from .models import RuleResult, ScoringMethod, ThresholdTable

BUILTIN_DECISION_BANDS = ThresholdTable({
    90: "Excellent",
    80: "Very Good",
    70: "Good",
    50: "Needs Improvement",
    30: "Poor",
})


def _effective(results: Iterable[RuleResult]) -> List[RuleResult]:
    return [result for result in results if not result.skipped]


def weighted_score(results: Iterable[RuleResult]) -> float:
    """Passed weight over total weight, as a percentage."""
    effective = _effective(results)
    total_weight = sum(result.weight for result in effective)
    if total_weight <= 0:
        return 0.0
    passed_weight = sum(result.weight for result in effective if result.passed)
    return round(passed_weight / total_weight * 100, 2)


def pass_fail_score(results: Iterable[RuleResult]) -> float:
    """100 when every effective rule passed, else 0. No effective rules scores 0."""
    effective = _effective(results)
    if not effective:
        return 0.0
    return 100.0 if all(result.passed for result in effective) else 0.0


def sum_score(results: Iterable[RuleResult]) -> float:
    """Plain sum of passed rule weights."""
    return float(sum(result.weight for result in _effective(results) if result.passed))


def average_score(results: Iterable[RuleResult]) -> float:
    """Share of effective rules that passed, as a percentage; weights ignored."""
    effective = _effective(results)
    if not effective:
        return 0.0
    passed = sum(1 for result in effective if result.passed)
    return round(passed / len(effective) * 100, 2)


SCORING_STRATEGIES: Dict[ScoringMethod, Callable[[Iterable[RuleResult]], float]] = {
    ScoringMethod.WEIGHTED: weighted_score,
    ScoringMethod.PASS_FAIL: pass_fail_score,
    ScoringMethod.SUM: sum_score,
    ScoringMethod.AVERAGE: average_score,
}


def compute_score(method: ScoringMethod, results: Iterable[RuleResult]) -> float:
    """Score rule results with the selected method."""
    return SCORING_STRATEGIES[method](list(results))


def is_passing(method: ScoringMethod, score: float, threshold: float) -> bool:
    """PASS_FAIL requires a perfect score; other methods compare against the threshold."""
    if method == ScoringMethod.PASS_FAIL:
        return score == 100
    return score >= threshold


class DecisionLabeler:
    """Maps a score to a decision label through a threshold table."""

    def __init__(self, default_label: str = "Rejected"):
        self.default_label = default_label

    def label(self, score: float, table: Optional[ThresholdTable] = None) -> str:
        """Scan thresholds in descending order; the first one <= score wins."""
        table = table or BUILTIN_DECISION_BANDS
        for threshold, label in table.entries:
            if threshold <= score:
                return label
        return table.default_label or self.default_label


def label(score: float, table: Optional[ThresholdTable] = None, default_label: str = "Rejected") -> str:
    """Label a score without keeping a labeler around."""
    return DecisionLabeler(default_label).label(score, table)
