"""
Rule data models for the Eligibility engine.
"""

from typing import Dict, Any, Optional, List, Tuple, Union, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

from shared.errors import ConfigurationError


class Operator(str, Enum):
    """Rule comparison operators."""
    EQ = "=="
    NEQ = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    EMPTY = "empty"
    NOT_EMPTY = "not_empty"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    CONTAINS = "contains"
    REGEX = "regex"
    BEFORE = "before"
    AFTER = "after"
    DATE_BETWEEN = "date_between"

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        for member in cls:
            if member.value == key or member.name.lower() == key:
                return member
        return _OPERATOR_ALIASES.get(key)


_OPERATOR_ALIASES = {
    "=": Operator.EQ,
    "equals": Operator.EQ,
    "<>": Operator.NEQ,
    "not_equals": Operator.NEQ,
    "greater_than": Operator.GT,
    "greater_than_or_equal": Operator.GTE,
    "less_than": Operator.LT,
    "less_than_or_equal": Operator.LTE,
    "is_empty": Operator.EMPTY,
    "is_not_empty": Operator.NOT_EMPTY,
    "matches": Operator.REGEX,
}


class Combinator(str, Enum):
    """Logic used to reduce several pass/fail flags into one."""
    ALL = "all"
    ANY = "any"
    MIN = "min"
    MAJORITY = "majority"
    BOOLEAN = "boolean"
    # Legacy clustering tags
    NAND = "nand"
    NOR = "nor"
    XOR = "xor"

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        aliases = {"and": cls.ALL, "or": cls.ANY, "min_n": cls.MIN, "expression": cls.BOOLEAN}
        for member in cls:
            if member.value == key:
                return member
        return aliases.get(key)


class ScoringMethod(str, Enum):
    """Score algebras applied over the flattened rule results."""
    WEIGHTED = "weighted"
    PASS_FAIL = "pass_fail"
    SUM = "sum"
    AVERAGE = "average"

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        key = value.strip().lower().replace("-", "_").replace("/", "_")
        aliases = {"percentage": cls.AVERAGE, "binary": cls.PASS_FAIL}
        for member in cls:
            if member.value == key:
                return member
        return aliases.get(key)


@dataclass
class Condition:
    """Prerequisite condition checked before a rule is evaluated."""
    field: str
    operator: Union[Operator, str]
    expected: Any = None


@dataclass
class Rule:
    """Atomic eligibility rule."""
    rule_id: str
    field: str
    operator: Union[Operator, str]
    expected: Any = None
    weight: float = 1.0
    dependencies: List[Condition] = field(default_factory=list)
    active: bool = True
    name: Optional[str] = None
    # Legacy clustering tag (AND/OR/MAJORITY), only read when a criteria has no groups
    group_logic: Optional[str] = None


@dataclass
class RuleGroup:
    """Ordered set of rules reduced by one combinator."""
    group_id: str
    name: Optional[str] = None
    combination: Union[Combinator, str] = Combinator.ALL
    min_required: Optional[int] = None
    boolean_expression: Optional[str] = None
    weight: float = 1.0
    rules: List[Rule] = field(default_factory=list)


class ThresholdTable:
    """
    Ordered mapping from a score threshold to a decision label.

    Accepts a mapping or an iterable of ``(threshold, label)`` pairs. Thresholds
    are normalized to floats, so ``70`` and ``"70.0"`` collide and raise
    ConfigurationError.
    """

    def __init__(
        self,
        entries: Union[Mapping[Any, str], Iterable[Tuple[Any, str]]],
        default_label: Optional[str] = None
    ):
        pairs = entries.items() if isinstance(entries, Mapping) else entries
        normalized: Dict[float, str] = {}
        for threshold, label in pairs:
            try:
                value = float(threshold)
            except (TypeError, ValueError):
                raise ConfigurationError(
                    "Decision threshold must be numeric",
                    {"threshold": threshold}
                )
            if value in normalized:
                raise ConfigurationError(
                    "Duplicate decision threshold",
                    {"threshold": value, "labels": [normalized[value], label]}
                )
            normalized[value] = str(label)

        self.entries: List[Tuple[float, str]] = sorted(normalized.items(), key=lambda item: item[0], reverse=True)
        self.default_label = default_label

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation used by execution plans."""
        return {
            "thresholds": [{"threshold": threshold, "label": label} for threshold, label in self.entries],
            "default_label": self.default_label,
        }

    def __eq__(self, other):
        if not isinstance(other, ThresholdTable):
            return NotImplemented
        return self.entries == other.entries and self.default_label == other.default_label

    def __repr__(self):
        return f"ThresholdTable({self.entries!r}, default_label={self.default_label!r})"


@dataclass
class Criteria:
    """Named, scored set of rule groups resolved by the caller before evaluation."""
    criteria_id: str
    name: Optional[str] = None
    groups: List[RuleGroup] = field(default_factory=list)
    # Ungrouped (legacy) rules, clustered by their group_logic tags
    rules: List[Rule] = field(default_factory=list)
    combination: Union[Combinator, str] = Combinator.ALL
    min_required: Optional[int] = None
    boolean_expression: Optional[str] = None
    scoring_method: Optional[Union[ScoringMethod, str]] = None
    pass_threshold: Optional[float] = None
    decision_thresholds: Optional[ThresholdTable] = None

    def __post_init__(self):
        if self.decision_thresholds is not None and not isinstance(self.decision_thresholds, ThresholdTable):
            self.decision_thresholds = ThresholdTable(self.decision_thresholds)


class RuleResult(BaseModel):
    """Outcome of one rule for one subject."""
    rule_id: str
    field: str
    operator: str
    expected: Any = None
    actual: Any = None
    passed: bool
    skipped: bool = False
    score_contribution: float = 0.0
    weight: float = 0.0
    error: Optional[str] = None
    reason: Optional[str] = None


class GroupResult(BaseModel):
    """Outcome of one group for one subject."""
    group_id: str
    name: Optional[str] = None
    combination: str
    passed: bool
    score: float = Field(0.0, ge=0, le=100)
    passed_count: int = 0
    effective_count: int = 0
    rule_results: List[RuleResult] = Field(default_factory=list)
    error: Optional[str] = None


class EvaluationResult(BaseModel):
    """Externally visible outcome of evaluating a criteria against a subject."""
    criteria_id: Optional[str] = None
    passed: bool
    score: float
    decision: str
    scoring_method: Optional[str] = None
    threshold: Optional[float] = None
    group_combination_passed: Optional[bool] = Field(None, description="Advisory result of the top-level combinator")
    combination_error: Optional[str] = None
    failed_rules: List[RuleResult] = Field(default_factory=list)
    group_results: List[GroupResult] = Field(default_factory=list)


class BatchItemResult(BaseModel):
    """Outcome of one subject inside a batch evaluation."""
    index: int
    subject_hash: str
    passed: bool
    score: float = 0.0
    decision: Optional[str] = None
    result: Optional[EvaluationResult] = None
    error: Optional[str] = None


class BatchEvaluationResult(BaseModel):
    """Totals and per-subject outcomes of a batch evaluation."""
    criteria_id: str
    total_evaluated: int
    total_passed: int
    total_failed: int
    results: List[BatchItemResult] = Field(default_factory=list)
