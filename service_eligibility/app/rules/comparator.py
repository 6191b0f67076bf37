"""
Value comparator for the Eligibility engine.
"""

import math
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Tuple, Union

from shared.logging import get_logger
from shared.errors import ConfigurationError
from .models import Operator


class _Missing:
    """Marker for a field path absent from the subject."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "MISSING"


MISSING = _Missing()

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}
_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def coerce_operator(operator: Union[Operator, str]) -> Operator:
    """Resolve an operator value, symbol or name."""
    if isinstance(operator, Operator):
        return operator
    try:
        return Operator(operator)
    except ValueError:
        raise ConfigurationError(f"Unknown operator: {operator}", {"operator": str(operator)})


def to_number(value: Any) -> Optional[float]:
    """Coerce a numeric or numeric-looking value to a finite float."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_instant(value: Any) -> Optional[datetime]:
    """Parse a datetime, date, ISO-8601 string or epoch timestamp to an aware datetime."""
    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, date):
        instant = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            instant = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        number = to_number(value)
        if number is None:
            return None
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> "re.Pattern":
    """
    Compile a regex, accepting ``/pattern/flags`` delimited notation.

    Raises re.error for invalid patterns; successful compilations are memoized.
    """
    flags = 0
    if len(pattern) >= 2 and pattern.startswith("/"):
        end = pattern.rfind("/")
        modifiers = pattern[end + 1:]
        if end > 0 and all(modifier in _REGEX_FLAGS for modifier in modifiers):
            for modifier in modifiers:
                flags |= _REGEX_FLAGS[modifier]
            pattern = pattern[1:end]
    return re.compile(pattern, flags)


def loose_equals(actual: Any, expected: Any) -> bool:
    """Equality that compares numeric-looking operands as numbers."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected

    left, right = to_number(actual), to_number(expected)
    if left is not None and right is not None:
        return left == right

    return actual == expected


def is_empty(value: Any) -> bool:
    """Null, missing, empty string, numeric zero or empty collection."""
    if value is None or value is MISSING:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return value == 0
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


class ValueComparator:
    """Compares one runtime value against an expected value using an operator."""

    def __init__(self):
        self.logger = get_logger("eligibility.comparator")
        self._handlers: Dict[Operator, Callable[[Any, Any], bool]] = {
            Operator.EQ: self._equals,
            Operator.NEQ: self._not_equals,
            Operator.GT: lambda actual, expected: self._ordered(actual, expected, lambda a, b: a > b),
            Operator.GTE: lambda actual, expected: self._ordered(actual, expected, lambda a, b: a >= b),
            Operator.LT: lambda actual, expected: self._ordered(actual, expected, lambda a, b: a < b),
            Operator.LTE: lambda actual, expected: self._ordered(actual, expected, lambda a, b: a <= b),
            Operator.IN: self._in,
            Operator.NOT_IN: self._not_in,
            Operator.BETWEEN: self._between,
            Operator.NOT_BETWEEN: self._not_between,
            Operator.EMPTY: lambda actual, expected: is_empty(actual),
            Operator.NOT_EMPTY: lambda actual, expected: not is_empty(actual),
            Operator.EXISTS: lambda actual, expected: actual is not MISSING,
            Operator.NOT_EXISTS: lambda actual, expected: actual is MISSING,
            Operator.STARTS_WITH: self._starts_with,
            Operator.ENDS_WITH: self._ends_with,
            Operator.CONTAINS: self._contains,
            Operator.REGEX: self._regex,
            Operator.BEFORE: lambda actual, expected: self._dates(actual, expected, lambda a, b: a < b),
            Operator.AFTER: lambda actual, expected: self._dates(actual, expected, lambda a, b: a > b),
            Operator.DATE_BETWEEN: self._date_between,
        }

    def compare(self, actual: Any, operator: Union[Operator, str], expected: Any) -> bool:
        """
        Compare ``actual`` against ``expected``.

        ``actual`` may be MISSING; only EXISTS/NOT_EXISTS distinguish it from
        None. Data errors fail closed. Raises ConfigurationError only for an
        operator that cannot be resolved.
        """
        op = coerce_operator(operator)
        handler = self._handlers[op]

        if actual is MISSING and op not in (Operator.EXISTS, Operator.NOT_EXISTS, Operator.EMPTY, Operator.NOT_EMPTY):
            actual = None

        try:
            return bool(handler(actual, expected))
        except Exception as e:
            self.logger.debug("Comparison failed closed", operator=op.name, error=str(e))
            return False

    def _equals(self, actual: Any, expected: Any) -> bool:
        return loose_equals(actual, expected)

    def _not_equals(self, actual: Any, expected: Any) -> bool:
        return not loose_equals(actual, expected)

    def _ordered(self, actual: Any, expected: Any, predicate: Callable[[float, float], bool]) -> bool:
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            self.logger.debug("Non-numeric operand for ordering", actual=actual, expected=expected)
            return False
        return predicate(left, right)

    def _members(self, expected: Any) -> Optional[Tuple[Any, ...]]:
        if not isinstance(expected, _SEQUENCE_TYPES) or len(expected) == 0:
            self.logger.warning("Membership operator requires a non-empty list", expected=expected)
            return None
        return tuple(expected)

    def _in(self, actual: Any, expected: Any) -> bool:
        members = self._members(expected)
        if members is None or actual is None:
            return False
        return any(loose_equals(actual, member) for member in members)

    def _not_in(self, actual: Any, expected: Any) -> bool:
        members = self._members(expected)
        if members is None:
            return False
        if actual is None:
            return True
        return not any(loose_equals(actual, member) for member in members)

    def _bounds(self, expected: Any) -> Optional[Tuple[float, float]]:
        if isinstance(expected, (list, tuple)) and len(expected) == 2:
            low, high = to_number(expected[0]), to_number(expected[1])
            if low is not None and high is not None and low <= high:
                return low, high
        self.logger.warning("Range operator requires an ordered [low, high] pair", expected=expected)
        return None

    def _between(self, actual: Any, expected: Any) -> bool:
        bounds = self._bounds(expected)
        value = to_number(actual)
        if bounds is None or value is None:
            return False
        return bounds[0] <= value <= bounds[1]

    def _not_between(self, actual: Any, expected: Any) -> bool:
        bounds = self._bounds(expected)
        value = to_number(actual)
        if bounds is None or value is None:
            return False
        return not bounds[0] <= value <= bounds[1]

    def _starts_with(self, actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        return str(actual).startswith(str(expected))

    def _ends_with(self, actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        return str(actual).endswith(str(expected))

    def _contains(self, actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        if isinstance(actual, _SEQUENCE_TYPES):
            return any(loose_equals(item, expected) for item in actual)
        return str(expected) in str(actual)

    def _regex(self, actual: Any, expected: Any) -> bool:
        if actual is None or not isinstance(expected, str):
            return False
        try:
            pattern = compile_pattern(expected)
        except re.error as e:
            self.logger.warning("Invalid regex pattern", pattern=expected, error=str(e))
            return False
        return pattern.search(str(actual)) is not None

    def _dates(self, actual: Any, expected: Any, predicate: Callable[[datetime, datetime], bool]) -> bool:
        left, right = to_instant(actual), to_instant(expected)
        if left is None or right is None:
            self.logger.debug("Unparsable date operand", actual=actual, expected=expected)
            return False
        return predicate(left, right)

    def _date_between(self, actual: Any, expected: Any) -> bool:
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            self.logger.warning("Date range requires a [start, end] pair", expected=expected)
            return False
        value = to_instant(actual)
        start, end = to_instant(expected[0]), to_instant(expected[1])
        if value is None or start is None or end is None or start > end:
            return False
        return start <= value <= end


_default_comparator: Optional[ValueComparator] = None


def compare(actual: Any, operator: Union[Operator, str], expected: Any) -> bool:
    """Compare using a module-level comparator."""
    global _default_comparator
    if _default_comparator is None:
        _default_comparator = ValueComparator()
    return _default_comparator.compare(actual, operator, expected)
