"""Search conditions evaluated against relation rows."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any, Iterator

OPERATORS = ("eq", "neq", "lt", "lte", "gt", "gte", "like", "ilike", "in")


@dataclass
class Condition:
    """A single comparison on one field."""

    field: str
    operator: str  # one of OPERATORS
    value: Any
    negate: bool = False

    def __and__(self, other: Condition | CompoundCondition) -> CompoundCondition:
        return CompoundCondition(left=self, operator="and", right=other)

    def __or__(self, other: Condition | CompoundCondition) -> CompoundCondition:
        return CompoundCondition(left=self, operator="or", right=other)

    def __invert__(self) -> Condition:
        return replace(self, negate=not self.negate)


@dataclass
class CompoundCondition:
    """A compound condition (AND/OR)."""

    left: Condition | CompoundCondition
    operator: str  # and, or
    right: Condition | CompoundCondition
    negate: bool = False

    def __and__(self, other: Condition | CompoundCondition) -> CompoundCondition:
        return CompoundCondition(left=self, operator="and", right=other)

    def __or__(self, other: Condition | CompoundCondition) -> CompoundCondition:
        return CompoundCondition(left=self, operator="or", right=other)

    def __invert__(self) -> CompoundCondition:
        return replace(self, negate=not self.negate)


AnyCondition = Condition | CompoundCondition


class ConditionField:
    """Builds conditions on one field: ``model.field("name").equals("Jane")``."""

    def __init__(self, name: str) -> None:
        self.name = name

    def equals(self, value: Any) -> Condition:
        return Condition(self.name, "eq", value)

    def not_equals(self, value: Any) -> Condition:
        return Condition(self.name, "neq", value)

    def lower(self, value: Any) -> Condition:
        return Condition(self.name, "lt", value)

    def lower_or_equal(self, value: Any) -> Condition:
        return Condition(self.name, "lte", value)

    def greater(self, value: Any) -> Condition:
        return Condition(self.name, "gt", value)

    def greater_or_equal(self, value: Any) -> Condition:
        return Condition(self.name, "gte", value)

    def like(self, pattern: str) -> Condition:
        """SQL LIKE: ``%`` matches any run of characters, ``_`` one character."""
        return Condition(self.name, "like", pattern)

    def ilike(self, pattern: str) -> Condition:
        return Condition(self.name, "ilike", pattern)

    def in_(self, values: Any) -> Condition:
        return Condition(self.name, "in", list(values))

    def is_null(self) -> Condition:
        return Condition(self.name, "eq", None)

    def is_not_null(self) -> Condition:
        return Condition(self.name, "neq", None)


def like_to_regex(pattern: str, case_sensitive: bool = True) -> re.Pattern[str]:
    """Translate a LIKE pattern into an anchored regular expression."""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    flags = re.DOTALL if case_sensitive else re.DOTALL | re.IGNORECASE
    return re.compile("^" + "".join(parts) + "$", flags)


def iter_conditions(condition: AnyCondition) -> Iterator[Condition]:
    """Yield the leaf conditions of a condition tree."""
    if isinstance(condition, CompoundCondition):
        yield from iter_conditions(condition.left)
        yield from iter_conditions(condition.right)
    else:
        yield condition


def map_values(condition: AnyCondition, func: Any) -> AnyCondition:
    """Return a copy of a condition tree with ``func(leaf)`` applied to each leaf value."""
    if isinstance(condition, CompoundCondition):
        return replace(
            condition,
            left=map_values(condition.left, func),
            right=map_values(condition.right, func),
        )
    return replace(condition, value=func(condition))


def evaluate_condition(row: dict[str, Any], condition: AnyCondition) -> bool:
    """Evaluate a condition against a row of field values."""
    if isinstance(condition, CompoundCondition):
        left = evaluate_condition(row, condition.left)
        if condition.operator == "and":
            result = left and evaluate_condition(row, condition.right)
        else:  # or
            result = left or evaluate_condition(row, condition.right)
        return not result if condition.negate else result

    field_value = row.get(condition.field)
    if field_value is None or condition.value is None:
        # Null comparisons: field = null, field != null
        if condition.operator == "eq":
            result = field_value is condition.value or field_value == condition.value
        elif condition.operator == "neq":
            result = field_value != condition.value
        elif condition.operator == "in":
            result = field_value in (condition.value or [])
        else:
            result = False
        return not result if condition.negate else result

    result = _compare(field_value, condition.operator, condition.value)
    return not result if condition.negate else result


def _compare(field_value: Any, operator: str, value: Any) -> bool:
    """Compare a field value against a condition value."""
    try:
        if operator == "eq":
            return field_value == value
        elif operator == "neq":
            return field_value != value
        elif operator == "lt":
            return field_value < value
        elif operator == "lte":
            return field_value <= value
        elif operator == "gt":
            return field_value > value
        elif operator == "gte":
            return field_value >= value
        elif operator in ("like", "ilike"):
            if not isinstance(field_value, str):
                return False
            regex = like_to_regex(value, case_sensitive=operator == "like")
            return regex.match(field_value) is not None
        elif operator == "in":
            return field_value in value
    except TypeError:
        return False
    raise ValueError(f"Unknown operator '{operator}'")
