"""Edge condition evaluation.

Resolves a dot path into a node's result data and compares it against
a condition value.
"""

import re
from typing import Any, Iterable

import structlog

from src.models.workflow import ConditionOperator, EdgeCondition, condition_text

logger = structlog.get_logger()


def get_nested_value(data: Any, path: str) -> Any:
    """Resolve a dot path such as ``user.tags.0`` against nested data.

    Mappings are indexed by key, sequences by integer index. Any missing
    step yields None.

    Args:
        data: Data to search
        path: Dot-separated path

    Returns:
        The value at the path, or None
    """
    current = data
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            current = getattr(current, part, None)
    return current


def compare(operator: str, field_value: Any, value: Any) -> bool:
    """Apply a condition operator.

    Ordering comparisons between incomparable values (e.g. None and a
    number) fail rather than raise. Unknown operators pass.
    """
    try:
        op = ConditionOperator(operator)
    except ValueError:
        logger.debug("unknown_condition_operator", operator=operator)
        return True

    try:
        if op is ConditionOperator.EQ:
            return field_value == value
        if op is ConditionOperator.NEQ:
            return field_value != value
        if op is ConditionOperator.GT:
            return field_value > value
        if op is ConditionOperator.GTE:
            return field_value >= value
        if op is ConditionOperator.LT:
            return field_value < value
        if op is ConditionOperator.LTE:
            return field_value <= value
    except TypeError:
        return False

    if op is ConditionOperator.CONTAINS:
        return condition_text(value) in condition_text(field_value)
    # regex
    return re.search(condition_text(value), condition_text(field_value)) is not None


def evaluate_condition(condition: EdgeCondition | None, data: Any) -> bool:
    """Evaluate an edge condition against a node's result data.

    Args:
        condition: Condition to evaluate (None always passes)
        data: Result data of the edge's source node

    Returns:
        True if the edge may be followed
    """
    if condition is None:
        return True
    field_value = get_nested_value(data, condition.field)
    return compare(condition.operator, field_value, condition.value)


def evaluate_all(
    conditions: Iterable[EdgeCondition],
    data: Any,
    combine: str = "all",
) -> bool:
    """Evaluate several conditions, combined with ``all`` or ``any``."""
    results = [evaluate_condition(c, data) for c in conditions]
    if not results:
        return True
    if combine == "any":
        return any(results)
    return all(results)
