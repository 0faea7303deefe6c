"""
Condition evaluation as pure functions.

A condition is either a flag check or a category-score comparison. Lists
of conditions are AND-ed; alternatives are expressed as separate rules.
Unknown flags or categories never raise: they evaluate False and log.
"""

from __future__ import annotations

import logging
import operator
from typing import Callable, Iterable, Protocol

from ..state.schema import (
    ComparisonOperator,
    Condition,
    FlagCondition,
    ScoreCondition,
)

logger = logging.getLogger(__name__)


class FlagReader(Protocol):
    """Read side of a flag store, as seen by conditions."""

    def is_set(self, flag_id: str) -> bool: ...

    def get_category_score(self, category: str) -> int: ...

    def is_known_flag(self, flag_id: str) -> bool: ...

    def is_known_category(self, category: str) -> bool: ...


OPERATORS: dict[ComparisonOperator, Callable[[int, int], bool]] = {
    ComparisonOperator.EQUAL: operator.eq,
    ComparisonOperator.NOT_EQUAL: operator.ne,
    ComparisonOperator.GREATER_THAN: operator.gt,
    ComparisonOperator.GREATER_THAN_OR_EQUAL: operator.ge,
    ComparisonOperator.LESS_THAN: operator.lt,
    ComparisonOperator.LESS_THAN_OR_EQUAL: operator.le,
}


def compare(op: ComparisonOperator, lhs: int, rhs: int) -> bool:
    """Apply a comparison operator to two integers."""
    return OPERATORS[op](lhs, rhs)


def evaluate(condition: Condition, flags: FlagReader) -> bool:
    """
    Evaluate one condition against a flag store.

    Args:
        condition: Flag or score condition
        flags: Store to read from

    Returns:
        True if the condition holds. Unknown references return False.
    """
    if isinstance(condition, FlagCondition):
        if not flags.is_known_flag(condition.flag_id):
            logger.warning(f"Condition references unknown flag '{condition.flag_id}'")
            return False
        return flags.is_set(condition.flag_id) == condition.required_value

    if isinstance(condition, ScoreCondition):
        if not flags.is_known_category(condition.category):
            logger.warning(f"Condition references unknown category '{condition.category}'")
            return False
        score = flags.get_category_score(condition.category)
        return compare(condition.comparison, score, condition.value)

    logger.warning(f"Unsupported condition type: {type(condition).__name__}")
    return False


def evaluate_all(conditions: Iterable[Condition], flags: FlagReader) -> bool:
    """AND of every condition. An empty list holds."""
    return all(evaluate(c, flags) for c in conditions)
