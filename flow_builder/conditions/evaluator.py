"""
Condition Evaluator.

Typed predicate evaluation and AND/OR combination for If nodes, plus the
editing rules that keep conditions consistent when their type or operator
changes.
"""

import dataclasses
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import BranchHandle, ConditionDataType, ConditionOperator, LogicOperator
from ..exceptions import MalformedConditionError
from ..models import Condition, IfNodeData
from .operators import DEFAULT_OPERATORS, is_operator_legal, is_unary
from .resolver import Resolver, identity_resolver

logger = logging.getLogger(__name__)

Op = ConditionOperator

_TRUE_WORDS = {"true", "1", "yes"}
_FALSE_WORDS = {"false", "0", "no"}


# =============================================================================
# Validity and draft handling
# =============================================================================


def is_condition_valid(condition: Condition) -> bool:
    """A condition is evaluable once it has a first operand, a data type and an operator."""
    return (
        bool(condition.value1 and condition.value1.strip())
        and condition.data_type is not None
        and condition.operator is not None
    )


def split_conditions(drafts: Sequence[Condition]) -> Tuple[List[Condition], List[Condition]]:
    """Return ``(valid, drafts)``. The draft list keeps every entry."""
    draft_list = list(drafts)
    return [c for c in draft_list if is_condition_valid(c)], draft_list


def apply_draft_conditions(if_data: IfNodeData, drafts: Sequence[Condition]) -> IfNodeData:
    """New If payload whose valid conditions are derived from ``drafts``."""
    valid, draft_list = split_conditions(drafts)
    return dataclasses.replace(if_data, conditions=valid, draft_conditions=draft_list)


def change_data_type(condition: Condition, data_type: ConditionDataType) -> Condition:
    """
    Switch a condition's data type.

    The operator survives when it is legal for the new type, otherwise it is
    reset to the type default. Operands survive; ``value2`` is cleared only
    when the resulting operator is unary.
    """
    operator = condition.operator
    if operator is None or not is_operator_legal(data_type, operator):
        operator = DEFAULT_OPERATORS[data_type]

    return dataclasses.replace(
        condition,
        data_type=data_type,
        operator=operator,
        value2="" if is_unary(operator) else condition.value2,
    )


def change_operator(condition: Condition, operator: ConditionOperator) -> Condition:
    """Switch a condition's operator, clearing ``value2`` only for unary operators."""
    if condition.data_type is not None and not is_operator_legal(condition.data_type, operator):
        raise MalformedConditionError(
            condition.id,
            f"operator {operator.value} is not valid for {condition.data_type.value}",
        )

    return dataclasses.replace(
        condition,
        operator=operator,
        value2="" if is_unary(operator) else condition.value2,
    )


# =============================================================================
# Coercion and operators
# =============================================================================


def coerce_value(value: Optional[str], data_type: ConditionDataType) -> Any:
    """Convert a resolved operand to ``data_type``. Unconvertible input becomes None."""
    if value is None:
        return None

    if data_type == ConditionDataType.STRING:
        return str(value)

    if data_type == ConditionDataType.NUMBER:
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return None if math.isnan(number) else number

    if data_type == ConditionDataType.INTEGER:
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            return None

    if data_type == ConditionDataType.BOOLEAN:
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        return None

    return value


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _regex_search(pattern: str, text: str) -> Optional[bool]:
    try:
        return re.search(pattern, text) is not None
    except re.error as e:
        logger.warning(f"Invalid regex pattern {pattern!r}: {e}")
        return None


def apply_operator(
    data_type: ConditionDataType,
    operator: ConditionOperator,
    value1: Any,
    value2: Any,
) -> bool:
    """Apply ``operator`` to already-coerced operands."""
    if operator == Op.EXISTS:
        return value1 is not None
    if operator == Op.NOT_EXISTS:
        return value1 is None
    if operator == Op.IS_EMPTY:
        return _is_empty(value1)
    if operator == Op.IS_NOT_EMPTY:
        return not _is_empty(value1)

    if data_type == ConditionDataType.STRING:
        left = "" if value1 is None else str(value1)
        right = "" if value2 is None else str(value2)

        if operator == Op.EQUALS:
            return left == right
        if operator == Op.NOT_EQUALS:
            return left != right
        if operator == Op.CONTAINS:
            return right in left
        if operator == Op.NOT_CONTAINS:
            return right not in left
        if operator == Op.STARTS_WITH:
            return left.startswith(right)
        if operator == Op.NOT_STARTS_WITH:
            return not left.startswith(right)
        if operator == Op.ENDS_WITH:
            return left.endswith(right)
        if operator == Op.NOT_ENDS_WITH:
            return not left.endswith(right)
        if operator == Op.MATCHES_REGEX:
            return _regex_search(right, left) is True
        if operator == Op.NOT_MATCHES_REGEX:
            # An unusable pattern matches nothing
            return _regex_search(right, left) is not True

    if data_type in (ConditionDataType.NUMBER, ConditionDataType.INTEGER):
        if value1 is None or value2 is None:
            return False

        if operator == Op.EQUALS:
            return value1 == value2
        if operator == Op.NOT_EQUALS:
            return value1 != value2
        if operator == Op.GREATER_THAN:
            return value1 > value2
        if operator == Op.LESS_THAN:
            return value1 < value2
        if operator == Op.GREATER_THAN_OR_EQUALS:
            return value1 >= value2
        if operator == Op.LESS_THAN_OR_EQUALS:
            return value1 <= value2

    if data_type == ConditionDataType.BOOLEAN:
        if operator == Op.IS_TRUE:
            return value1 is True
        if operator == Op.IS_FALSE:
            return value1 is False
        if operator == Op.EQUALS:
            return bool(value1) == bool(value2)
        if operator == Op.NOT_EQUALS:
            return bool(value1) != bool(value2)

    return False


# =============================================================================
# Evaluation
# =============================================================================


@dataclass
class IfEvaluation:
    """Outcome of evaluating an If node."""

    evaluable: bool
    result: Optional[bool] = None
    condition_results: Dict[str, bool] = field(default_factory=dict)
    skipped_condition_ids: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def branch(self) -> Optional[BranchHandle]:
        if self.result is None:
            return None
        return BranchHandle.TRUE if self.result else BranchHandle.FALSE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evaluable": self.evaluable,
            "result": self.result,
            "branch": self.branch.value if self.branch else None,
            "conditionResults": self.condition_results,
            "skippedConditionIds": self.skipped_condition_ids,
            "reason": self.reason,
        }


class ConditionEvaluator:
    """
    Evaluates conditions against resolved operands.

    Args:
        resolver: Interpolates operand placeholders. Defaults to identity.
    """

    def __init__(self, resolver: Optional[Resolver] = None):
        self.resolver: Resolver = resolver or identity_resolver

    def evaluate(self, condition: Condition) -> bool:
        """Evaluate one complete condition."""
        if condition.data_type is None or condition.operator is None:
            raise MalformedConditionError(condition.id, "data type and operator are required")
        if not is_operator_legal(condition.data_type, condition.operator):
            raise MalformedConditionError(
                condition.id,
                f"operator {condition.operator.value} is not valid for "
                f"{condition.data_type.value}",
            )

        value1 = coerce_value(self.resolver(condition.value1), condition.data_type)
        value2 = None
        if not is_unary(condition.operator):
            value2 = coerce_value(self.resolver(condition.value2), condition.data_type)

        return apply_operator(condition.data_type, condition.operator, value1, value2)

    def evaluate_if_node(self, if_data: IfNodeData) -> IfEvaluation:
        """
        Evaluate every valid condition and combine with the node's logic operator.

        A node without valid conditions is reported as not evaluable rather
        than defaulting to either branch.
        """
        valid = [c for c in if_data.conditions if is_condition_valid(c)]
        skipped = [c.id for c in if_data.conditions if not is_condition_valid(c)]

        if not valid:
            return IfEvaluation(
                evaluable=False,
                skipped_condition_ids=skipped,
                reason="If node has no complete conditions to evaluate",
            )

        results = {c.id: self.evaluate(c) for c in valid}

        if if_data.logic_operator == LogicOperator.AND:
            outcome = all(results.values())
        else:
            outcome = any(results.values())

        return IfEvaluation(
            evaluable=True,
            result=outcome,
            condition_results=results,
            skipped_condition_ids=skipped,
        )
