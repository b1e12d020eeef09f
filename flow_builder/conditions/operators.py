"""
Operator tables for If-node conditions.

Each data type admits a fixed operator set. Unary operators read only
``value1``.
"""

from typing import Dict, FrozenSet, Tuple

from ..config import ConditionDataType, ConditionOperator

Op = ConditionOperator

_PRESENCE_OPERATORS: Tuple[ConditionOperator, ...] = (
    Op.EXISTS,
    Op.NOT_EXISTS,
    Op.IS_EMPTY,
    Op.IS_NOT_EMPTY,
)

_NUMERIC_OPERATORS: Tuple[ConditionOperator, ...] = _PRESENCE_OPERATORS + (
    Op.EQUALS,
    Op.NOT_EQUALS,
    Op.GREATER_THAN,
    Op.LESS_THAN,
    Op.GREATER_THAN_OR_EQUALS,
    Op.LESS_THAN_OR_EQUALS,
)

OPERATORS_BY_DATA_TYPE: Dict[ConditionDataType, Tuple[ConditionOperator, ...]] = {
    ConditionDataType.STRING: _PRESENCE_OPERATORS + (
        Op.EQUALS,
        Op.NOT_EQUALS,
        Op.CONTAINS,
        Op.NOT_CONTAINS,
        Op.STARTS_WITH,
        Op.NOT_STARTS_WITH,
        Op.ENDS_WITH,
        Op.NOT_ENDS_WITH,
        Op.MATCHES_REGEX,
        Op.NOT_MATCHES_REGEX,
    ),
    ConditionDataType.NUMBER: _NUMERIC_OPERATORS,
    ConditionDataType.INTEGER: _NUMERIC_OPERATORS,
    ConditionDataType.BOOLEAN: _PRESENCE_OPERATORS + (
        Op.IS_TRUE,
        Op.IS_FALSE,
        Op.EQUALS,
        Op.NOT_EQUALS,
    ),
}

UNARY_OPERATORS: FrozenSet[ConditionOperator] = frozenset(
    _PRESENCE_OPERATORS + (Op.IS_TRUE, Op.IS_FALSE)
)

DEFAULT_OPERATORS: Dict[ConditionDataType, ConditionOperator] = {
    ConditionDataType.STRING: Op.EQUALS,
    ConditionDataType.NUMBER: Op.EQUALS,
    ConditionDataType.INTEGER: Op.EQUALS,
    ConditionDataType.BOOLEAN: Op.IS_TRUE,
}


def operators_for(data_type: ConditionDataType) -> Tuple[ConditionOperator, ...]:
    """Legal operators for ``data_type``."""
    return OPERATORS_BY_DATA_TYPE[data_type]


def is_operator_legal(data_type: ConditionDataType, operator: ConditionOperator) -> bool:
    return operator in OPERATORS_BY_DATA_TYPE[data_type]


def is_unary(operator: ConditionOperator) -> bool:
    return operator in UNARY_OPERATORS
