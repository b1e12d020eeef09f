"""
Conditions Module.

Operator tables, editing rules and evaluation for If-node conditions.
"""

from .evaluator import (
    ConditionEvaluator,
    IfEvaluation,
    apply_draft_conditions,
    apply_operator,
    change_data_type,
    change_operator,
    coerce_value,
    is_condition_valid,
    split_conditions,
)
from .operators import (
    DEFAULT_OPERATORS,
    OPERATORS_BY_DATA_TYPE,
    UNARY_OPERATORS,
    is_operator_legal,
    is_unary,
    operators_for,
)
from .resolver import Resolver, VariableResolver, identity_resolver

__all__ = [
    "ConditionEvaluator",
    "IfEvaluation",
    "apply_draft_conditions",
    "apply_operator",
    "change_data_type",
    "change_operator",
    "coerce_value",
    "is_condition_valid",
    "split_conditions",
    "DEFAULT_OPERATORS",
    "OPERATORS_BY_DATA_TYPE",
    "UNARY_OPERATORS",
    "is_operator_legal",
    "is_unary",
    "operators_for",
    "Resolver",
    "VariableResolver",
    "identity_resolver",
]
