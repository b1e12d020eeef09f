"""
Operand resolution.

Condition operands may embed ``{{variable}}`` placeholders. Resolving them is
the caller's concern; the evaluator only accepts a ``Resolver`` callable.
"""

import re
from typing import Any, Callable, Dict, List, Mapping, Optional

Resolver = Callable[[str], str]

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")


def identity_resolver(text: str) -> str:
    return text


class VariableResolver:
    """
    Substitutes ``{{name}}`` and ``{{name.path}}`` from a variables mapping.

    Unknown placeholders are left untouched.
    """

    def __init__(self, variables: Optional[Mapping[str, Any]] = None):
        self.variables: Dict[str, Any] = dict(variables or {})

    def __call__(self, text: str) -> str:
        if not text:
            return text

        def replacer(match: "re.Match[str]") -> str:
            value = self._lookup(match.group(1).split("."))
            if value is None:
                return match.group(0)
            return str(value)

        return _PLACEHOLDER.sub(replacer, text)

    def _lookup(self, path: List[str]) -> Any:
        value: Any = self.variables
        for key in path:
            if isinstance(value, Mapping) and key in value:
                value = value[key]
            else:
                return None
        return value
