"""
Exceptions for Flow Builder Core.

Pure computation (traversal, evaluation, rewriting) reports expected
conditions through result objects. Exceptions are reserved for malformed
input, missing entities and persistence failures.
"""

from typing import Any, Dict, List, Optional


class FlowBuilderError(Exception):
    """Base class for all flow builder errors."""

    pass


# =============================================================================
# Lookup
# =============================================================================


class FlowNotFoundError(FlowBuilderError):
    """Raised when a flow id does not resolve."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")


class NodeNotFoundError(FlowBuilderError):
    """Raised when a node id is not part of the flow."""

    def __init__(self, flow_id: str, node_id: str):
        self.flow_id = flow_id
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found in flow {flow_id}")


# =============================================================================
# Malformed input
# =============================================================================


class MalformedNodeError(FlowBuilderError, ValueError):
    """Raised when node data cannot be parsed for its node type."""

    def __init__(self, node_id: Optional[str], message: str):
        self.node_id = node_id
        super().__init__(f"Malformed node {node_id}: {message}")


class MalformedConditionError(FlowBuilderError, ValueError):
    """Raised when a condition combines an operator with an incompatible data type."""

    def __init__(self, condition_id: str, message: str):
        self.condition_id = condition_id
        super().__init__(f"Malformed condition {condition_id}: {message}")


class InvalidAgentNameError(FlowBuilderError, ValueError):
    """Raised when an agent name cannot be used as a reference token."""

    pass


# =============================================================================
# Persistence
# =============================================================================


class PersistenceError(FlowBuilderError):
    """Gateway failure with the entity it concerned."""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message)


class PartialRewriteError(PersistenceError):
    """
    A rename save sequence stopped partway.

    Nothing is rolled back; ``summary`` states what was committed.
    """

    def __init__(
        self,
        summary: str,
        succeeded: Dict[str, List[str]],
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.summary = summary
        self.succeeded = succeeded
        self.cause = cause
        super().__init__(summary, entity_type=entity_type, entity_id=entity_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "succeeded": self.succeeded,
            "failed_entity_type": self.entity_type,
            "failed_entity_id": self.entity_id,
            "cause": str(self.cause) if self.cause else None,
        }


__all__ = [
    "FlowBuilderError",
    "FlowNotFoundError",
    "NodeNotFoundError",
    "MalformedNodeError",
    "MalformedConditionError",
    "InvalidAgentNameError",
    "PersistenceError",
    "PartialRewriteError",
]
