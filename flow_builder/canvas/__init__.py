"""
Canvas Module.

Flow traversal, validation, readiness and editing.
"""

from .manager import FlowEditingContext, FlowManager
from .readiness import ReadinessEvent, ReadinessStateMachine, ReadinessTransition
from .traversal import NodeConnectivity, TraversalEngine, TraversalResult
from .validator import FlowValidator

__all__ = [
    "FlowEditingContext",
    "FlowManager",
    "ReadinessEvent",
    "ReadinessStateMachine",
    "ReadinessTransition",
    "NodeConnectivity",
    "TraversalEngine",
    "TraversalResult",
    "FlowValidator",
]
