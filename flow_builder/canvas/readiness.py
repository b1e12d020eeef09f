"""Readiness state machine for flows."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from ..config import ReadyState
from ..models import ValidationResult

logger = logging.getLogger(__name__)


class ReadinessEvent(str, Enum):
    """Events that move a flow between readiness states."""

    STRUCTURAL_EDIT = "structural_edit"
    HARD_ERRORS = "hard_errors"  # Validation found error-severity issues
    BLOCKING_ISSUES = "blocking_issues"  # Warnings only
    CLEAN = "clean"  # Nothing blocks, promotion not requested
    PROMOTE = "promote"  # Nothing blocks, promotion requested


@dataclass
class ReadinessTransition:
    """A recorded state change."""

    from_state: ReadyState
    to_state: ReadyState
    event: ReadinessEvent
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    issue_count: int = 0


class ReadinessStateMachine:
    """
    Tracks whether a flow is Draft, Ready or Error.

    Readiness is advisory: it never blocks a save. An edit never promotes
    a flow by itself; only a validation pass with promotion requested does.
    """

    TRANSITIONS: Dict[ReadyState, Dict[ReadinessEvent, ReadyState]] = {
        ReadyState.DRAFT: {
            ReadinessEvent.STRUCTURAL_EDIT: ReadyState.DRAFT,
            ReadinessEvent.HARD_ERRORS: ReadyState.ERROR,
            ReadinessEvent.BLOCKING_ISSUES: ReadyState.DRAFT,
            ReadinessEvent.CLEAN: ReadyState.DRAFT,
            ReadinessEvent.PROMOTE: ReadyState.READY,
        },
        ReadyState.READY: {
            ReadinessEvent.STRUCTURAL_EDIT: ReadyState.DRAFT,
            ReadinessEvent.HARD_ERRORS: ReadyState.ERROR,
            ReadinessEvent.BLOCKING_ISSUES: ReadyState.DRAFT,
            ReadinessEvent.CLEAN: ReadyState.READY,
            ReadinessEvent.PROMOTE: ReadyState.READY,
        },
        ReadyState.ERROR: {
            ReadinessEvent.STRUCTURAL_EDIT: ReadyState.ERROR,
            ReadinessEvent.HARD_ERRORS: ReadyState.ERROR,
            ReadinessEvent.BLOCKING_ISSUES: ReadyState.DRAFT,
            ReadinessEvent.CLEAN: ReadyState.DRAFT,
            ReadinessEvent.PROMOTE: ReadyState.READY,
        },
    }

    def __init__(self, state: ReadyState = ReadyState.DRAFT):
        self.state = state
        self.history: List[ReadinessTransition] = []

    def on_structural_edit(self) -> ReadyState:
        """A node or edge was added, removed or rewired."""
        return self._fire(ReadinessEvent.STRUCTURAL_EDIT)

    def apply_validation(self, result: ValidationResult, promote: bool = False) -> ReadyState:
        """
        Fold a validation pass into the state.

        Args:
            result: Validation outcome
            promote: Whether a clean pass may move the flow to Ready

        Returns:
            The new state
        """
        if result.has_hard_errors:
            event = ReadinessEvent.HARD_ERRORS
        elif result.warnings:
            event = ReadinessEvent.BLOCKING_ISSUES
        elif promote:
            event = ReadinessEvent.PROMOTE
        else:
            event = ReadinessEvent.CLEAN

        return self._fire(event, issue_count=len(result.errors) + len(result.warnings))

    def _fire(self, event: ReadinessEvent, issue_count: int = 0) -> ReadyState:
        current = self.state
        target = self.TRANSITIONS[current][event]

        if target != current:
            logger.info(f"Readiness {current.value} -> {target.value} on {event.value}")
            self.history.append(
                ReadinessTransition(
                    from_state=current,
                    to_state=target,
                    event=event,
                    issue_count=issue_count,
                )
            )
            self.state = target

        return self.state

    @property
    def last_transition(self) -> Optional[ReadinessTransition]:
        return self.history[-1] if self.history else None
