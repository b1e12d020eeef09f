"""
Gateways.

Persistence and notification collaborators consumed by the flow manager,
with in-memory and logging implementations.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .models import Agent, Flow

logger = logging.getLogger(__name__)


# =============================================================================
# Interfaces
# =============================================================================


class FlowGateway(ABC):
    """Loads and saves flows."""

    @abstractmethod
    async def load(self, flow_id: str) -> Optional[Flow]:
        """Return the flow or None when it does not exist."""
        pass

    @abstractmethod
    async def save(self, flow: Flow) -> Flow:
        """Persist the flow and return what was stored."""
        pass


class AgentGateway(ABC):
    """Looks up and saves agents."""

    @abstractmethod
    async def get(self, agent_id: str) -> Optional[Agent]:
        pass

    @abstractmethod
    async def save(self, agent: Agent) -> Agent:
        pass


class NotificationSink(ABC):
    """User-facing success and error messages."""

    @abstractmethod
    def success(self, message: str) -> None:
        pass

    @abstractmethod
    def error(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        pass


# =============================================================================
# In-memory implementations
# =============================================================================


class InMemoryFlowGateway(FlowGateway):
    """Flow store backed by a dict. Loads and saves copy, so callers never share state."""

    def __init__(self, flows: Optional[Iterable[Flow]] = None):
        self._flows: Dict[str, Flow] = {}
        for flow in flows or []:
            self._flows[flow.id] = copy.deepcopy(flow)

    async def load(self, flow_id: str) -> Optional[Flow]:
        flow = self._flows.get(flow_id)
        return copy.deepcopy(flow) if flow is not None else None

    async def save(self, flow: Flow) -> Flow:
        self._flows[flow.id] = copy.deepcopy(flow)
        logger.debug(f"Saved flow: {flow.id} (v{flow.version})")
        return copy.deepcopy(flow)

    def add(self, flow: Flow) -> None:
        """Seed a flow without going through the async interface."""
        self._flows[flow.id] = copy.deepcopy(flow)


class InMemoryAgentGateway(AgentGateway):
    """Agent store backed by a dict."""

    def __init__(self, agents: Optional[Iterable[Agent]] = None):
        self._agents: Dict[str, Agent] = {}
        for agent in agents or []:
            self._agents[agent.id] = copy.deepcopy(agent)

    async def get(self, agent_id: str) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        return copy.deepcopy(agent) if agent is not None else None

    async def save(self, agent: Agent) -> Agent:
        self._agents[agent.id] = copy.deepcopy(agent)
        logger.debug(f"Saved agent: {agent.id}")
        return copy.deepcopy(agent)

    def add(self, agent: Agent) -> None:
        self._agents[agent.id] = copy.deepcopy(agent)


@dataclass
class Notification:
    """A message delivered to the sink."""

    level: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log and keeps the most recent ones."""

    def __init__(self, max_history: int = 100):
        self.max_history = max_history
        self.notifications: List[Notification] = []

    def success(self, message: str) -> None:
        logger.info(message)
        self._record(Notification(level="success", message=message))

    def error(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        logger.error(f"{message} {details}" if details else message)
        self._record(Notification(level="error", message=message, details=details or {}))

    def _record(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if len(self.notifications) > self.max_history:
            self.notifications = self.notifications[-self.max_history:]


__all__ = [
    "FlowGateway",
    "AgentGateway",
    "NotificationSink",
    "InMemoryFlowGateway",
    "InMemoryAgentGateway",
    "Notification",
    "LoggingNotificationSink",
]
