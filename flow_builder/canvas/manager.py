"""
Flow Manager.

Applies edits to flows through a single update contract, keeps validation
and readiness current, and commits agent reference rewrites.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from weakref import WeakValueDictionary

from ..conditions import ConditionEvaluator, IfEvaluation, VariableResolver, apply_draft_conditions
from ..config import LogicOperator, NodeType, Settings, get_settings
from ..exceptions import (
    FlowBuilderError,
    FlowNotFoundError,
    MalformedNodeError,
    NodeNotFoundError,
    PartialRewriteError,
    PersistenceError,
)
from ..gateways import AgentGateway, FlowGateway, LoggingNotificationSink, NotificationSink
from ..models import (
    Agent,
    Condition,
    DataStoreField,
    DataStoreSchema,
    Edge,
    Flow,
    Node,
    ValidationResult,
)
from ..references import ReferenceLocation, ReferenceRewriter, RewriteResult
from .readiness import ReadinessStateMachine
from .traversal import TraversalEngine, TraversalResult, structure_key
from .validator import FlowValidator

logger = logging.getLogger(__name__)

FlowMutation = Callable[[Flow], None]


def edit_key(flow: Flow) -> Tuple[Any, List[Dict[str, Any]]]:
    """
    Everything an edit can change that affects readiness.

    The graph structure plus every node's configuration (conditions, logic
    operator, data store fields, agent binding). Node positions, the flow
    name and the response template are not part of it.
    """
    return (
        structure_key(flow.nodes, flow.edges),
        [n.data.to_dict() if n.data is not None else {} for n in flow.nodes],
    )


@dataclass
class FlowEditingContext:
    """Everything the manager depends on, passed in explicitly."""

    flow_gateway: FlowGateway
    agent_gateway: AgentGateway
    notifications: NotificationSink
    traversal_engine: TraversalEngine
    validator: FlowValidator
    rewriter: ReferenceRewriter
    settings: Settings

    @classmethod
    def create(
        cls,
        flow_gateway: FlowGateway,
        agent_gateway: AgentGateway,
        notifications: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
    ) -> "FlowEditingContext":
        """Build a context with default collaborators around the given gateways."""
        settings = settings or get_settings()
        traversal_engine = TraversalEngine(settings.graph.traversal_cache_size)
        return cls(
            flow_gateway=flow_gateway,
            agent_gateway=agent_gateway,
            notifications=notifications or LoggingNotificationSink(),
            traversal_engine=traversal_engine,
            validator=FlowValidator(traversal_engine, settings),
            rewriter=ReferenceRewriter(settings.rewrite.max_name_length),
            settings=settings,
        )


class FlowManager:
    """
    Manages flow edits and agent reference rewrites.

    Features:
    - Single update contract with validation on every save
    - Readiness tracking (edits demote Ready flows to Draft)
    - Node and edge helpers
    - Agent rename propagation

    All writes to one flow are serialized by a per-flow lock.
    """

    def __init__(self, context: FlowEditingContext):
        """Initialize flow manager."""
        self.context = context
        # Entries disappear once no coroutine holds or waits on the lock
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()

    def lock_for(self, flow_id: str) -> asyncio.Lock:
        """The lock guarding writes to ``flow_id``."""
        lock = self._locks.get(flow_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[flow_id] = lock
        return lock

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_flow(self, flow_id: str) -> Flow:
        """Get a flow by ID."""
        flow = await self.context.flow_gateway.load(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        return flow

    async def get_traversal(self, flow_id: str) -> TraversalResult:
        flow = await self.get_flow(flow_id)
        return self.context.traversal_engine.traverse(flow.nodes, flow.edges)

    async def evaluate_node(
        self,
        flow_id: str,
        node_id: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> IfEvaluation:
        """Evaluate an If node's conditions against ``variables``."""
        flow = await self.get_flow(flow_id)
        node = self._require_node(flow, node_id)
        if node.type != NodeType.IF:
            raise MalformedNodeError(node_id, f"cannot evaluate a {node.type.value} node")

        evaluator = ConditionEvaluator(VariableResolver(variables))
        return evaluator.evaluate_if_node(node.if_data)

    async def find_agent_references(self, flow_id: str, name: str) -> List[ReferenceLocation]:
        """Preview which fields a rename of ``name`` would touch."""
        flow = await self.get_flow(flow_id)
        agents = await self._load_agents(flow)
        return self.context.rewriter.find_references(
            name, list(agents.values()), flow.nodes, flow.response_template
        )

    # =========================================================================
    # Update contract
    # =========================================================================

    async def create_flow(self, name: str, flow_id: Optional[str] = None) -> Flow:
        """
        Create a flow holding a Start and an End node.

        Args:
            name: Flow name
            flow_id: Optional id, generated when omitted

        Returns:
            Created Flow
        """
        flow_id = flow_id or str(uuid.uuid4())
        flow = Flow(
            id=flow_id,
            name=name,
            nodes=[
                Node(id="start", type=NodeType.START, position={"x": 0, "y": 0}),
                Node(id="end", type=NodeType.END, position={"x": 0, "y": 400}),
            ],
            version=0,
        )

        async with self.lock_for(flow_id):
            saved, _ = await self._commit(flow, structural=True)

        logger.info(f"Created flow: {flow_id} ({name})")
        return saved

    async def update(self, flow_id: str, updates: Dict[str, Any]) -> Flow:
        """
        Update a flow.

        Args:
            flow_id: Flow to update
            updates: Any of ``name``, ``nodes``, ``edges``,
                ``data_store_schema``, ``response_template``

        Returns:
            The saved Flow
        """

        def apply(flow: Flow) -> None:
            if "name" in updates:
                flow.name = updates["name"]

            if "nodes" in updates:
                flow.nodes = [self._to_node(n) for n in updates["nodes"]]

            if "edges" in updates:
                flow.edges = [self._to_edge(e) for e in updates["edges"]]

            if "data_store_schema" in updates:
                schema = updates["data_store_schema"]
                if not isinstance(schema, DataStoreSchema):
                    schema = DataStoreSchema.from_dict(schema)
                flow.data_store_schema = schema

            if "response_template" in updates:
                flow.response_template = updates["response_template"] or ""

        return await self._mutate(flow_id, apply)

    async def add_node(self, flow_id: str, node: Union[Node, Dict[str, Any]]) -> Flow:
        new_node = self._to_node(node)

        def apply(flow: Flow) -> None:
            flow.nodes = flow.nodes + [new_node]

        return await self._mutate(flow_id, apply)

    async def remove_node(self, flow_id: str, node_id: str) -> Flow:
        """Remove a node and every edge touching it."""

        def apply(flow: Flow) -> None:
            self._require_node(flow, node_id)
            flow.nodes = [n for n in flow.nodes if n.id != node_id]
            flow.edges = [
                e for e in flow.edges if e.source != node_id and e.target != node_id
            ]

        return await self._mutate(flow_id, apply)

    async def connect(
        self,
        flow_id: str,
        source: str,
        target: str,
        source_handle: Optional[str] = None,
        edge_id: Optional[str] = None,
    ) -> Flow:
        def apply(flow: Flow) -> None:
            self._require_node(flow, source)
            self._require_node(flow, target)
            flow.edges = flow.edges + [
                Edge(
                    id=edge_id or str(uuid.uuid4()),
                    source=source,
                    target=target,
                    source_handle=source_handle,
                )
            ]

        return await self._mutate(flow_id, apply)

    async def disconnect(self, flow_id: str, edge_id: str) -> Flow:
        def apply(flow: Flow) -> None:
            flow.edges = [e for e in flow.edges if e.id != edge_id]

        return await self._mutate(flow_id, apply)

    async def set_logic_operator(
        self, flow_id: str, node_id: str, operator: LogicOperator
    ) -> Flow:
        def apply(flow: Flow) -> None:
            node = self._require_node(flow, node_id)
            node.if_data.logic_operator = LogicOperator(operator)

        return await self._mutate(flow_id, apply)

    async def set_if_conditions(
        self, flow_id: str, node_id: str, drafts: Sequence[Condition]
    ) -> Flow:
        """Replace an If node's draft conditions; the valid list is derived from them."""

        def apply(flow: Flow) -> None:
            node = self._require_node(flow, node_id)
            node.data = apply_draft_conditions(node.if_data, drafts)

        return await self._mutate(flow_id, apply)

    async def set_data_store_fields(
        self, flow_id: str, node_id: str, fields: Sequence[DataStoreField]
    ) -> Flow:
        def apply(flow: Flow) -> None:
            node = self._require_node(flow, node_id)
            node.data_store_data.fields = list(fields)

        return await self._mutate(flow_id, apply)

    async def validate_flow(
        self, flow_id: str, promote: bool = False
    ) -> Tuple[Flow, ValidationResult]:
        """
        Validate a flow and fold the result into its readiness.

        Args:
            flow_id: Flow to validate
            promote: Allow a clean flow to become Ready

        Returns:
            Tuple of (saved flow, validation result)
        """
        async with self.lock_for(flow_id):
            flow = await self.get_flow(flow_id)
            return await self._commit(flow, structural=False, promote=promote)

    # =========================================================================
    # Agent references
    # =========================================================================

    async def update_agent_references(
        self, flow_id: str, old_name: str, new_name: str
    ) -> RewriteResult:
        """
        Rewrite references to a renamed agent and save everything that changed.

        Agents are saved one by one, then the flow's nodes (revalidated, which
        demotes a Ready flow like any other node edit), then its response
        template. A failure stops the sequence without rolling back; the
        notification names exactly what was already saved.
        """
        async with self.lock_for(flow_id):
            flow = await self.get_flow(flow_id)
            agents = await self._load_agents(flow)

            result = self.context.rewriter.rewrite(
                old_name,
                new_name,
                list(agents.values()),
                flow.nodes,
                flow.response_template,
            )

            if result.no_op or not result.has_changes:
                logger.info(f"No references to {old_name!r} in flow {flow_id}")
                return result

            await self._save_rewrite(flow, result, new_name)

            self.context.notifications.success(
                f"Updated {result.total_references_updated} references to "
                f"{new_name} in flow {flow.name or flow.id}"
            )
            return result

    async def _save_rewrite(self, flow: Flow, result: RewriteResult, new_name: str) -> None:
        saved_agent_ids: List[str] = []
        saved_flow_parts: List[str] = []
        entity_type, entity_id = "flow", flow.id

        try:
            for agent in result.updated_agents:
                entity_type, entity_id = "agent", agent.id
                await self.context.agent_gateway.save(agent)
                saved_agent_ids.append(agent.id)

            if result.updated_nodes:
                entity_type, entity_id = "flow", flow.id
                updated = {n.id: n for n in result.updated_nodes}
                flow.nodes = [updated.get(n.id, n) for n in flow.nodes]
                flow, _ = await self._commit(flow, structural=True)
                saved_flow_parts.append("nodes")

            if result.response_template_changed:
                entity_type, entity_id = "flow", flow.id
                flow.response_template = result.updated_response_template or ""
                flow = await self._save_flow(flow)
                saved_flow_parts.append("responseTemplate")

        except Exception as e:
            succeeded = {"agents": saved_agent_ids, "flow": saved_flow_parts}
            summary = self._partial_summary(
                new_name, entity_type, entity_id, saved_agent_ids, saved_flow_parts
            )
            logger.error(f"{summary} Cause: {e}")
            self.context.notifications.error(
                summary,
                {
                    "succeeded": succeeded,
                    "failedEntityType": entity_type,
                    "failedEntityId": entity_id,
                },
            )
            raise PartialRewriteError(
                summary,
                succeeded,
                entity_type=entity_type,
                entity_id=entity_id,
                cause=e,
            ) from e

    @staticmethod
    def _partial_summary(
        new_name: str,
        entity_type: str,
        entity_id: str,
        saved_agent_ids: List[str],
        saved_flow_parts: List[str],
    ) -> str:
        saved = []
        if saved_agent_ids:
            saved.append(f"agents {', '.join(saved_agent_ids)}")
        if saved_flow_parts:
            saved.append(f"flow {', '.join(saved_flow_parts)}")

        return (
            f"Updating references to {new_name} failed while saving "
            f"{entity_type} {entity_id}. "
            f"Already saved: {'; '.join(saved) if saved else 'nothing'}. "
            f"Saved changes were not rolled back."
        )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _mutate(self, flow_id: str, mutation: FlowMutation) -> Flow:
        async with self.lock_for(flow_id):
            flow = await self.get_flow(flow_id)
            before = edit_key(flow)

            mutation(flow)

            structural = edit_key(flow) != before
            saved, _ = await self._commit(flow, structural=structural)
            return saved

    async def _commit(
        self, flow: Flow, structural: bool, promote: bool = False
    ) -> Tuple[Flow, ValidationResult]:
        machine = ReadinessStateMachine(flow.ready_state)
        if structural:
            machine.on_structural_edit()

        agents = await self._load_agents(flow)
        result = self.context.validator.validate(flow, agents)
        machine.apply_validation(result, promote=promote)

        flow.ready_state = machine.state
        flow.validation_issues = result.issues

        saved = await self._save_flow(flow)
        return saved, result

    async def _save_flow(self, flow: Flow) -> Flow:
        flow.version += 1
        flow.updated_at = datetime.now(timezone.utc)

        try:
            saved = await self.context.flow_gateway.save(flow)
        except FlowBuilderError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to save flow {flow.id}: {e}", entity_type="flow", entity_id=flow.id
            ) from e

        logger.info(f"Saved flow: {flow.id} (v{flow.version}, {flow.ready_state.value})")
        return saved

    async def _load_agents(self, flow: Flow) -> Dict[str, Agent]:
        """Agents referenced by the flow. Missing ones are left out."""
        agents: Dict[str, Agent] = {}
        for agent_id in flow.agent_ids:
            agent = await self.context.agent_gateway.get(agent_id)
            if agent is None:
                logger.warning(f"Flow {flow.id} references unknown agent {agent_id}")
                continue
            agents[agent_id] = agent
        return agents

    @staticmethod
    def _require_node(flow: Flow, node_id: str) -> Node:
        node = flow.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(flow.id, node_id)
        return node

    @staticmethod
    def _to_node(data: Union[Node, Dict[str, Any]]) -> Node:
        return data if isinstance(data, Node) else Node.from_dict(data)

    @staticmethod
    def _to_edge(data: Union[Edge, Dict[str, Any]]) -> Edge:
        return data if isinstance(data, Edge) else Edge.from_dict(data)
