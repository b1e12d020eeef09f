"""
Flow Validator.

Validates flow structure, connectivity, and node configurations.
"""

import logging
from collections import Counter
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple

from ..conditions import is_condition_valid
from ..config import (
    BranchHandle,
    IssueCode,
    IssueKind,
    IssueSeverity,
    NodeType,
    Settings,
    get_settings,
)
from ..models import Agent, Flow, ValidationIssue, ValidationResult
from .traversal import TraversalEngine, TraversalResult, build_adjacency

logger = logging.getLogger(__name__)


def _structural(code: IssueCode, reason: str, **kwargs) -> ValidationIssue:
    return ValidationIssue(
        reason=reason,
        code=code,
        kind=IssueKind.STRUCTURAL,
        severity=IssueSeverity.ERROR,
        **kwargs,
    )


class FlowValidator:
    """
    Validates flow structure and configuration.

    Checks:
    - Structural integrity (anchors, duplicate ids, dangling edges)
    - Connectivity from Start and to End
    - If-node branches and conditions
    - Agent and data store configuration
    - Resource limits
    """

    def __init__(
        self,
        traversal_engine: Optional[TraversalEngine] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize validator."""
        self.settings = settings or get_settings()
        self.traversal_engine = traversal_engine or TraversalEngine(
            self.settings.graph.traversal_cache_size
        )

    def validate(
        self,
        flow: Flow,
        agents: Optional[Mapping[str, Agent]] = None,
        traversal: Optional[TraversalResult] = None,
    ) -> ValidationResult:
        """
        Validate a complete flow.

        Args:
            flow: Flow to validate
            agents: Agents referenced by the flow, keyed by id
            traversal: Precomputed traversal, computed when omitted

        Returns:
            ValidationResult with issues found
        """
        if traversal is None:
            traversal = self.traversal_engine.traverse(flow.nodes, flow.edges)

        issues: List[ValidationIssue] = []

        # Structural validation
        issues.extend(self._validate_structure(flow, traversal))
        issues.extend(self._validate_edges(flow))
        issues.extend(self._validate_limits(flow))

        # Connectivity
        issues.extend(self._validate_connectivity(flow, traversal))
        issues.extend(self._validate_if_nodes(flow, traversal))

        # Node configuration
        issues.extend(self._validate_agents(flow, agents or {}))
        issues.extend(self._validate_data_stores(flow))

        if self.settings.validation.report_cycles:
            issues.extend(self._detect_cycles(flow))

        result = ValidationResult(issues=issues)
        logger.debug(
            f"Validated flow {flow.id}: {len(result.errors)} errors, "
            f"{len(result.warnings)} warnings"
        )
        return result

    def _validate_structure(
        self, flow: Flow, traversal: TraversalResult
    ) -> List[ValidationIssue]:
        """Validate anchors and node ids."""
        issues = []

        if traversal.start_node_id is None:
            issues.append(
                _structural(IssueCode.MISSING_START_NODE, "Flow must have a Start node")
            )
        if traversal.end_node_id is None:
            issues.append(
                _structural(IssueCode.MISSING_END_NODE, "Flow must have an End node")
            )

        for node_id in traversal.extra_start_ids:
            issues.append(
                _structural(
                    IssueCode.MULTIPLE_START_NODES,
                    "Flow can only have one Start node",
                    node_id=node_id,
                )
            )
        for node_id in traversal.extra_end_ids:
            issues.append(
                _structural(
                    IssueCode.MULTIPLE_END_NODES,
                    "Flow can only have one End node",
                    node_id=node_id,
                )
            )

        # Check for duplicate node IDs
        counts = Counter(n.id for n in flow.nodes)
        for node_id, count in counts.items():
            if count > 1:
                issues.append(
                    _structural(
                        IssueCode.DUPLICATE_NODE_ID,
                        f"Duplicate node ID: {node_id}",
                        node_id=node_id,
                    )
                )

        return issues

    def _validate_edges(self, flow: Flow) -> List[ValidationIssue]:
        """Report edges whose endpoints do not exist."""
        issues = []
        node_ids = {n.id for n in flow.nodes}

        for edge in flow.edges:
            missing = [
                endpoint
                for endpoint in (edge.source, edge.target)
                if endpoint not in node_ids
            ]
            if missing:
                issues.append(
                    _structural(
                        IssueCode.DANGLING_EDGE,
                        f"Edge references missing node(s): {', '.join(missing)}",
                        edge_id=edge.id,
                    )
                )

        return issues

    def _validate_limits(self, flow: Flow) -> List[ValidationIssue]:
        """Validate resource limits."""
        issues = []
        graph_config = self.settings.graph

        if len(flow.nodes) > graph_config.max_nodes_per_flow:
            issues.append(
                _structural(
                    IssueCode.FLOW_TOO_LARGE,
                    f"Flow exceeds maximum nodes ({len(flow.nodes)} > {graph_config.max_nodes_per_flow})",
                )
            )

        if len(flow.edges) > graph_config.max_edges_per_flow:
            issues.append(
                _structural(
                    IssueCode.FLOW_TOO_LARGE,
                    f"Flow exceeds maximum edges ({len(flow.edges)} > {graph_config.max_edges_per_flow})",
                )
            )

        return issues

    def _validate_connectivity(
        self, flow: Flow, traversal: TraversalResult
    ) -> List[ValidationIssue]:
        """Every node must lie on a path from Start to End."""
        issues: List[ValidationIssue] = []

        # Without both anchors every node would be reported
        if traversal.start_node_id is None or traversal.end_node_id is None:
            return issues

        reported: Set[str] = set()
        for node in flow.nodes:
            if node.id in reported:
                continue
            conn = traversal.get(node.id)
            if conn.fully_connected:
                continue

            if not conn.is_connected_to_start and not conn.is_connected_to_end:
                reason = "Node is not connected to Start or End"
            elif not conn.is_connected_to_start:
                reason = "Node is not reachable from Start"
            else:
                reason = "Node does not lead to End"

            reported.add(node.id)
            issues.append(
                ValidationIssue(
                    reason=reason,
                    code=IssueCode.NODE_NOT_CONNECTED,
                    node_id=node.id,
                )
            )

        return issues

    def _validate_if_nodes(
        self, flow: Flow, traversal: TraversalResult
    ) -> List[ValidationIssue]:
        """If nodes need one true and one false branch, each reaching End."""
        issues = []

        for node in flow.nodes_of_type(NodeType.IF):
            outgoing = [e for e in flow.edges if e.source == node.id]
            handles = [e.source_handle for e in outgoing]

            has_both = (
                len(outgoing) == 2
                and BranchHandle.TRUE.value in handles
                and BranchHandle.FALSE.value in handles
            )
            if not has_both:
                issues.append(
                    ValidationIssue(
                        reason="If node must have exactly one true and one false branch",
                        code=IssueCode.IF_NODE_MISSING_BRANCHES,
                        node_id=node.id,
                    )
                )

            if traversal.end_node_id is not None:
                for edge in outgoing:
                    if not traversal.get(edge.target).is_connected_to_end:
                        branch = edge.source_handle or "unlabeled"
                        issues.append(
                            ValidationIssue(
                                reason=f"The {branch} branch does not reach End",
                                code=IssueCode.IF_NODE_BRANCH_NOT_REACHING_END,
                                node_id=node.id,
                                edge_id=edge.id,
                            )
                        )

            if not any(is_condition_valid(c) for c in node.if_data.conditions):
                issues.append(
                    ValidationIssue(
                        reason="If node has no complete conditions",
                        code=IssueCode.IF_NODE_NO_VALID_CONDITIONS,
                        node_id=node.id,
                    )
                )

        return issues

    def _validate_agents(
        self, flow: Flow, agents: Mapping[str, Agent]
    ) -> List[ValidationIssue]:
        """Agent nodes must resolve to an agent with a model selected."""
        issues = []

        for node in flow.nodes_of_type(NodeType.AGENT):
            agent_id = node.agent_data.agent_id
            agent = agents.get(agent_id)

            if agent is None:
                issues.append(
                    ValidationIssue(
                        reason=f"Agent not found: {agent_id}",
                        code=IssueCode.AGENT_NOT_FOUND,
                        severity=IssueSeverity.ERROR,
                        node_id=node.id,
                    )
                )
                continue

            if self.settings.validation.require_model_binding and not agent.has_model_binding:
                issues.append(
                    ValidationIssue(
                        reason=f"No model selected for agent {agent.name or agent.id}",
                        code=IssueCode.NO_MODEL_SELECTED,
                        severity=IssueSeverity.ERROR,
                        node_id=node.id,
                    )
                )

        return issues

    def _validate_data_stores(self, flow: Flow) -> List[ValidationIssue]:
        """Data store nodes must assign at least one known schema field."""
        issues: List[ValidationIssue] = []
        if not self.settings.validation.check_data_store_fields:
            return issues

        schema_ids = set(flow.data_store_schema.field_ids())

        for node in flow.nodes_of_type(NodeType.DATA_STORE):
            fields = node.data_store_data.fields
            if not fields:
                issues.append(
                    ValidationIssue(
                        reason="Data store node has no fields",
                        code=IssueCode.DATA_STORE_NO_FIELDS,
                        node_id=node.id,
                    )
                )
                continue

            for store_field in fields:
                if store_field.schema_field_id not in schema_ids:
                    issues.append(
                        ValidationIssue(
                            reason=f"Unknown data store field: {store_field.schema_field_id}",
                            code=IssueCode.DATA_STORE_UNKNOWN_FIELD,
                            node_id=node.id,
                        )
                    )

        return issues

    def _detect_cycles(self, flow: Flow) -> List[ValidationIssue]:
        """Report nodes that close a cycle."""
        issues = []
        graph: Dict[str, List[str]] = build_adjacency([n.id for n in flow.nodes], flow.edges)
        visited: Set[str] = set()
        rec_stack: Set[str] = set()
        reported: Set[str] = set()

        # Iterative DFS over (node, remaining successors) pairs.
        for root in graph:
            if root in visited:
                continue

            visited.add(root)
            rec_stack.add(root)
            stack: List[Tuple[str, Iterator[str]]] = [(root, iter(graph[root]))]

            while stack:
                node_id, successors = stack[-1]
                neighbor = next(successors, None)

                if neighbor is None:
                    stack.pop()
                    rec_stack.discard(node_id)
                elif neighbor not in visited:
                    visited.add(neighbor)
                    rec_stack.add(neighbor)
                    stack.append((neighbor, iter(graph.get(neighbor, []))))
                elif neighbor in rec_stack and neighbor not in reported:
                    reported.add(neighbor)
                    issues.append(
                        ValidationIssue(
                            reason="Cycle detected; the flow may loop",
                            code=IssueCode.CYCLE_DETECTED,
                            kind=IssueKind.STRUCTURAL,
                            severity=IssueSeverity.INFO,
                            node_id=neighbor,
                        )
                    )

        return issues
