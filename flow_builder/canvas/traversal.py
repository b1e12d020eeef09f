"""
Flow Traversal.

Computes, per node, reachability from the Start node and to the End node.
"""

import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..config import NodeType, get_settings
from ..models import Edge, Node

logger = logging.getLogger(__name__)


StructureKey = Tuple[Tuple[Tuple[str, str], ...], Tuple[Tuple[Hashable, ...], ...]]


@dataclass(frozen=True)
class NodeConnectivity:
    """Reachability of a single node."""

    is_connected_to_start: bool = False
    is_connected_to_end: bool = False
    depth: int = -1  # BFS distance from Start, -1 when unreachable

    @property
    def fully_connected(self) -> bool:
        return self.is_connected_to_start and self.is_connected_to_end


@dataclass(frozen=True)
class TraversalResult:
    """
    Connectivity of every node in a flow.

    Results are shared through the traversal cache and are read-only:
    ``connectivity`` is a mapping proxy and the id lists are tuples.
    """

    connectivity: Mapping[str, NodeConnectivity] = field(
        default_factory=lambda: MappingProxyType({})
    )
    start_node_id: Optional[str] = None
    end_node_id: Optional[str] = None
    extra_start_ids: Tuple[str, ...] = ()
    extra_end_ids: Tuple[str, ...] = ()
    agent_sequence: Tuple[str, ...] = ()

    def get(self, node_id: str) -> NodeConnectivity:
        return self.connectivity.get(node_id, NodeConnectivity())

    def is_fully_connected(self, node_id: str) -> bool:
        return self.get(node_id).fully_connected

    @property
    def disconnected_node_ids(self) -> List[str]:
        return [
            node_id
            for node_id, conn in self.connectivity.items()
            if not conn.fully_connected
        ]

    @property
    def has_valid_flow(self) -> bool:
        """Start and End exist and End is reachable from Start."""
        if self.start_node_id is None or self.end_node_id is None:
            return False
        return self.get(self.end_node_id).is_connected_to_start

    def to_dict(self) -> Dict[str, object]:
        return {
            "startNodeId": self.start_node_id,
            "endNodeId": self.end_node_id,
            "hasValidFlow": self.has_valid_flow,
            "agentSequence": list(self.agent_sequence),
            "nodes": {
                node_id: {
                    "isConnectedToStart": conn.is_connected_to_start,
                    "isConnectedToEnd": conn.is_connected_to_end,
                    "depth": conn.depth,
                }
                for node_id, conn in self.connectivity.items()
            },
        }


def structure_key(nodes: Iterable[Node], edges: Iterable[Edge]) -> StructureKey:
    """Structural identity of a graph: what traversal depends on and nothing else."""
    return (
        tuple((n.id, n.type.value) for n in nodes),
        tuple((e.id, e.source, e.target, e.source_handle) for e in edges),
    )


def build_adjacency(
    node_ids: Iterable[str],
    edges: Iterable[Edge],
    reverse: bool = False,
) -> Dict[str, List[str]]:
    """Adjacency list over existing nodes. Edges with a missing endpoint are skipped."""
    graph: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    for edge in edges:
        if edge.source not in graph or edge.target not in graph:
            continue
        if reverse:
            graph[edge.target].append(edge.source)
        else:
            graph[edge.source].append(edge.target)
    return graph


def reachable_from(anchor: str, graph: Dict[str, List[str]]) -> Dict[str, int]:
    """BFS from ``anchor``. Returns node id -> distance."""
    distances: Dict[str, int] = {anchor: 0}
    queue = deque([anchor])

    while queue:
        current = queue.popleft()
        for neighbor in graph.get(current, []):
            if neighbor in distances:
                continue
            distances[neighbor] = distances[current] + 1
            queue.append(neighbor)

    return distances


class TraversalEngine:
    """
    Computes node connectivity and caches it by structural identity.

    Repeated queries against an unchanged graph are served from an LRU
    cache. Moving a node or editing node data leaves the structure key
    unchanged; adding, removing or rewiring anything changes it.
    """

    def __init__(self, cache_size: Optional[int] = None):
        settings = get_settings()
        self.cache_size = cache_size or settings.graph.traversal_cache_size
        self._cache: "OrderedDict[StructureKey, TraversalResult]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def traverse(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> TraversalResult:
        """Return connectivity for ``nodes``/``edges``, computing it at most once per structure."""
        key = structure_key(nodes, edges)

        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            self.hits += 1
            return cached

        self.misses += 1
        result = self._compute(nodes, edges)

        self._cache[key] = result
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

        return result

    def cache_info(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": len(self._cache),
            "max_size": self.cache_size,
        }

    def clear(self) -> None:
        self._cache.clear()
        self.hits = 0
        self.misses = 0

    def _compute(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> TraversalResult:
        start_ids = [n.id for n in nodes if n.type == NodeType.START]
        end_ids = [n.id for n in nodes if n.type == NodeType.END]

        start_node_id = start_ids[0] if start_ids else None
        end_node_id = end_ids[0] if end_ids else None

        if len(start_ids) > 1 or len(end_ids) > 1:
            logger.debug(
                f"Ambiguous anchors: {len(start_ids)} start, {len(end_ids)} end; "
                f"using first of each"
            )

        node_ids: List[str] = []
        seen: Set[str] = set()
        for node in nodes:
            if node.id not in seen:
                seen.add(node.id)
                node_ids.append(node.id)

        forward: Dict[str, int] = {}
        if start_node_id is not None:
            forward = reachable_from(start_node_id, build_adjacency(node_ids, edges))

        backward: Dict[str, int] = {}
        if end_node_id is not None:
            backward = reachable_from(
                end_node_id, build_adjacency(node_ids, edges, reverse=True)
            )

        connectivity = {
            node_id: NodeConnectivity(
                is_connected_to_start=node_id in forward,
                is_connected_to_end=node_id in backward,
                depth=forward.get(node_id, -1),
            )
            for node_id in node_ids
        }

        agent_ids = {n.id for n in nodes if n.type == NodeType.AGENT}
        agent_sequence = sorted(
            (node_id for node_id in forward if node_id in agent_ids),
            key=lambda node_id: (forward[node_id], node_id),
        )

        return TraversalResult(
            connectivity=MappingProxyType(connectivity),
            start_node_id=start_node_id,
            end_node_id=end_node_id,
            extra_start_ids=tuple(start_ids[1:]),
            extra_end_ids=tuple(end_ids[1:]),
            agent_sequence=tuple(agent_sequence),
        )
