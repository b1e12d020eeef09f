"""Tests for flow traversal and its structural cache."""

import dataclasses

import pytest

from flow_builder.canvas import TraversalEngine
from flow_builder.canvas.traversal import structure_key
from flow_builder.config import NodeType
from flow_builder.models import Edge, Node

from conftest import build_flow, make_edge


class TestConnectivity:
    """Tests for reachability from Start and to End."""

    def test_every_node_on_path_is_fully_connected(self, flow, traversal_engine):
        """Test a connected flow marks every node fully connected."""
        result = traversal_engine.traverse(flow.nodes, flow.edges)

        for node in flow.nodes:
            assert result.is_fully_connected(node.id), node.id
        assert result.disconnected_node_ids == []
        assert result.has_valid_flow

    def test_isolated_node_is_connected_to_nothing(self, flow, traversal_engine):
        """Test a node without edges has both flags false."""
        flow.nodes.append(Node(id="orphan", type=NodeType.AGENT))

        result = traversal_engine.traverse(flow.nodes, flow.edges)
        conn = result.get("orphan")

        assert conn.is_connected_to_start is False
        assert conn.is_connected_to_end is False
        assert conn.depth == -1
        assert result.disconnected_node_ids == ["orphan"]

    def test_dead_end_is_reachable_but_not_connected_to_end(self, flow, traversal_engine):
        """Test a node reachable from Start that never reaches End."""
        flow.nodes.append(Node(id="dead-end", type=NodeType.AGENT))
        flow.edges.append(make_edge("agent-1", "dead-end"))

        conn = traversal_engine.traverse(flow.nodes, flow.edges).get("dead-end")

        assert conn.is_connected_to_start is True
        assert conn.is_connected_to_end is False
        assert not conn.fully_connected

    def test_node_leading_to_end_but_unreachable(self, flow, traversal_engine):
        """Test a node that reaches End but cannot be reached from Start."""
        flow.nodes.append(Node(id="side", type=NodeType.AGENT))
        flow.edges.append(make_edge("side", "end"))

        conn = traversal_engine.traverse(flow.nodes, flow.edges).get("side")

        assert conn.is_connected_to_start is False
        assert conn.is_connected_to_end is True

    def test_edgeless_anchors(self, traversal_engine):
        """Test Start and End without edges are only connected to themselves."""
        nodes = [Node(id="start", type=NodeType.START), Node(id="end", type=NodeType.END)]

        result = traversal_engine.traverse(nodes, [])

        assert result.get("start").is_connected_to_start is True
        assert result.get("start").is_connected_to_end is False
        assert result.get("end").is_connected_to_start is False
        assert result.get("end").is_connected_to_end is True
        assert not result.has_valid_flow

    def test_dangling_edge_is_ignored(self, flow, traversal_engine):
        """Test an edge to a missing node does not break traversal."""
        flow.edges.append(make_edge("agent-1", "ghost"))

        result = traversal_engine.traverse(flow.nodes, flow.edges)

        assert "ghost" not in result.connectivity
        assert result.is_fully_connected("agent-1")

    def test_cycle_terminates(self, flow, traversal_engine):
        """Test traversal terminates on cyclic graphs."""
        flow.edges.append(make_edge("store-1", "agent-1"))

        result = traversal_engine.traverse(flow.nodes, flow.edges)

        assert result.is_fully_connected("store-1")

    def test_extra_anchors_are_listed(self, flow, traversal_engine):
        """Test the first Start is canonical and extras are reported."""
        flow.nodes.append(Node(id="start-2", type=NodeType.START))

        result = traversal_engine.traverse(flow.nodes, flow.edges)

        assert result.start_node_id == "start"
        assert result.extra_start_ids == ("start-2",)

    def test_missing_start(self, flow, traversal_engine):
        """Test a flow without Start has nothing connected to Start."""
        nodes = [n for n in flow.nodes if n.type != NodeType.START]

        result = traversal_engine.traverse(nodes, flow.edges)

        assert result.start_node_id is None
        assert not any(c.is_connected_to_start for c in result.connectivity.values())


class TestDepthAndSequence:
    """Tests for depth and agent ordering."""

    def test_depth_is_distance_from_start(self, flow, traversal_engine):
        result = traversal_engine.traverse(flow.nodes, flow.edges)

        assert result.get("start").depth == 0
        assert result.get("agent-1").depth == 1
        assert result.get("if-1").depth == 2
        assert result.get("end").depth == 3

    def test_agent_sequence_orders_by_depth(self, flow, traversal_engine):
        """Test agents reachable from Start are listed nearest first."""
        flow.nodes.append(Node(id="agent-0", type=NodeType.AGENT))
        flow.edges.append(make_edge("store-1", "agent-0"))

        result = traversal_engine.traverse(flow.nodes, flow.edges)

        assert result.agent_sequence == ("agent-1", "agent-0")

    def test_to_dict(self, flow, traversal_engine):
        data = traversal_engine.traverse(flow.nodes, flow.edges).to_dict()

        assert data["startNodeId"] == "start"
        assert data["hasValidFlow"] is True
        assert data["nodes"]["if-1"]["isConnectedToEnd"] is True


class TestTraversalCache:
    """Tests for caching by structural identity."""

    def test_same_structure_is_a_cache_hit(self, traversal_engine):
        """Test repeated queries on an unchanged graph compute once."""
        flow = build_flow()

        first = traversal_engine.traverse(flow.nodes, flow.edges)
        second = traversal_engine.traverse(flow.nodes, flow.edges)

        assert first is second
        assert traversal_engine.cache_info()["hits"] == 1
        assert traversal_engine.cache_info()["misses"] == 1

    def test_moving_a_node_keeps_the_key(self):
        """Test position changes do not change the structure key."""
        flow = build_flow()
        moved = [dataclasses.replace(n, position={"x": 99, "y": 99}) for n in flow.nodes]

        assert structure_key(flow.nodes, flow.edges) == structure_key(moved, flow.edges)

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda f: f.nodes.append(Node(id="new", type=NodeType.AGENT)),
            lambda f: f.edges.pop(),
            lambda f: f.edges.append(make_edge("start", "end")),
            lambda f: f.edges.__setitem__(
                2, Edge(id=f.edges[2].id, source="if-1", target="store-1", source_handle="true")
            ),
        ],
        ids=["add-node", "remove-edge", "add-edge", "rewire-edge"],
    )
    def test_structural_change_is_a_cache_miss(self, traversal_engine, mutate):
        """Test any structural change invalidates the cached result."""
        flow = build_flow()
        traversal_engine.traverse(flow.nodes, flow.edges)

        mutate(flow)
        traversal_engine.traverse(flow.nodes, flow.edges)

        assert traversal_engine.cache_info()["misses"] == 2
        assert traversal_engine.cache_info()["hits"] == 0

    def test_cached_result_matches_fresh_result(self, traversal_engine):
        """Test a cached answer equals a recomputation."""
        flow = build_flow()
        cached = traversal_engine.traverse(flow.nodes, flow.edges)
        cached = traversal_engine.traverse(flow.nodes, flow.edges)

        fresh = TraversalEngine(cache_size=1).traverse(flow.nodes, flow.edges)

        assert dict(cached.connectivity) == dict(fresh.connectivity)
        assert cached.agent_sequence == fresh.agent_sequence

    def test_cache_evicts_least_recently_used(self):
        engine = TraversalEngine(cache_size=1)
        flow = build_flow()
        other = [Node(id="start", type=NodeType.START)]

        engine.traverse(flow.nodes, flow.edges)
        engine.traverse(other, [])
        engine.traverse(flow.nodes, flow.edges)

        assert engine.cache_info()["size"] == 1
        assert engine.cache_info()["misses"] == 3

    def test_clear_resets_counters(self, traversal_engine, flow):
        traversal_engine.traverse(flow.nodes, flow.edges)
        traversal_engine.clear()

        assert traversal_engine.cache_info() == {
            "hits": 0,
            "misses": 0,
            "size": 0,
            "max_size": 8,
        }

    def test_cached_result_is_read_only(self, traversal_engine, flow):
        """Test callers sharing a cached result cannot change it."""
        result = traversal_engine.traverse(flow.nodes, flow.edges)

        with pytest.raises(TypeError):
            result.connectivity["agent-1"] = None
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.agent_sequence = ()

        again = traversal_engine.traverse(flow.nodes, flow.edges)
        assert again.is_fully_connected("agent-1")
