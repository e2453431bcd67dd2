"""Tests for WorkflowGraph."""

import pytest

from nodeflow.core.exceptions import GraphValidationError
from nodeflow.core.graph import WorkflowGraph, is_trigger_node
from nodeflow.models.core import Connection, Node, Workflow

from conftest import make_graph


class TestGraphConstruction:
    """Building graphs from nodes and connections."""

    def test_preserves_declared_node_order(self):
        graph = make_graph([("c", "step"), ("a", "step"), ("b", "step")])

        assert [node.id for node in graph.nodes] == ["c", "a", "b"]
        assert len(graph) == 3
        assert "a" in graph
        assert "z" not in graph

    def test_duplicate_node_ids_rejected(self):
        """Duplicate IDs are reported as validation errors."""
        nodes = [Node(id="a", type="step"), Node(id="a", type="step")]

        with pytest.raises(GraphValidationError) as exc_info:
            WorkflowGraph(nodes, [], workflow_id="wf")

        assert "Duplicate node ID: a" in exc_info.value.validation_errors
        assert exc_info.value.context["workflow_id"] == "wf"

    def test_editor_ids_with_spaces_and_slashes(self):
        nodes = [Node(id="Order received", type="webhook-trigger"), Node(id="crm/update", type="step")]
        connections = [Connection(id="c 1", source="Order received", target=" crm/update ")]

        graph = WorkflowGraph(nodes, connections, workflow_id="wf")

        assert [node.id for node in graph.downstream_of("Order received")] == ["crm/update"]

    @pytest.mark.parametrize("blank", ["", "   "])
    def test_blank_node_id_rejected(self, blank):
        with pytest.raises(ValueError):
            Node(id=blank, type="step")

    def test_dangling_connection_rejected(self):
        """Connections must reference existing nodes on both ends."""
        nodes = [Node(id="a", type="step")]
        connections = [
            Connection(id="c1", source="a", target="missing"),
            Connection(id="c2", source="ghost", target="a"),
        ]

        with pytest.raises(GraphValidationError) as exc_info:
            WorkflowGraph(nodes, connections)

        errors = exc_info.value.validation_errors
        assert len(errors) == 2
        assert any("missing" in error for error in errors)
        assert any("ghost" in error for error in errors)

    def test_from_workflow(self):
        workflow = Workflow(
            id="wf-1",
            name="Demo",
            nodes=[Node(id="t", type="webhook-trigger"), Node(id="s", type="set")],
            connections=[Connection(id="c", source="t", target="s")],
        )

        graph = WorkflowGraph.from_workflow(workflow)

        assert graph.workflow_id == "wf-1"
        assert [node.id for node in graph.downstream_of("t")] == ["s"]

    def test_get_node_unknown_raises_key_error(self):
        graph = make_graph([("a", "step")])

        assert graph.get_node("a").type == "step"
        with pytest.raises(KeyError):
            graph.get_node("b")


class TestEntryNodes:
    """Trigger classification."""

    def test_default_rule_matches_trigger_substring(self):
        assert is_trigger_node(Node(id="a", type="webhook-trigger"))
        assert is_trigger_node(Node(id="b", type="trigger"))
        assert not is_trigger_node(Node(id="c", type="http-request"))

    def test_entry_nodes_in_declared_order(self):
        graph = make_graph([
            ("s1", "step"),
            ("t2", "schedule-trigger"),
            ("t1", "webhook-trigger"),
        ])

        assert [node.id for node in graph.entry_nodes()] == ["t2", "t1"]

    def test_no_entry_nodes(self):
        graph = make_graph([("a", "step")])

        assert graph.entry_nodes() == []

    def test_custom_classifier(self):
        """An injected classifier replaces the type-tag rule."""
        nodes = [Node(id="start", type="step"), Node(id="t", type="webhook-trigger")]

        graph = WorkflowGraph(nodes, [], trigger_classifier=lambda node: node.id == "start")

        assert [node.id for node in graph.entry_nodes()] == ["start"]


class TestAdjacency:
    """Downstream and upstream lookups."""

    def test_downstream_in_connection_order(self):
        graph = make_graph(
            [("a", "step"), ("b", "step"), ("c", "step")],
            [("a", "c"), ("a", "b")]
        )

        assert [node.id for node in graph.downstream_of("a")] == ["c", "b"]
        assert graph.downstream_of("b") == []

    def test_parallel_connections_are_kept(self):
        """Two connections between the same pair yield the target twice."""
        graph = make_graph([("a", "step"), ("b", "step")], [("a", "b"), ("a", "b")])

        assert [node.id for node in graph.downstream_of("a")] == ["b", "b"]

    def test_upstream(self):
        graph = make_graph(
            [("a", "step"), ("b", "step"), ("d", "step")],
            [("a", "d"), ("b", "d")]
        )

        assert [node.id for node in graph.upstream_of("d")] == ["a", "b"]
        assert graph.upstream_of("a") == []


class TestCycleDetection:
    """has_cycle on various shapes."""

    def test_acyclic_diamond(self):
        graph = make_graph(
            [("a", "step"), ("b", "step"), ("c", "step"), ("d", "step")],
            [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]
        )

        assert graph.has_cycle() is False

    def test_simple_cycle(self):
        graph = make_graph(
            [("a", "step"), ("b", "step"), ("c", "step")],
            [("a", "b"), ("b", "c"), ("c", "a")]
        )

        assert graph.has_cycle() is True

    def test_self_loop(self):
        graph = make_graph([("a", "step")], [("a", "a")])

        assert graph.has_cycle() is True
