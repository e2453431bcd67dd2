"""Immutable structural view over a workflow's nodes and connections."""

from typing import Callable, Dict, List, Optional, Sequence

from ..models.core import Connection, Node, Workflow
from .exceptions import GraphValidationError
from .logging import get_logger

logger = get_logger(__name__)


TriggerClassifier = Callable[[Node], bool]


def is_trigger_node(node: Node) -> bool:
    """Default entry rule: the node's type tag mentions "trigger"."""
    return "trigger" in node.type


class WorkflowGraph:
    """Read-only adjacency view used by the orchestrator.

    Nodes keep their declared order and outgoing connections keep theirs, so
    traversal order is fully determined by the workflow definition.
    """

    def __init__(
        self,
        nodes: Sequence[Node],
        connections: Sequence[Connection],
        workflow_id: Optional[str] = None,
        trigger_classifier: Optional[TriggerClassifier] = None,
    ):
        """Build the graph and validate its structure.

        Args:
            nodes: Nodes in declared order
            connections: Connections in declared order
            workflow_id: ID of the owning workflow, if any
            trigger_classifier: Predicate deciding which nodes are entry points

        Raises:
            GraphValidationError: If node IDs repeat or a connection references an unknown node
        """
        self.workflow_id = workflow_id
        self._classifier = trigger_classifier or is_trigger_node
        self._nodes: Dict[str, Node] = {}
        self._order: List[str] = []
        self._outgoing: Dict[str, List[str]] = {}
        self._incoming: Dict[str, List[str]] = {}

        errors: List[str] = []
        for node in nodes:
            if node.id in self._nodes:
                errors.append(f"Duplicate node ID: {node.id}")
                continue
            self._nodes[node.id] = node
            self._order.append(node.id)
            self._outgoing[node.id] = []
            self._incoming[node.id] = []

        for connection in connections:
            if connection.source not in self._nodes:
                errors.append(f"Connection '{connection.id}' references non-existent source node: {connection.source}")
                continue
            if connection.target not in self._nodes:
                errors.append(f"Connection '{connection.id}' references non-existent target node: {connection.target}")
                continue
            self._outgoing[connection.source].append(connection.target)
            self._incoming[connection.target].append(connection.source)

        if errors:
            logger.error(f"Invalid workflow graph {workflow_id}: {errors}")
            raise GraphValidationError(
                "Workflow graph is structurally invalid",
                validation_errors=errors,
                workflow_id=workflow_id
            )

    @classmethod
    def from_workflow(
        cls,
        workflow: Workflow,
        trigger_classifier: Optional[TriggerClassifier] = None,
    ) -> "WorkflowGraph":
        """Build a graph from a stored workflow definition."""
        return cls(
            workflow.nodes,
            workflow.connections,
            workflow_id=workflow.id,
            trigger_classifier=trigger_classifier,
        )

    @property
    def nodes(self) -> List[Node]:
        """All nodes in declared order."""
        return [self._nodes[node_id] for node_id in self._order]

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Node:
        """Look up a node by ID.

        Raises:
            KeyError: If the graph has no such node
        """
        return self._nodes[node_id]

    def entry_nodes(self) -> List[Node]:
        """Nodes classified as triggers, in declared order. May be empty."""
        return [self._nodes[node_id] for node_id in self._order if self._classifier(self._nodes[node_id])]

    def downstream_of(self, node_id: str) -> List[Node]:
        """Targets of every connection leaving ``node_id``.

        Targets are returned in declared connection order; a node connected
        twice appears twice.
        """
        return [self._nodes[target] for target in self._outgoing.get(node_id, [])]

    def upstream_of(self, node_id: str) -> List[Node]:
        """Sources of every connection entering ``node_id``."""
        return [self._nodes[source] for source in self._incoming.get(node_id, [])]

    def has_cycle(self) -> bool:
        """Check whether any directed cycle exists in the graph."""
        white, gray, black = 0, 1, 2
        color = {node_id: white for node_id in self._order}

        for root in self._order:
            if color[root] != white:
                continue
            color[root] = gray
            stack = [(root, iter(self._outgoing[root]))]
            while stack:
                node_id, children = stack[-1]
                advanced = False
                for child in children:
                    if color[child] == gray:
                        return True
                    if color[child] == white:
                        color[child] = gray
                        stack.append((child, iter(self._outgoing[child])))
                        advanced = True
                        break
                if not advanced:
                    color[node_id] = black
                    stack.pop()
        return False
