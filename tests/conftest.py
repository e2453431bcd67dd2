"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from nodeflow.core.graph import WorkflowGraph
from nodeflow.core.handler_registry import NodeHandlerRegistry
from nodeflow.core.orchestrator import Orchestrator
from nodeflow.models.core import Connection, ExecutionStatus, Node, NodeResult
from nodeflow.nodes.triggers import webhook_trigger
from nodeflow.storage.database import create_database_engine, create_tables, drop_tables
from nodeflow.storage.memory import InMemoryRecordStore


class RecordingSink:
    """Event sink that keeps every event it receives."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.updates: List[Dict[str, Any]] = []
        self.logs: List[Dict[str, Any]] = []

    async def on_execution_update(self, execution_id, status, output=None, error=None):
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.updates.append({
            "execution_id": execution_id, "status": status, "output": output, "error": error
        })

    async def on_node_log(self, execution_id, node_id, status, input=None, output=None, error=None):
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.logs.append({
            "execution_id": execution_id, "node_id": node_id, "status": status,
            "input": input, "output": output, "error": error
        })


async def append_visit(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    """Test handler recording the path the payload travelled."""
    data = dict(input_data) if isinstance(input_data, dict) else {}
    data["visited"] = list(data.get("visited", [])) + [node_id]
    return NodeResult(node_id=node_id, status=ExecutionStatus.SUCCESS, output=data)


async def report_failure(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    return NodeResult(
        node_id=node_id,
        status=ExecutionStatus.ERROR,
        error=parameters.get("message", "handler reported failure")
    )


async def raise_failure(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    raise RuntimeError("handler exploded")


async def sleep_handler(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    await asyncio.sleep(parameters.get("seconds", 1.0))
    return NodeResult(node_id=node_id, status=ExecutionStatus.SUCCESS, output=input_data)


def make_graph(
    nodes: List[tuple],
    edges: Optional[List[tuple]] = None,
    workflow_id: str = "wf-test"
) -> WorkflowGraph:
    """Build a graph from ``(id, type)`` or ``(id, type, parameters)`` tuples and ``(source, target)`` pairs."""
    node_models = []
    for entry in nodes:
        node_id, node_type = entry[0], entry[1]
        parameters = entry[2] if len(entry) > 2 else {}
        node_models.append(Node(id=node_id, type=node_type, parameters=parameters))
    connections = [
        Connection(id=f"{source}->{target}-{index}", source=source, target=target)
        for index, (source, target) in enumerate(edges or [])
    ]
    return WorkflowGraph(node_models, connections, workflow_id=workflow_id)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_database_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def memory_store():
    """Fresh in-memory record store."""
    return InMemoryRecordStore()


@pytest.fixture
def recording_sink():
    """Sink capturing every emitted event."""
    return RecordingSink()


@pytest.fixture
def registry():
    """Registry with a trigger and the test handlers."""
    registry = NodeHandlerRegistry()
    registry.register("webhook-trigger", webhook_trigger)
    registry.register("manual-trigger", append_visit)
    registry.register("step", append_visit)
    registry.register("fail", report_failure)
    registry.register("explode", raise_failure)
    registry.register("sleep", sleep_handler)
    return registry


@pytest.fixture
def orchestrator(registry, memory_store, recording_sink):
    """Orchestrator wired to the in-memory store and recording sink."""
    return Orchestrator(registry, memory_store, event_sink=recording_sink)
