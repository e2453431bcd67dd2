"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    CyclicGraphError,
    NoStartNodeError,
    UnknownNodeTypeError,
    NodeExecutionError,
    HandlerRegistryError,
    StateTransitionError,
    PersistenceError,
    SinkError,
    ExecutionEngineError,
    WorkflowNotFoundError,
    WorkflowNotActiveError,
    ConfigurationError,
    ExpressionError,
)
from .logging import setup_logging, get_logger
from .graph import WorkflowGraph
from .handler_registry import NodeHandlerRegistry
from .context import ExecutionContext
from .collaborators import RecordStore, EventSink, NullEventSink, LoggingEventSink, CompositeEventSink
from .orchestrator import Orchestrator

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "CyclicGraphError",
    "NoStartNodeError",
    "UnknownNodeTypeError",
    "NodeExecutionError",
    "HandlerRegistryError",
    "StateTransitionError",
    "PersistenceError",
    "SinkError",
    "ExecutionEngineError",
    "WorkflowNotFoundError",
    "WorkflowNotActiveError",
    "ConfigurationError",
    "ExpressionError",
    "setup_logging",
    "get_logger",
    "WorkflowGraph",
    "NodeHandlerRegistry",
    "ExecutionContext",
    "RecordStore",
    "EventSink",
    "NullEventSink",
    "LoggingEventSink",
    "CompositeEventSink",
    "Orchestrator",
]
