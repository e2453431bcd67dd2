"""Data models for the workflow engine."""

from .core import (
    WorkflowStatus,
    ExecutionStatus,
    ValidationResult,
    Node,
    Connection,
    Workflow,
    WorkflowSummary,
    Execution,
    LogEntry,
    ExecutionLog,
    NodeResult,
    ExecutionUpdateEvent,
    NodeLogEvent,
)

__all__ = [
    "WorkflowStatus",
    "ExecutionStatus",
    "ValidationResult",
    "Node",
    "Connection",
    "Workflow",
    "WorkflowSummary",
    "Execution",
    "LogEntry",
    "ExecutionLog",
    "NodeResult",
    "ExecutionUpdateEvent",
    "NodeLogEvent",
]
