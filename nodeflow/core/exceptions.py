"""Exception hierarchy for the nodeflow engine.

Every engine error carries a severity and a category. Each subclass sets its
own defaults, which a caller may override. ``context`` identifies what
failed (workflow, execution, node) and ``details`` holds data about the
failure itself.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """How badly an error affects the engine."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Which part of the engine an error comes from."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    default_severity = ErrorSeverity.MEDIUM
    default_category = ErrorCategory.EXECUTION

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or type(self).__name__
        self.severity = severity or self.default_severity
        self.category = category or self.default_category
        self.details = dict(details or {})
        self.context = dict(context or {})
        self.timestamp = datetime.utcnow()

    def add_context(self, **fields):
        """Attach identifying fields; ``None`` values are skipped. Returns self."""
        self.context.update({key: value for key, value in fields.items() if value is not None})
        return self

    def add_details(self, **fields):
        """Attach data describing the failure. Returns self."""
        self.details.update(fields)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used in logs and event payloads."""
        return {
            "error_code": self.error_code,
            "exception_type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class GraphValidationError(WorkflowEngineError):
    """Raised when a workflow graph is structurally invalid."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.validation_errors = list(validation_errors or [])
        self.add_context(workflow_id=workflow_id)
        if self.validation_errors:
            self.add_details(validation_errors=self.validation_errors)


class CyclicGraphError(GraphValidationError):
    """Raised when traversal would re-enter a node already on its invocation path."""

    def __init__(self, message: str, path: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.path = list(path or [])
        if self.path:
            self.add_details(path=self.path)


class NoStartNodeError(WorkflowEngineError):
    """Raised when a workflow has no trigger-classified entry nodes."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str = "No starting nodes found in workflow", **kwargs):
        super().__init__(message, **kwargs)


class UnknownNodeTypeError(WorkflowEngineError):
    """Raised when no handler is registered for a node type tag."""

    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.CONFIGURATION

    def __init__(self, type_tag: str, **kwargs):
        super().__init__(f"Unknown node type: {type_tag}", **kwargs)
        self.type_tag = type_tag
        self.add_context(type_tag=type_tag)


class NodeExecutionError(WorkflowEngineError):
    """Raised when a node handler returns or raises a failure."""

    default_severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.node_id = node_id
        self.add_context(node_id=node_id, execution_id=execution_id)


class HandlerRegistryError(WorkflowEngineError):
    """Raised when a handler cannot be registered."""

    default_category = ErrorCategory.CONFIGURATION

    def __init__(
        self,
        message: str,
        type_tag: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.add_context(type_tag=type_tag, operation=operation)


class StateTransitionError(WorkflowEngineError):
    """Raised when an execution is moved through an illegal status transition."""

    default_severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        current: Optional[str] = None,
        requested: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.add_context(execution_id=execution_id)
        if current or requested:
            self.add_details(current=current, requested=requested)


class PersistenceError(WorkflowEngineError):
    """Raised when the record store fails to persist or load records."""

    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.STORAGE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.add_context(operation=operation, table=table)


class SinkError(WorkflowEngineError):
    """Raised when an event sink fails to deliver a live update."""

    default_severity = ErrorSeverity.LOW
    default_category = ErrorCategory.NETWORK

    def __init__(self, message: str, event_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(event_type=event_type)


class ExecutionEngineError(WorkflowEngineError):
    """Raised when orchestration or the execution pool fails."""

    default_severity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.add_context(execution_id=execution_id, workflow_id=workflow_id)


class WorkflowNotFoundError(WorkflowEngineError):
    """Raised when a workflow id does not exist."""

    default_severity = ErrorSeverity.LOW
    default_category = ErrorCategory.VALIDATION

    def __init__(self, workflow_id: str, **kwargs):
        super().__init__(f"Workflow '{workflow_id}' not found", **kwargs)
        self.add_context(workflow_id=workflow_id)


class WorkflowNotActiveError(WorkflowEngineError):
    """Raised when a workflow that is not active is asked to run."""

    default_severity = ErrorSeverity.LOW
    default_category = ErrorCategory.VALIDATION

    def __init__(self, workflow_id: str, status: str, **kwargs):
        super().__init__(
            f"Workflow '{workflow_id}' is not active and cannot be executed (status: {status})",
            **kwargs
        )
        self.add_context(workflow_id=workflow_id, status=status)


class ConfigurationError(WorkflowEngineError):
    """Raised for invalid or missing settings."""

    default_severity = ErrorSeverity.HIGH
    default_category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(config_key=config_key)


class ExpressionError(WorkflowEngineError):
    """Raised when a sandboxed expression cannot be parsed or evaluated."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, expression: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.add_context(expression=expression)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Payload shape used for error events and API responses."""
    data = error.to_dict()
    details = dict(data["details"])
    for key in ("severity", "category", "timestamp"):
        details[key] = data[key]
    return {
        "error": data["error_code"],
        "message": data["message"],
        "details": details,
        "context": data["context"],
    }
