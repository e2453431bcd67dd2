"""Tests for the exception hierarchy and logging helpers."""

import json
import logging

from nodeflow.core.exceptions import (
    CyclicGraphError, ErrorCategory, GraphValidationError, NodeExecutionError,
    UnknownNodeTypeError, WorkflowEngineError, create_error_response
)
from nodeflow.core.logging import (
    ExecutionContextFilter, StructuredFormatter, clear_logging_context,
    get_logging_context, set_logging_context
)


class TestExceptions:
    """Error context and serialization."""

    def test_hierarchy(self):
        assert issubclass(CyclicGraphError, GraphValidationError)
        assert issubclass(UnknownNodeTypeError, WorkflowEngineError)

    def test_context_and_details(self):
        error = NodeExecutionError("boom", node_id="n1", execution_id="e1")
        error.add_details(attempt=1)

        data = error.to_dict()

        assert data["error_code"] == "NodeExecutionError"
        assert data["context"] == {"node_id": "n1", "execution_id": "e1"}
        assert data["details"] == {"attempt": 1}
        assert data["category"] == ErrorCategory.EXECUTION.value

    def test_cycle_path_in_details(self):
        error = CyclicGraphError("cycle", path=["a", "b", "a"], workflow_id="wf")

        assert error.details["path"] == ["a", "b", "a"]
        assert error.context["workflow_id"] == "wf"

    def test_error_response(self):
        response = create_error_response(UnknownNodeTypeError("mystery"))

        assert response["error"] == "UnknownNodeTypeError"
        assert response["message"] == "Unknown node type: mystery"
        assert response["context"] == {"type_tag": "mystery"}
        assert response["details"]["category"] == "configuration"


class TestLoggingContext:
    """Execution-scoped logging fields."""

    def test_set_and_restore(self):
        token = set_logging_context(execution_id="e1")
        nested = set_logging_context(node_id="n1")

        assert get_logging_context() == {"execution_id": "e1", "node_id": "n1"}

        clear_logging_context(nested)
        assert get_logging_context() == {"execution_id": "e1"}
        clear_logging_context(token)
        assert get_logging_context() == {}

    def test_structured_output_carries_context(self):
        record = logging.LogRecord("nodeflow.test", logging.INFO, __file__, 1, "hello", None, None)
        token = set_logging_context(execution_id="e1")
        try:
            ExecutionContextFilter().filter(record)
        finally:
            clear_logging_context(token)

        line = json.loads(StructuredFormatter().format(record))

        assert line["message"] == "hello"
        assert line["execution_id"] == "e1"
