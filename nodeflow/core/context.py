"""Mutable state owned by a single execution traversal."""

from typing import Any, Dict, List, Optional

from ..models.core import ExecutionLog, ExecutionStatus, NodeResult
from .exceptions import StateTransitionError


_ALLOWED_TRANSITIONS = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING},
    ExecutionStatus.RUNNING: {ExecutionStatus.SUCCESS, ExecutionStatus.ERROR},
    ExecutionStatus.SUCCESS: set(),
    ExecutionStatus.ERROR: set(),
}


class ExecutionContext:
    """Per-execution results, log buffer and status.

    A context belongs to exactly one traversal and is never shared between
    threads or tasks, so it carries no locking.
    """

    def __init__(self, execution_id: str, workflow_id: Optional[str] = None, input_data: Any = None):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.input = input_data
        self.status = ExecutionStatus.PENDING
        self.error: Optional[str] = None
        self.invocations = 0
        self._results: Dict[str, NodeResult] = {}
        self._logs: List[ExecutionLog] = []

    def transition(self, status: ExecutionStatus) -> None:
        """Move the execution to ``status``.

        Raises:
            StateTransitionError: If the move is not PENDING -> RUNNING or
                RUNNING -> SUCCESS/ERROR
        """
        status = ExecutionStatus(status)
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise StateTransitionError(
                f"Illegal execution transition {self.status.value} -> {status.value}",
                execution_id=self.execution_id,
                current=self.status.value,
                requested=status.value
            )
        self.status = status

    def record_result(self, result: NodeResult) -> None:
        """Store a node result; a re-invoked node moves to the end of the order."""
        self._results.pop(result.node_id, None)
        self._results[result.node_id] = result

    def record_log(self, log: ExecutionLog) -> None:
        self._logs.append(log)

    def count_invocation(self) -> int:
        self.invocations += 1
        return self.invocations

    @property
    def results(self) -> Dict[str, NodeResult]:
        """Node results keyed by node ID, in execution order."""
        return dict(self._results)

    @property
    def logs(self) -> List[ExecutionLog]:
        """Log records written during this execution, oldest first."""
        return list(self._logs)

    def result_outputs(self) -> Dict[str, Dict[str, Any]]:
        """JSON-ready ``{node_id: result}`` mapping for the success event."""
        return {node_id: result.model_dump(mode="json") for node_id, result in self._results.items()}
