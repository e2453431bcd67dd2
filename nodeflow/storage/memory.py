"""In-process record store for tests and embedded use."""

import copy
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.exceptions import PersistenceError
from ..models.core import Execution, ExecutionLog, ExecutionStatus, LogEntry


class InMemoryRecordStore:
    """Thread-safe record store keeping executions and logs in dictionaries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._executions: Dict[str, Execution] = {}
        self._logs: Dict[str, List[ExecutionLog]] = {}
        self._log_sequence = 0

    async def create_execution(self, workflow_id: str, input_data: Any) -> Execution:
        execution = Execution(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            status=ExecutionStatus.RUNNING,
            input=copy.deepcopy(input_data),
            started_at=datetime.utcnow()
        )
        with self._lock:
            self._executions[execution.id] = execution
            self._logs[execution.id] = []
        return execution.model_copy()

    async def update_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        completed_at: Optional[datetime] = None,
        error: Optional[str] = None
    ) -> Execution:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                raise PersistenceError(
                    f"Execution '{execution_id}' not found",
                    operation="update_execution",
                    table="executions"
                )
            changes: Dict[str, Any] = {"status": ExecutionStatus(status)}
            if completed_at is not None:
                changes["completed_at"] = completed_at
            if error is not None:
                changes["error"] = error
            execution = execution.model_copy(update=changes)
            self._executions[execution_id] = execution
        return execution.model_copy()

    async def append_log(self, entry: LogEntry) -> ExecutionLog:
        with self._lock:
            if entry.execution_id not in self._executions:
                raise PersistenceError(
                    f"Execution '{entry.execution_id}' not found",
                    operation="append_log",
                    table="execution_logs"
                )
            self._log_sequence += 1
            log = ExecutionLog(
                id=str(self._log_sequence),
                **copy.deepcopy(entry.model_dump())
            )
            self._logs[entry.execution_id].append(log)
        return log.model_copy()

    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        with self._lock:
            execution = self._executions.get(execution_id)
        return execution.model_copy() if execution else None

    async def list_executions(self, workflow_id: str, limit: int = 50) -> List[Execution]:
        with self._lock:
            matching = [e for e in self._executions.values() if e.workflow_id == workflow_id]
        matching.sort(key=lambda e: e.started_at, reverse=True)
        return [e.model_copy() for e in matching[:limit]]

    async def get_logs(self, execution_id: str) -> List[ExecutionLog]:
        with self._lock:
            logs = list(self._logs.get(execution_id, []))
        # stable sort keeps append order for equal timestamps
        return sorted(logs, key=lambda log: log.timestamp)
