"""Thread pool that runs independent executions side by side."""

import asyncio
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from ..models.core import Execution
from .exceptions import ExecutionEngineError, WorkflowEngineError
from .graph import WorkflowGraph
from .logging import get_logger
from .orchestrator import Orchestrator

logger = get_logger(__name__)


class ExecutionPool:
    """Runs whole executions on worker threads, each with its own event loop.

    Parallelism is across executions only; a single execution is still one
    sequential traversal. Live events flow through the orchestrator's event
    sink from the worker threads, so the sink must accept calls from any
    thread (``WebSocketManager`` does).
    """

    def __init__(self, orchestrator: Orchestrator, max_concurrent_executions: int = 10):
        """Initialize the pool.

        Args:
            orchestrator: Orchestrator shared by every worker
            max_concurrent_executions: Number of worker threads
        """
        if max_concurrent_executions < 1:
            raise ValueError("max_concurrent_executions must be at least 1")
        self.orchestrator = orchestrator
        self._max_concurrent_executions = max_concurrent_executions
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_executions,
            thread_name_prefix="nodeflow-exec"
        )
        self._lock = threading.Lock()
        self._pending: Dict[str, Future] = {}
        self._running = 0
        self._shutdown = False

        logger.info(f"ExecutionPool initialized with max_concurrent_executions={max_concurrent_executions}")

    def submit(self, graph: WorkflowGraph, input_data: Any = None, workflow_id: Optional[str] = None) -> "Future[Execution]":
        """
        Queue an execution.

        Args:
            graph: Graph to execute
            input_data: Execution input
            workflow_id: Owning workflow; defaults to the graph's workflow ID

        Returns:
            Future resolving to the terminal Execution record, SUCCESS or
            ERROR. The future only raises when no execution record could be
            created at all.

        Raises:
            ExecutionEngineError: If the pool has been shut down
        """
        with self._lock:
            if self._shutdown:
                raise ExecutionEngineError("Execution pool is shut down", workflow_id=workflow_id or graph.workflow_id)
            ticket = str(uuid.uuid4())
            future = self._executor.submit(self._run, graph, input_data, workflow_id)
            self._pending[ticket] = future

        future.add_done_callback(lambda _: self._release(ticket))
        logger.debug(f"Queued execution of workflow {workflow_id or graph.workflow_id}")
        return future

    async def submit_async(self, graph: WorkflowGraph, input_data: Any = None, workflow_id: Optional[str] = None) -> Execution:
        """Queue an execution and await its terminal record."""
        return await asyncio.wrap_future(self.submit(graph, input_data, workflow_id))

    def active_count(self) -> int:
        """Executions currently running on a worker thread."""
        with self._lock:
            return self._running

    def get_queue_status(self) -> Dict[str, Any]:
        """
        Get the current load of the pool.

        Returns:
            Dictionary containing queue status information
        """
        with self._lock:
            pending = len(self._pending)
            running = self._running
        return {
            "active_executions": running,
            "queued_executions": max(0, pending - running),
            "max_concurrent_executions": self._max_concurrent_executions,
            "available_slots": max(0, self._max_concurrent_executions - running),
            "is_shutdown": self._shutdown,
        }

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release the worker threads."""
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=wait)
        logger.info("ExecutionPool shutdown completed")

    def _release(self, ticket: str) -> None:
        with self._lock:
            self._pending.pop(ticket, None)

    def _run(self, graph: WorkflowGraph, input_data: Any, workflow_id: Optional[str]) -> Execution:
        with self._lock:
            self._running += 1
        try:
            return asyncio.run(self._execute(graph, input_data, workflow_id))
        finally:
            with self._lock:
                self._running -= 1

    async def _execute(self, graph: WorkflowGraph, input_data: Any, workflow_id: Optional[str]) -> Execution:
        try:
            return await self.orchestrator.execute(graph, input_data, workflow_id)
        except WorkflowEngineError as e:
            execution_id = e.context.get("execution_id")
            if not execution_id:
                raise
            execution = await self.orchestrator.record_store.get_execution(execution_id)
            if execution is None:
                raise
            logger.warning(f"Pooled execution {execution_id} ended with error: {e.message}")
            return execution
