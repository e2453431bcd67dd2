"""Orchestrator that drives one workflow execution from entry nodes to completion."""

import asyncio
import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from ..models.core import Execution, ExecutionLog, ExecutionStatus, LogEntry, Node, NodeResult
from .collaborators import EventSink, NullEventSink, RecordStore
from .context import ExecutionContext
from .exceptions import (
    CyclicGraphError, ExecutionEngineError, NodeExecutionError, NoStartNodeError,
    PersistenceError, WorkflowEngineError, create_error_response
)
from .graph import WorkflowGraph
from .handler_registry import NodeHandlerRegistry, invoke_handler
from .logging import clear_logging_context, get_logger, log_with_context, set_logging_context

logger = get_logger(__name__)


# (node, input for this invocation, IDs of the nodes that led here)
Frame = Tuple[Node, Any, Tuple[str, ...]]


class _Effects:
    """Every store write and sink notification made on behalf of a traversal.

    Store writes are awaited and their failures propagate. Sink failures are
    logged and dropped.
    """

    def __init__(self, store: RecordStore, sink: EventSink):
        self.store = store
        self.sink = sink

    async def node_log(
        self,
        context: ExecutionContext,
        node_id: str,
        status: ExecutionStatus,
        input_data: Any = None,
        output: Any = None,
        error: Optional[str] = None
    ) -> ExecutionLog:
        entry = LogEntry(
            execution_id=context.execution_id,
            node_id=node_id,
            status=status,
            input=input_data,
            output=output,
            error=error
        )
        try:
            log = await self.store.append_log(entry)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to append {status.value} log for node '{node_id}': {e}",
                operation="append_log",
                table="execution_logs"
            ) from e
        context.record_log(log)

        try:
            await self.sink.on_node_log(
                context.execution_id, node_id, status,
                input=input_data, output=output, error=error
            )
        except Exception as e:
            logger.warning(f"Event sink failed on node log for {node_id} ({status.value}): {e}")
        return log

    async def execution_update(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output: Any = None,
        error: Optional[str] = None
    ) -> None:
        try:
            await self.sink.on_execution_update(execution_id, status, output=output, error=error)
        except Exception as e:
            logger.warning(f"Event sink failed on execution update {execution_id} ({status.value}): {e}")


class Orchestrator:
    """Executes workflow graphs depth first against an input payload.

    Entry nodes run in declared order. After each node its downstream nodes
    run in declared connection order, each receiving the node's output as
    input. The first failing node aborts the remainder of the execution.
    """

    def __init__(
        self,
        registry: NodeHandlerRegistry,
        record_store: RecordStore,
        event_sink: Optional[EventSink] = None,
        max_node_invocations: int = 1000,
        node_timeout: Optional[float] = None
    ):
        """Initialize the orchestrator.

        Args:
            registry: Handler registry used to dispatch nodes
            record_store: Store receiving executions and node logs
            event_sink: Receiver of live updates; events are dropped when omitted
            max_node_invocations: Upper bound on node invocations per execution
            node_timeout: Default handler timeout in seconds for nodes without their own
        """
        if max_node_invocations < 1:
            raise ValueError("max_node_invocations must be at least 1")
        self.registry = registry
        self.record_store = record_store
        self.event_sink = event_sink or NullEventSink()
        self.max_node_invocations = max_node_invocations
        self.node_timeout = node_timeout
        self._effects = _Effects(record_store, self.event_sink)

    async def execute(
        self,
        graph: WorkflowGraph,
        input_data: Any = None,
        workflow_id: Optional[str] = None
    ) -> Execution:
        """Run a workflow graph to completion.

        Args:
            graph: Graph to execute
            input_data: Payload handed to every entry node
            workflow_id: Owning workflow; defaults to the graph's workflow ID

        Returns:
            The terminal SUCCESS execution record

        Raises:
            WorkflowEngineError: The error that ended the execution, after the
                execution has been recorded as ERROR. Its context carries
                ``execution_id``.
        """
        workflow_id = workflow_id or graph.workflow_id
        if not workflow_id:
            raise ExecutionEngineError("Cannot execute a graph without a workflow ID")
        if input_data is None:
            input_data = {}

        execution = await self.record_store.create_execution(workflow_id, input_data)
        context = ExecutionContext(execution.id, workflow_id, input_data)
        context.transition(ExecutionStatus.RUNNING)

        token = set_logging_context(execution_id=execution.id, workflow_id=workflow_id)
        try:
            logger.info(f"Starting execution {execution.id} of workflow {workflow_id}")
            await self._effects.execution_update(execution.id, ExecutionStatus.RUNNING)

            try:
                entry_nodes = graph.entry_nodes()
                if not entry_nodes:
                    raise NoStartNodeError().add_context(workflow_id=workflow_id)
                await self._traverse(graph, context, entry_nodes, input_data)
            except WorkflowEngineError as e:
                await self._fail(context, e)
                raise
            except Exception as e:
                error = ExecutionEngineError(
                    f"Unexpected error during execution: {e}",
                    execution_id=execution.id,
                    workflow_id=workflow_id
                )
                await self._fail(context, error)
                raise error from e

            return await self._succeed(context)
        finally:
            clear_logging_context(token)

    async def _traverse(
        self,
        graph: WorkflowGraph,
        context: ExecutionContext,
        entry_nodes: List[Node],
        input_data: Any
    ) -> None:
        stack: List[Frame] = [(node, input_data, ()) for node in reversed(entry_nodes)]

        while stack:
            node, node_input, path = stack.pop()

            if node.id in path:
                cycle = list(path) + [node.id]
                raise CyclicGraphError(
                    f"Cycle detected at node '{node.id}': {' -> '.join(cycle)}",
                    path=cycle,
                    workflow_id=graph.workflow_id
                )

            if context.count_invocation() > self.max_node_invocations:
                raise ExecutionEngineError(
                    f"Execution exceeded {self.max_node_invocations} node invocations",
                    execution_id=context.execution_id,
                    workflow_id=context.workflow_id
                )

            result = await self._run_node(context, node, node_input)

            child_path = path + (node.id,)
            for child in reversed(graph.downstream_of(node.id)):
                stack.append((child, result.output, child_path))

    async def _run_node(self, context: ExecutionContext, node: Node, node_input: Any) -> NodeResult:
        await self._effects.node_log(context, node.id, ExecutionStatus.RUNNING, input_data=node_input)
        logger.debug(f"Running node {node.id} ({node.type})")

        try:
            handler = self.registry.resolve(node.type)
            result = await self._invoke(handler, node, node_input)
        except WorkflowEngineError as e:
            await self._record_failure(context, node, node_input, str(e))
            e.add_context(node_id=node.id)
            raise
        except Exception as e:
            await self._record_failure(context, node, node_input, str(e))
            raise NodeExecutionError(
                f"Node '{node.id}' failed: {e}",
                node_id=node.id,
                execution_id=context.execution_id
            ) from e

        context.record_result(result)
        await self._effects.node_log(
            context, node.id, result.status,
            input_data=node_input, output=result.output, error=result.error
        )

        if result.status == ExecutionStatus.ERROR:
            logger.error(f"Node {node.id} reported an error: {result.error}")
            raise NodeExecutionError(
                result.error or f"Node '{node.id}' reported an error",
                node_id=node.id,
                execution_id=context.execution_id
            )

        logger.debug(f"Node {node.id} completed")
        return result

    async def _invoke(self, handler, node: Node, node_input: Any) -> NodeResult:
        timeout = node.timeout or self.node_timeout
        call = invoke_handler(handler, node.id, dict(node.parameters), node_input)
        if not timeout:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NodeExecutionError(
                f"Node '{node.id}' timed out after {timeout} seconds",
                node_id=node.id
            ) from e

    async def _record_failure(self, context: ExecutionContext, node: Node, node_input: Any, message: str) -> None:
        logger.error(f"Node {node.id} failed: {message}")
        context.record_result(NodeResult(node_id=node.id, status=ExecutionStatus.ERROR, error=message))
        await self._effects.node_log(
            context, node.id, ExecutionStatus.ERROR, input_data=node_input, error=message
        )

    async def _succeed(self, context: ExecutionContext) -> Execution:
        context.transition(ExecutionStatus.SUCCESS)
        try:
            execution = await self.record_store.update_execution(
                context.execution_id, ExecutionStatus.SUCCESS, completed_at=datetime.utcnow()
            )
        except Exception as e:
            logger.error(f"Failed to record SUCCESS for execution {context.execution_id}: {e}")
            raise

        await self._effects.execution_update(
            context.execution_id, ExecutionStatus.SUCCESS, output=context.result_outputs()
        )
        logger.info(f"Execution {context.execution_id} completed with {len(context.results)} node results")
        return execution

    async def _fail(self, context: ExecutionContext, error: WorkflowEngineError) -> None:
        error.add_context(execution_id=context.execution_id)
        context.error = error.message
        context.transition(ExecutionStatus.ERROR)
        log_with_context(
            logger, logging.ERROR, f"Execution {context.execution_id} failed: {error.message}",
            error=create_error_response(error)
        )

        try:
            await self.record_store.update_execution(
                context.execution_id,
                ExecutionStatus.ERROR,
                completed_at=datetime.utcnow(),
                error=error.message
            )
        except Exception as e:
            logger.error(f"Failed to record ERROR for execution {context.execution_id}: {e}")
            raise

        await self._effects.execution_update(context.execution_id, ExecutionStatus.ERROR, error=error.message)
