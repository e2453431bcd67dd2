"""Contracts for the engine's external collaborators and the simple event sinks."""

from datetime import datetime
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from ..models.core import (
    Execution, ExecutionLog, ExecutionStatus, ExecutionUpdateEvent, LogEntry, NodeLogEvent
)
from .exceptions import SinkError
from .logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class RecordStore(Protocol):
    """Durable home of executions and their node logs."""

    async def create_execution(self, workflow_id: str, input_data: Any) -> Execution:
        ...

    async def update_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        completed_at: Optional[datetime] = None,
        error: Optional[str] = None
    ) -> Execution:
        ...

    async def append_log(self, entry: LogEntry) -> ExecutionLog:
        ...

    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        ...

    async def list_executions(self, workflow_id: str, limit: int = 50) -> List[Execution]:
        ...

    async def get_logs(self, execution_id: str) -> List[ExecutionLog]:
        ...


@runtime_checkable
class EventSink(Protocol):
    """Receiver of live execution and node updates. Delivery is best-effort."""

    async def on_execution_update(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output: Any = None,
        error: Optional[str] = None
    ) -> None:
        ...

    async def on_node_log(
        self,
        execution_id: str,
        node_id: str,
        status: ExecutionStatus,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None
    ) -> None:
        ...


class NullEventSink:
    """Sink that drops every event."""

    async def on_execution_update(self, execution_id, status, output=None, error=None) -> None:
        return None

    async def on_node_log(self, execution_id, node_id, status, input=None, output=None, error=None) -> None:
        return None


class LoggingEventSink:
    """Sink that writes events to a logger instead of a live channel."""

    def __init__(self, log=None):
        self._logger = log or logger

    async def on_execution_update(self, execution_id, status, output=None, error=None) -> None:
        event = ExecutionUpdateEvent(execution_id=execution_id, status=status, output=output, error=error)
        self._logger.info(f"executionUpdate {event.to_message()}")

    async def on_node_log(self, execution_id, node_id, status, input=None, output=None, error=None) -> None:
        event = NodeLogEvent(
            execution_id=execution_id, node_id=node_id, status=status,
            input=input, output=output, error=error
        )
        self._logger.info(f"executionLog {event.to_message()}")


class CompositeEventSink:
    """Fans every event out to several sinks.

    Every sink is attempted; if any of them fails a single ``SinkError`` is
    raised afterwards listing the failures.
    """

    def __init__(self, sinks: Sequence[EventSink]):
        self.sinks = list(sinks)

    async def on_execution_update(self, execution_id, status, output=None, error=None) -> None:
        await self._fan_out(
            "executionUpdate",
            lambda sink: sink.on_execution_update(execution_id, status, output=output, error=error)
        )

    async def on_node_log(self, execution_id, node_id, status, input=None, output=None, error=None) -> None:
        await self._fan_out(
            "executionLog",
            lambda sink: sink.on_node_log(
                execution_id, node_id, status, input=input, output=output, error=error
            )
        )

    async def _fan_out(self, event_type: str, call) -> None:
        failures = []
        for sink in self.sinks:
            try:
                await call(sink)
            except Exception as e:
                logger.warning(f"Event sink {type(sink).__name__} failed on {event_type}: {e}")
                failures.append(f"{type(sink).__name__}: {e}")
        if failures:
            raise SinkError(
                f"{len(failures)} of {len(self.sinks)} sinks failed: {'; '.join(failures)}",
                event_type=event_type
            )
