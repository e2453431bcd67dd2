"""WebSocket Manager broadcasting live execution events."""

import asyncio
import json
import threading
import uuid
from datetime import datetime
from queue import Queue, Empty
from typing import Dict, Set, Any, Optional
from fastapi import WebSocket, WebSocketDisconnect

from ..models.core import ExecutionStatus, ExecutionUpdateEvent, NodeLogEvent
from .logging import get_logger

logger = get_logger(__name__)

EXECUTION_UPDATE = "executionUpdate"
EXECUTION_LOG = "executionLog"


class WebSocketConnection:
    """One accepted socket and the execution rooms it has joined."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.connected_at = datetime.utcnow()
        self.subscribed_executions: Set[str] = set()
        self.is_active = True


class WebSocketManager:
    """Event sink that pushes execution events to subscribed WebSocket clients.

    Clients join an execution room and receive ``executionUpdate`` and
    ``executionLog`` messages for that execution. Events raised on the loop
    that owns the sockets are sent immediately; events raised on other
    threads (pool workers) are queued and sent by the broadcast processor.
    The first accepted socket makes its loop the owning loop and starts the
    processor there. Before any socket connects there is no one to deliver
    to, so off-loop events are dropped, as they are once the processor is
    stopped.
    """

    def __init__(self, max_connections: int = 100):
        """Initialize the WebSocket manager.

        Args:
            max_connections: Connections beyond this limit are refused
        """
        self.max_connections = max_connections
        self._connections: Dict[str, WebSocketConnection] = {}
        self._execution_subscribers: Dict[str, Set[str]] = {}  # execution_id -> connection_ids
        self._broadcast_lock = asyncio.Lock()

        # Thread-safe queue for events raised on worker threads
        self._broadcast_queue: Queue = Queue()
        self._queue_processor_task: Optional[asyncio.Task] = None
        self._processing_broadcasts = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        logger.debug(f"WebSocketManager ready (max {max_connections} connections)")

    async def connect(self, websocket: WebSocket) -> Optional[str]:
        """
        Accept a socket unless the connection limit is reached.

        Args:
            websocket: Socket to accept

        Returns:
            Connection ID for the new connection, or None if it was refused
        """
        if self.get_connection_count() >= self.max_connections:
            logger.warning("WebSocket connection refused: connection limit reached")
            await websocket.close(code=1013)
            return None

        await websocket.accept()
        if not self._processing_broadcasts:
            self.start_broadcast_processor()

        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = WebSocketConnection(websocket, connection_id)

        logger.info(f"Accepted socket {connection_id}")

        await self._send_to_connection(connection_id, {
            "event": "connectionEstablished",
            "data": {"connectionId": connection_id},
        })

        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """
        Drop a connection and remove it from every room.

        Args:
            connection_id: Connection to drop
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return

        connection.is_active = False
        for execution_id in list(connection.subscribed_executions):
            await self.leave_execution(connection_id, execution_id)

        del self._connections[connection_id]
        logger.info(f"Dropped socket {connection_id}")

    async def join_execution(self, connection_id: str, execution_id: str) -> bool:
        """
        Subscribe a connection to the events of an execution.

        Returns:
            False if the connection is unknown or inactive
        """
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            logger.warning(f"Attempted to subscribe unknown or inactive connection: {connection_id}")
            return False

        connection.subscribed_executions.add(execution_id)
        self._execution_subscribers.setdefault(execution_id, set()).add(connection_id)

        logger.info(f"Connection {connection_id} joined execution {execution_id}")
        return True

    async def leave_execution(self, connection_id: str, execution_id: str) -> bool:
        """Unsubscribe a connection from an execution."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False

        connection.subscribed_executions.discard(execution_id)
        subscribers = self._execution_subscribers.get(execution_id)
        if subscribers is not None:
            subscribers.discard(connection_id)
            if not subscribers:
                del self._execution_subscribers[execution_id]

        logger.info(f"Connection {connection_id} left execution {execution_id}")
        return True

    async def handle_client_message(self, connection_id: str, message: Dict[str, Any]) -> None:
        """Apply a ``joinExecution`` or ``leaveExecution`` request from a client."""
        action = message.get("action")
        execution_id = message.get("executionId")
        if not execution_id:
            logger.debug(f"Ignoring message without executionId from {connection_id}")
            return

        if action == "joinExecution":
            await self.join_execution(connection_id, execution_id)
        elif action == "leaveExecution":
            await self.leave_execution(connection_id, execution_id)
        else:
            logger.debug(f"Ignoring unknown action '{action}' from {connection_id}")

    async def serve(self, websocket: WebSocket) -> None:
        """Accept a socket and process its room requests until it disconnects."""
        connection_id = await self.connect(websocket)
        if connection_id is None:
            return
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug(f"Ignoring non-JSON message from {connection_id}")
                    continue
                if isinstance(message, dict):
                    await self.handle_client_message(connection_id, message)
        except WebSocketDisconnect:
            logger.info(f"WebSocket client disconnected: {connection_id}")
        finally:
            await self.disconnect(connection_id)

    async def on_execution_update(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output: Any = None,
        error: Optional[str] = None
    ) -> None:
        event = ExecutionUpdateEvent(execution_id=execution_id, status=status, output=output, error=error)
        await self._dispatch(execution_id, EXECUTION_UPDATE, event.to_message())

    async def on_node_log(
        self,
        execution_id: str,
        node_id: str,
        status: ExecutionStatus,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None
    ) -> None:
        event = NodeLogEvent(
            execution_id=execution_id, node_id=node_id, status=status,
            input=input, output=output, error=error
        )
        await self._dispatch(execution_id, EXECUTION_LOG, event.to_message())

    async def broadcast_event(self, execution_id: str, event: str, data: Dict[str, Any]) -> None:
        """
        Send an event to every connection in an execution's room.

        Args:
            execution_id: Room to broadcast to
            event: Event name
            data: Event payload
        """
        if execution_id not in self._execution_subscribers:
            logger.debug(f"No subscribers for execution {execution_id}, skipping broadcast")
            return

        async with self._broadcast_lock:
            subscribers = self._execution_subscribers.get(execution_id, set()).copy()

            dead = []
            for connection_id in subscribers:
                if not await self._send_to_connection(connection_id, {"event": event, "data": data}):
                    dead.append(connection_id)

            for connection_id in dead:
                await self.disconnect(connection_id)

            logger.debug(f"Broadcasted {event} for execution {execution_id} to {len(subscribers)} subscribers")

    async def _dispatch(self, execution_id: str, event: str, data: Dict[str, Any]) -> None:
        if self._on_owning_loop():
            await self.broadcast_event(execution_id, event, data)
        elif self._processing_broadcasts:
            self._broadcast_queue.put((execution_id, event, data))
        elif execution_id in self._execution_subscribers:
            logger.warning(f"Dropped {event} for execution {execution_id}: broadcast processor is not running")

    def _on_owning_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    async def _send_to_connection(self, connection_id: str, data: Dict[str, Any]) -> bool:
        """Serialize and send one message; a failed send marks the connection inactive."""
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_active:
            return False

        try:
            await connection.websocket.send_text(json.dumps(data, default=str))
            return True
        except WebSocketDisconnect:
            logger.info(f"Socket {connection_id} closed while sending")
            connection.is_active = False
            return False
        except Exception as e:
            logger.error(f"Send to socket {connection_id} failed: {e}")
            connection.is_active = False
            return False

    def get_connection_count(self) -> int:
        """Number of active connections."""
        return sum(1 for conn in self._connections.values() if conn.is_active)

    def get_execution_subscriber_count(self, execution_id: str) -> int:
        """Number of connections in an execution's room."""
        return len(self._execution_subscribers.get(execution_id, set()))

    def get_connection_info(self) -> Dict[str, Any]:
        """Snapshot of active connections, room sizes and the off-loop queue."""
        active_connections = [
            {
                "connection_id": conn_id,
                "connected_at": conn.connected_at.isoformat(),
                "subscribed_executions": sorted(conn.subscribed_executions)
            }
            for conn_id, conn in self._connections.items()
            if conn.is_active
        ]
        return {
            "total_connections": len(active_connections),
            "connections": active_connections,
            "execution_subscribers": {
                execution_id: len(subscribers)
                for execution_id, subscribers in self._execution_subscribers.items()
            },
            "queued_events": self._broadcast_queue.qsize(),
        }

    def start_broadcast_processor(self):
        """Start the broadcast queue processor on the running loop, which becomes the owning loop."""
        if not self._processing_broadcasts:
            self._loop = asyncio.get_running_loop()
            self._processing_broadcasts = True
            self._queue_processor_task = asyncio.create_task(self._process_broadcast_queue())
            logger.info(f"WebSocket broadcast processor started (thread {threading.current_thread().name})")

    def stop_broadcast_processor(self):
        """Cancel the queue processor; later off-loop events are dropped."""
        self._processing_broadcasts = False
        if self._queue_processor_task:
            self._queue_processor_task.cancel()
            self._queue_processor_task = None
            logger.info("Broadcast processor stopped")

    async def process_pending(self) -> int:
        """Broadcast every queued event now.

        Returns:
            Number of events processed
        """
        processed = 0
        while True:
            try:
                execution_id, event, data = self._broadcast_queue.get_nowait()
            except Empty:
                return processed
            try:
                await self.broadcast_event(execution_id, event, data)
            except Exception as e:
                logger.error(f"Error broadcasting queued {event} for {execution_id}: {str(e)}")
            finally:
                self._broadcast_queue.task_done()
            processed += 1

    async def _process_broadcast_queue(self):
        """Drain the off-loop queue until the processor is stopped."""
        while self._processing_broadcasts:
            try:
                if not await self.process_pending():
                    await asyncio.sleep(0.1)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Broadcast processor error: {e}")
                await asyncio.sleep(0.1)
