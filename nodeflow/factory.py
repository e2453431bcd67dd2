"""Composition root wiring the engine components together."""

from typing import Any, Dict, Optional

from sqlalchemy import Engine, text

from .config import AppConfig, get_config, validate_config
from .core.collaborators import CompositeEventSink, EventSink, LoggingEventSink, RecordStore
from .core.execution_pool import ExecutionPool
from .core.handler_registry import NodeHandlerRegistry
from .core.logging import setup_logging, get_logger
from .core.orchestrator import Orchestrator
from .core.websocket_manager import WebSocketManager
from .core.workflow_manager import WorkflowManager
from .nodes import register_default_handlers
from .storage.database import create_database_engine, create_tables, get_session_factory
from .storage.record_store import SqlRecordStore


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.database_engine: Optional[Engine] = None
        self.record_store: Optional[RecordStore] = None
        self.registry: Optional[NodeHandlerRegistry] = None
        self.websocket_manager: Optional[WebSocketManager] = None
        self.event_sink: Optional[EventSink] = None
        self.orchestrator: Optional[Orchestrator] = None
        self.workflow_manager: Optional[WorkflowManager] = None
        self.execution_pool: Optional[ExecutionPool] = None
        self.logger = None


def create_engine_components(
    config: Optional[AppConfig] = None,
    record_store: Optional[RecordStore] = None,
    event_sink: Optional[EventSink] = None,
    configure_logging: bool = True
) -> ApplicationState:
    """
    Build every engine component from configuration.

    Args:
        config: Settings to use; the environment configuration when omitted
        record_store: Store overriding the SQL record store
        event_sink: Sink overriding the WebSocket manager
        configure_logging: Install log handlers according to the config

    Returns:
        ApplicationState: The wired components
    """
    config = config or get_config()
    validate_config(config)

    state = ApplicationState()
    state.config = config

    if configure_logging:
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured
        )
    logger = get_logger(__name__)
    state.logger = logger

    state.database_engine = create_database_engine(
        config.database_url,
        echo=config.database_echo,
        connect_args=config.get_database_connect_args()
    )
    create_tables(state.database_engine)
    session_factory = get_session_factory(state.database_engine)

    state.record_store = record_store or SqlRecordStore(session_factory=session_factory)

    state.registry = register_default_handlers(NodeHandlerRegistry(), config)

    state.websocket_manager = WebSocketManager(max_connections=config.websocket_max_connections)
    if event_sink is None:
        event_sink = state.websocket_manager
        if config.debug:
            event_sink = CompositeEventSink([state.websocket_manager, LoggingEventSink()])
    state.event_sink = event_sink

    state.orchestrator = Orchestrator(
        state.registry,
        state.record_store,
        event_sink=state.event_sink,
        max_node_invocations=config.max_node_invocations,
        node_timeout=config.node_timeout
    )
    state.workflow_manager = WorkflowManager(
        session_factory=session_factory,
        orchestrator=state.orchestrator,
        registry=state.registry
    )
    state.execution_pool = ExecutionPool(
        state.orchestrator,
        max_concurrent_executions=config.max_concurrent_executions
    )

    logger.info(f"{config.app_name} components initialized "
                f"({len(state.registry)} node types, database {config.database_type.value})")
    return state


def get_health_status(state: ApplicationState) -> Dict[str, Any]:
    """Report the health of the database, the pool and the WebSocket manager."""
    checks: Dict[str, Any] = {}

    try:
        with state.database_engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    checks["execution_pool"] = {"status": "healthy", **state.execution_pool.get_queue_status()}
    checks["websocket_manager"] = {
        "status": "healthy",
        "connections": state.websocket_manager.get_connection_count(),
    }
    checks["node_types"] = state.registry.list_types()

    overall = "healthy" if all(
        check.get("status") == "healthy" for check in checks.values() if isinstance(check, dict)
    ) else "unhealthy"
    return {"status": overall, "checks": checks}


def shutdown_components(state: ApplicationState) -> None:
    """Stop the pool, the broadcast processor and release database connections."""
    logger = state.logger or get_logger(__name__)

    if state.execution_pool:
        state.execution_pool.shutdown(wait=True)

    if state.websocket_manager:
        state.websocket_manager.stop_broadcast_processor()

    if state.registry and state.registry.is_registered("postgres"):
        handler = state.registry.resolve("postgres")
        if hasattr(handler, "dispose"):
            handler.dispose()

    if state.database_engine:
        state.database_engine.dispose()

    logger.info("Engine components shut down")
