"""SQLAlchemy-backed record store for executions and node logs."""

import asyncio
import threading
import uuid
from contextlib import nullcontext
from datetime import datetime
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.exceptions import PersistenceError
from ..core.logging import get_logger
from ..models.core import Execution, ExecutionLog, ExecutionStatus, LogEntry
from .database import get_session_factory
from .models import ExecutionLogModel, ExecutionModel

logger = get_logger(__name__)

T = TypeVar("T")


def _to_execution(model: ExecutionModel) -> Execution:
    return Execution(
        id=model.id,
        workflow_id=model.workflow_id,
        status=ExecutionStatus(model.status),
        input=model.input if model.input is not None else {},
        error=model.error,
        started_at=model.started_at,
        completed_at=model.completed_at
    )


def _to_log(model: ExecutionLogModel) -> ExecutionLog:
    return ExecutionLog(
        id=str(model.id),
        execution_id=model.execution_id,
        node_id=model.node_id,
        status=ExecutionStatus(model.status),
        input=model.input,
        output=model.output,
        error=model.error,
        timestamp=model.timestamp
    )


def _uses_shared_connection(session_factory: sessionmaker) -> bool:
    bind = session_factory.kw.get("bind")
    return isinstance(getattr(bind, "pool", None), StaticPool)


class SqlRecordStore:
    """Record store persisting to the ``executions`` and ``execution_logs`` tables.

    Every operation runs its blocking database work on a worker thread with
    its own session, so a slow write never stalls the event loop. Engines
    holding a single shared connection (in-memory SQLite) get their calls
    serialized.
    """

    def __init__(self, engine: Optional[Engine] = None, session_factory: Optional[sessionmaker] = None):
        """Initialize the store.

        Args:
            engine: Engine to bind sessions to; the global engine is used when omitted
            session_factory: Explicit session factory, overriding ``engine``
        """
        self._session_factory = session_factory or get_session_factory(engine)
        self._lock = threading.Lock() if _uses_shared_connection(self._session_factory) else nullcontext()

    async def _run(self, work: Callable[[Session], T], operation: str, table: str) -> T:
        return await asyncio.to_thread(self._in_session, work, operation, table)

    def _in_session(self, work: Callable[[Session], T], operation: str, table: str) -> T:
        with self._lock:
            db = self._session_factory()
            try:
                return work(db)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error during {operation}: {str(e)}")
                raise PersistenceError(
                    f"Failed to {operation.replace('_', ' ')}: {str(e)}",
                    operation=operation,
                    table=table
                ) from e
            finally:
                db.close()

    async def create_execution(self, workflow_id: str, input_data: Any) -> Execution:
        """Insert a RUNNING execution record."""
        def create(db: Session) -> Execution:
            model = ExecutionModel(
                id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                status=ExecutionStatus.RUNNING.value,
                input=input_data,
                started_at=datetime.utcnow()
            )
            db.add(model)
            db.commit()
            db.refresh(model)
            logger.debug(f"Created execution {model.id} for workflow {workflow_id}")
            return _to_execution(model)

        return await self._run(create, "create_execution", "executions")

    async def update_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        completed_at: Optional[datetime] = None,
        error: Optional[str] = None
    ) -> Execution:
        """Set an execution's status, completion time and error message."""
        def update(db: Session) -> Execution:
            model = db.query(ExecutionModel).filter(ExecutionModel.id == execution_id).first()
            if not model:
                raise PersistenceError(
                    f"Execution '{execution_id}' not found",
                    operation="update_execution",
                    table="executions"
                )
            model.status = ExecutionStatus(status).value
            if completed_at is not None:
                model.completed_at = completed_at
            if error is not None:
                model.error = error
            db.commit()
            db.refresh(model)
            return _to_execution(model)

        return await self._run(update, "update_execution", "executions")

    async def append_log(self, entry: LogEntry) -> ExecutionLog:
        """Insert an immutable node log entry."""
        def append(db: Session) -> ExecutionLog:
            model = ExecutionLogModel(
                execution_id=entry.execution_id,
                node_id=entry.node_id,
                status=ExecutionStatus(entry.status).value,
                input=entry.input,
                output=entry.output,
                error=entry.error,
                timestamp=entry.timestamp
            )
            db.add(model)
            try:
                db.commit()
            except (TypeError, ValueError) as e:
                # Payloads the JSON columns cannot serialize
                db.rollback()
                raise PersistenceError(
                    f"Failed to append log: {str(e)}",
                    operation="append_log",
                    table="execution_logs"
                ) from e
            db.refresh(model)
            return _to_log(model)

        return await self._run(append, "append_log", "execution_logs")

    async def get_execution(self, execution_id: str) -> Optional[Execution]:
        """Load an execution by ID, or None if it does not exist."""
        def load(db: Session) -> Optional[Execution]:
            model = db.query(ExecutionModel).filter(ExecutionModel.id == execution_id).first()
            return _to_execution(model) if model else None

        return await self._run(load, "get_execution", "executions")

    async def list_executions(self, workflow_id: str, limit: int = 50) -> List[Execution]:
        """Most recent executions of a workflow, newest first."""
        def query(db: Session) -> List[Execution]:
            models = (
                db.query(ExecutionModel)
                .filter(ExecutionModel.workflow_id == workflow_id)
                .order_by(ExecutionModel.started_at.desc())
                .limit(limit)
                .all()
            )
            return [_to_execution(model) for model in models]

        return await self._run(query, "list_executions", "executions")

    async def get_logs(self, execution_id: str) -> List[ExecutionLog]:
        """Log entries of an execution in timestamp order."""
        def query(db: Session) -> List[ExecutionLog]:
            models = (
                db.query(ExecutionLogModel)
                .filter(ExecutionLogModel.execution_id == execution_id)
                .order_by(ExecutionLogModel.timestamp.asc(), ExecutionLogModel.id.asc())
                .all()
            )
            return [_to_log(model) for model in models]

        return await self._run(query, "get_logs", "execution_logs")
