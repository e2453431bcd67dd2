"""Database models and storage layer."""

from .database import (
    Base, create_tables, drop_tables, create_database_engine,
    get_database_engine, get_session_factory, reset_database_engine
)
from .models import WorkflowModel, ExecutionModel, ExecutionLogModel
from .record_store import SqlRecordStore
from .memory import InMemoryRecordStore

__all__ = [
    "Base",
    "create_tables",
    "drop_tables",
    "create_database_engine",
    "get_database_engine",
    "get_session_factory",
    "reset_database_engine",
    "WorkflowModel",
    "ExecutionModel",
    "ExecutionLogModel",
    "SqlRecordStore",
    "InMemoryRecordStore",
]
