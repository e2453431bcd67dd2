"""SQLAlchemy database models for the workflow engine."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, ForeignKey, Index
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    nodes = Column(JSON, nullable=False)
    connections = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default="draft")  # draft, active, inactive
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ExecutionModel(Base):
    """Database model for workflow executions."""
    __tablename__ = "executions"
    __table_args__ = (
        Index("idx_executions_workflow_started", "workflow_id", "started_at"),
    )

    id = Column(String, primary_key=True)
    # Not a foreign key: ad-hoc graphs can run without a stored workflow
    workflow_id = Column(String, nullable=False)
    status = Column(String, nullable=False)  # PENDING, RUNNING, SUCCESS, ERROR
    input = Column(JSON)
    error = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)

    logs = relationship("ExecutionLogModel", back_populates="execution", cascade="all, delete-orphan")


class ExecutionLogModel(Base):
    """Database model for per-node execution log entries."""
    __tablename__ = "execution_logs"
    __table_args__ = (
        Index("idx_execution_logs_execution_timestamp", "execution_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String, ForeignKey("executions.id"), nullable=False)
    node_id = Column(String, nullable=False)
    status = Column(String, nullable=False)
    input = Column(JSON)
    output = Column(JSON)
    error = Column(Text)
    timestamp = Column(DateTime, default=datetime.utcnow)

    execution = relationship("ExecutionModel", back_populates="logs")
