"""Helpers shared by the node catalog handlers."""

from datetime import datetime
from typing import Any, Dict, Mapping

from ..models.core import ExecutionStatus, NodeResult


def success(node_id: str, output: Any) -> NodeResult:
    return NodeResult(node_id=node_id, status=ExecutionStatus.SUCCESS, output=output)


def failure(node_id: str, error: str) -> NodeResult:
    return NodeResult(node_id=node_id, status=ExecutionStatus.ERROR, output=None, error=error)


def as_mapping(input_data: Any) -> Dict[str, Any]:
    """Copy a mapping payload; anything else contributes no fields."""
    if isinstance(input_data, Mapping):
        return dict(input_data)
    return {}


def timestamp() -> str:
    """Current UTC time as an ISO-8601 string, safe to persist as JSON."""
    return datetime.utcnow().isoformat()
