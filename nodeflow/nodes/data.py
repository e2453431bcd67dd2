"""Data nodes: field computation, assignment and SQL queries."""

import asyncio
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import ExpressionError
from ..core.expressions import evaluate
from ..core.logging import get_logger
from ..models.core import NodeResult
from .base import as_mapping, failure, success, timestamp

logger = get_logger(__name__)


async def code_node(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    """Compute fields from sandboxed expressions and merge them into the input.

    ``expressions`` maps output field names to expressions. Each expression
    sees the input's fields by name and the whole payload as ``input``.
    """
    expressions = parameters.get("expressions") or {}
    if not isinstance(expressions, Mapping):
        return failure(node_id, "'expressions' must be a mapping of field names to expressions")

    base = as_mapping(input_data)
    variables = {**base, "input": input_data}

    fields: Dict[str, Any] = {}
    for field, expression in expressions.items():
        try:
            fields[field] = evaluate(expression, variables)
        except ExpressionError as e:
            return failure(node_id, f"Field '{field}': {e.message}")

    return success(node_id, {
        **base,
        **fields,
        "processedBy": "code-node",
        "timestamp": timestamp(),
    })


async def set_node(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    """Add fields to the input: a single ``key``/``value`` pair or a ``values`` mapping."""
    base = as_mapping(input_data)

    values = parameters.get("values")
    if values is not None:
        if not isinstance(values, Mapping):
            return failure(node_id, "'values' must be a mapping")
        return success(node_id, {**base, **values})

    key = parameters.get("key")
    if not key:
        return failure(node_id, "Set node requires a 'key' parameter")
    return success(node_id, {**base, key: parameters.get("value")})


class SqlQueryHandler:
    """Runs a parameterized SQL statement through SQLAlchemy.

    Parameters:
        query: SQL text with ``:name`` bind parameters (required)
        params: Mapping of bind parameter values
        database_url: Target database; the configured default when omitted

    Row-returning statements yield a list of row dicts; other statements
    yield their affected row count.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine_factory: Optional[Callable[[str], Engine]] = None
    ):
        self.database_url = database_url
        self.engine_factory = engine_factory or create_engine
        self._engines: Dict[str, Engine] = {}
        self._engines_lock = threading.Lock()

    def _get_engine(self, database_url: str) -> Engine:
        with self._engines_lock:
            if database_url not in self._engines:
                self._engines[database_url] = self.engine_factory(database_url)
            return self._engines[database_url]

    async def __call__(self, node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
        query = parameters.get("query")
        if not query:
            return failure(node_id, "Query node requires a 'query' parameter")

        database_url = parameters.get("database_url") or self.database_url
        if not database_url:
            return failure(node_id, "No database URL configured for query node")

        params = parameters.get("params") or {}
        if not isinstance(params, Mapping):
            return failure(node_id, "'params' must be a mapping of bind parameters")

        try:
            result = await asyncio.to_thread(self._run, database_url, query, dict(params))
        except SQLAlchemyError as e:
            logger.warning(f"Query node {node_id} failed: {e}")
            return failure(node_id, f"Query failed: {e}")

        return success(node_id, {
            "message": "Query executed",
            "query": query,
            "result": result,
        })

    def _run(self, database_url: str, query: str, params: Dict[str, Any]) -> Any:
        engine = self._get_engine(database_url)
        with engine.begin() as connection:
            cursor = connection.execute(text(query), params)
            if cursor.returns_rows:
                return [dict(row) for row in cursor.mappings()]
            return cursor.rowcount

    def dispose(self) -> None:
        with self._engines_lock:
            engines, self._engines = list(self._engines.values()), {}
        for engine in engines:
            engine.dispose()
