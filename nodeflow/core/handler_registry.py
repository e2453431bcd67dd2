"""Registry mapping node type tags to their handlers."""

import inspect
import threading
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Union

from pydantic import ValidationError

from ..models.core import ExecutionStatus, NodeResult
from .exceptions import HandlerRegistryError, UnknownNodeTypeError
from .logging import get_logger

logger = get_logger(__name__)


HandlerOutput = Union[NodeResult, Mapping[str, Any]]
NodeHandler = Callable[[str, Dict[str, Any], Any], Union[HandlerOutput, Awaitable[HandlerOutput]]]


class NodeHandlerRegistry:
    """Registry of node handlers keyed by type tag.

    A handler is called as ``handler(node_id, parameters, input)`` and returns
    a ``NodeResult`` or a mapping with ``status``, ``output`` and optionally
    ``error``. Both coroutine functions and plain callables are accepted.

    The registry is filled at startup and then read concurrently by every
    running execution.
    """

    def __init__(self):
        self._handlers: Dict[str, NodeHandler] = {}
        self._lock = threading.RLock()

    def register(self, type_tag: str, handler: NodeHandler, replace: bool = False) -> None:
        """Register a handler for a node type tag.

        Args:
            type_tag: Node type tag the handler serves
            handler: Callable invoked for nodes of this type
            replace: Overwrite an existing registration instead of failing

        Raises:
            HandlerRegistryError: If the tag is empty, the handler is not
                callable or the tag is already registered
        """
        if not type_tag or not type_tag.strip():
            raise HandlerRegistryError("Node type tag cannot be empty", operation="register")

        type_tag = type_tag.strip()

        if not callable(handler):
            raise HandlerRegistryError(
                f"Handler for '{type_tag}' must be callable",
                type_tag=type_tag,
                operation="register"
            )

        with self._lock:
            if type_tag in self._handlers and not replace:
                raise HandlerRegistryError(
                    f"Handler for '{type_tag}' is already registered",
                    type_tag=type_tag,
                    operation="register"
                )
            self._handlers[type_tag] = handler

        logger.debug(f"Registered handler for node type '{type_tag}'")

    def resolve(self, type_tag: str) -> NodeHandler:
        """Return the handler registered for ``type_tag``.

        Raises:
            UnknownNodeTypeError: If nothing is registered for the tag
        """
        with self._lock:
            handler = self._handlers.get(type_tag)
        if handler is None:
            raise UnknownNodeTypeError(type_tag)
        return handler

    def unregister(self, type_tag: str) -> bool:
        """Remove a registration.

        Returns:
            True if a handler was removed, False if the tag was not registered
        """
        with self._lock:
            removed = self._handlers.pop(type_tag, None) is not None
        if removed:
            logger.debug(f"Unregistered handler for node type '{type_tag}'")
        return removed

    def is_registered(self, type_tag: str) -> bool:
        """Check whether a handler exists for the tag."""
        with self._lock:
            return type_tag in self._handlers

    def list_types(self) -> List[str]:
        """Registered type tags, sorted."""
        with self._lock:
            return sorted(self._handlers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)


async def invoke_handler(
    handler: NodeHandler,
    node_id: str,
    parameters: Dict[str, Any],
    input_data: Any
) -> NodeResult:
    """Call a handler and normalize whatever it returns into a ``NodeResult``.

    Raises:
        Exception: Anything the handler raises propagates unchanged.
        TypeError: If the handler returns something that is not a result.
    """
    outcome = handler(node_id, parameters, input_data)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return normalize_result(node_id, outcome)


def normalize_result(node_id: str, outcome: Any) -> NodeResult:
    """Coerce a handler's return value into a ``NodeResult`` for ``node_id``."""
    if isinstance(outcome, NodeResult):
        if outcome.node_id != node_id:
            outcome = outcome.model_copy(update={"node_id": node_id})
        return outcome

    if isinstance(outcome, Mapping):
        try:
            return NodeResult(
                node_id=node_id,
                status=outcome.get("status", ExecutionStatus.SUCCESS),
                output=outcome.get("output"),
                error=outcome.get("error"),
            )
        except ValidationError as e:
            raise TypeError(f"Handler for node '{node_id}' returned an invalid result: {e}") from e

    raise TypeError(
        f"Handler for node '{node_id}' returned {type(outcome).__name__}, expected NodeResult or mapping"
    )
