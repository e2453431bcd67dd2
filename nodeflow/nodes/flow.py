"""Flow-control nodes."""

from typing import Any, Dict

from ..core.exceptions import ExpressionError
from ..core.expressions import evaluate_condition
from ..core.logging import get_logger
from ..models.core import NodeResult
from .base import as_mapping, failure, success

logger = get_logger(__name__)


async def if_node(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    """Evaluate ``condition`` against the input and report which branch it selects.

    Downstream nodes are not filtered by the result; the chosen branch is
    reported as ``nextPath`` for consumers of the output.
    """
    condition = parameters.get("condition")
    if not condition or not isinstance(condition, str):
        return failure(node_id, "If node requires a 'condition' parameter")

    variables = as_mapping(input_data)
    try:
        condition_result = evaluate_condition(condition, variables)
    except ExpressionError as e:
        logger.warning(f"If node {node_id} could not evaluate '{condition}': {e.message}")
        return failure(node_id, e.message)

    return success(node_id, {
        **variables,
        "conditionResult": condition_result,
        "nextPath": "true" if condition_result else "false",
    })
