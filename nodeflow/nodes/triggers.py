"""Trigger nodes: the entry points of a workflow."""

from typing import Any, Dict

from ..models.core import NodeResult
from .base import success, timestamp


async def webhook_trigger(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    """Pass the execution input on, stamped with the trigger time."""
    return success(node_id, {
        "message": "Webhook triggered",
        "timestamp": timestamp(),
        "data": input_data,
    })


async def schedule_trigger(node_id: str, parameters: Dict[str, Any], input_data: Any) -> NodeResult:
    """Like the webhook trigger; echoes the configured ``cron`` expression when present."""
    output = {
        "message": "Schedule triggered",
        "timestamp": timestamp(),
        "data": input_data,
    }
    if parameters.get("cron"):
        output["cron"] = parameters["cron"]
    return success(node_id, output)
