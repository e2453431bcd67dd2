"""Baseline node catalog."""

from typing import Optional

from ..config import AppConfig
from ..core.handler_registry import NodeHandlerRegistry
from ..core.logging import get_logger
from .actions import HttpRequestHandler
from .ai import OpenAIChatHandler
from .communication import EmailSendHandler
from .data import SqlQueryHandler, code_node, set_node
from .flow import if_node
from .triggers import schedule_trigger, webhook_trigger

logger = get_logger(__name__)


def register_default_handlers(
    registry: NodeHandlerRegistry,
    config: Optional[AppConfig] = None,
    replace: bool = False
) -> NodeHandlerRegistry:
    """Register the baseline node types on ``registry``.

    Args:
        registry: Registry to populate
        config: Settings for the handlers that talk to external services
        replace: Overwrite handlers that are already registered

    Returns:
        The same registry, for chaining
    """
    config = config or AppConfig()

    handlers = {
        "webhook-trigger": webhook_trigger,
        "schedule-trigger": schedule_trigger,
        "http-request": HttpRequestHandler(timeout=config.http_default_timeout),
        "code": code_node,
        "set": set_node,
        "if": if_node,
        "email-send": EmailSendHandler(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            sender=config.smtp_sender,
            use_tls=config.smtp_use_tls
        ),
        "postgres": SqlQueryHandler(database_url=config.database_url),
        "openai": OpenAIChatHandler(
            api_key=config.openai_api_key,
            default_model=config.openai_default_model
        ),
    }

    for type_tag, handler in handlers.items():
        registry.register(type_tag, handler, replace=replace)

    logger.info(f"Registered {len(handlers)} default node handlers")
    return registry


__all__ = [
    "register_default_handlers",
    "HttpRequestHandler",
    "OpenAIChatHandler",
    "EmailSendHandler",
    "SqlQueryHandler",
    "code_node",
    "set_node",
    "if_node",
    "webhook_trigger",
    "schedule_trigger",
]
