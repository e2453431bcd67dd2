"""Logging setup for nodeflow.

Log lines carry the fields of the execution they were written for
(``execution_id``, ``workflow_id``), set with ``set_logging_context`` at the
start of a traversal. The fields live in a context variable, so executions
running on different tasks or pool threads never see each other's fields.
"""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(threadName)s] %(message)s%(context_suffix)s"

# Libraries that are noisy at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "openai", "asyncio")

_logging_context: contextvars.ContextVar = contextvars.ContextVar("nodeflow_logging_context", default={})


class StructuredFormatter(logging.Formatter):
    """Formats each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(getattr(record, "extra_fields", {}))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, default=str)


class ExecutionContextFilter(logging.Filter):
    """Copies the current execution's logging fields onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(getattr(record, "extra_fields", {}) or {})
        fields.update(_logging_context.get())
        record.extra_fields = fields
        record.context_suffix = (
            " {" + ", ".join(f"{key}={value}" for key, value in fields.items()) + "}" if fields else ""
        )
        return True


_context_filter = ExecutionContextFilter()


def _build_handlers(
    log_file: Optional[str],
    max_size: int,
    backup_count: int
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))
    return handlers


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Install nodeflow's handlers on the root logger.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.

    Args:
        level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Also write to this file, rotated at ``max_size`` bytes
        log_format: ``logging`` format string for plain output; may use
            ``%(context_suffix)s`` to append the execution fields
        structured: Emit JSON lines instead of plain text
        max_size: Rotation size of the log file in bytes
        backup_count: Rotated files to keep

    Returns:
        The root logger
    """
    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
        raise ValueError(f"Unknown log level: {level}")

    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for handler in _build_handlers(log_file, max_size, backup_count):
        handler.setFormatter(formatter)
        handler.addFilter(_context_filter)
        root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Module logger; modules call this with ``__name__``."""
    return logging.getLogger(name)


def set_logging_context(**fields) -> contextvars.Token:
    """Add fields to every log line written by the current task.

    Returns:
        Token for ``clear_logging_context`` restoring the previous fields
    """
    return _logging_context.set({**_logging_context.get(), **fields})


def get_logging_context() -> Dict[str, Any]:
    return dict(_logging_context.get())


def clear_logging_context(token: Optional[contextvars.Token] = None) -> None:
    """Restore the fields captured by ``token``, or drop all fields."""
    if token is not None:
        _logging_context.reset(token)
    else:
        _logging_context.set({})


def log_with_context(logger: logging.Logger, level: int, message: str, **fields) -> None:
    """Log one message with extra fields that apply to it alone."""
    logger.log(level, message, extra={"extra_fields": fields})
