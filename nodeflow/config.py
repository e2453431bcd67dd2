"""Configuration for the nodeflow engine.

Settings come from ``NODEFLOW_*`` environment variables, optionally loaded
from a ``.env`` file, and are validated by ``AppConfig``.
"""

import os
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .core.exceptions import ConfigurationError


ENV_PREFIX = "NODEFLOW_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Database backends accepted in ``database_url``."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


def _url_scheme(url: str) -> str:
    """Backend part of a URL scheme: ``postgresql+psycopg://`` -> ``postgresql``."""
    return url.split("://", 1)[0].split("+", 1)[0].lower()


class AppConfig(BaseModel):
    """Engine settings."""

    app_name: str = Field(default="nodeflow", description="Name used in log lines")
    debug: bool = Field(default=False, description="Also mirror live events to the log")

    # Storage
    database_url: str = Field(
        default="sqlite:///./nodeflow.db",
        description="Database for workflows, executions and node logs"
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Orchestration
    max_concurrent_executions: int = Field(default=10, description="Worker threads in the execution pool")
    max_node_invocations: int = Field(default=1000, description="Node invocations allowed per execution")
    node_timeout: Optional[float] = Field(
        default=None,
        description="Handler timeout in seconds for nodes without their own; None waits forever"
    )

    # Live events
    websocket_max_connections: int = Field(default=100, description="Sockets accepted before refusing")

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Root log level")
    log_format: Optional[str] = Field(default=None, description="Plain-text log format")
    log_file: Optional[str] = Field(default=None, description="Rotated log file")
    log_structured: bool = Field(default=False, description="Write JSON log lines")

    # Node catalog
    http_default_timeout: float = Field(default=30.0, description="http-request timeout in seconds")
    smtp_host: Optional[str] = Field(default=None, description="SMTP server for email-send")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_username: Optional[str] = Field(default=None, description="SMTP login")
    smtp_password: Optional[str] = Field(default=None, description="SMTP password")
    smtp_sender: Optional[str] = Field(default=None, description="From address when a node names none")
    smtp_use_tls: bool = Field(default=True, description="STARTTLS before login")
    openai_api_key: Optional[str] = Field(default=None, description="Key for openai nodes")
    openai_default_model: str = Field(default="gpt-4o-mini", description="Model when a node names none")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, url):
        """Only URLs for a supported backend are accepted."""
        if not url:
            raise ValueError("Database URL cannot be empty")
        scheme = _url_scheme(url)
        supported = [db_type.value for db_type in DatabaseType]
        if scheme not in supported:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported}")
        return url

    @field_validator('max_concurrent_executions', 'max_node_invocations', 'websocket_max_connections')
    @classmethod
    def validate_positive_limits(cls, limit):
        if limit < 1:
            raise ValueError("Limits must be at least 1")
        return limit

    @field_validator('node_timeout', 'http_default_timeout')
    @classmethod
    def validate_timeouts(cls, timeout):
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be positive")
        return timeout

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType(_url_scheme(self.database_url))

    @property
    def is_sqlite(self) -> bool:
        return self.database_type == DatabaseType.SQLITE

    def get_database_connect_args(self) -> Dict[str, Any]:
        """Driver arguments: SQLite connections are shared with pool threads."""
        return {"check_same_thread": False} if self.is_sqlite else {}

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Build settings from ``NODEFLOW_<FIELD>`` variables; unset variables keep the defaults."""
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw == "":
                continue
            values[name] = _ENV_PARSERS.get(name, str)(raw)

        if "openai_api_key" not in values and os.getenv("OPENAI_API_KEY"):
            values["openai_api_key"] = os.getenv("OPENAI_API_KEY")

        return cls(**values)


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ('true', '1', 'yes', 'on')


_ENV_PARSERS: Dict[str, Callable[[str], Any]] = {
    "debug": _parse_bool,
    "database_echo": _parse_bool,
    "log_structured": _parse_bool,
    "smtp_use_tls": _parse_bool,
    "max_concurrent_executions": int,
    "max_node_invocations": int,
    "websocket_max_connections": int,
    "smtp_port": int,
    "node_timeout": float,
    "http_default_timeout": float,
    "log_level": lambda raw: LogLevel(raw.strip().upper()),
}


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Process-wide settings, read from the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load a ``.env`` file (``config_file`` or ``./.env``) and rebuild the settings."""
    global _config
    from dotenv import load_dotenv

    env_file = config_file if config_file and os.path.exists(config_file) else '.env'
    if os.path.exists(env_file):
        load_dotenv(env_file)

    _config = AppConfig.from_env()
    return _config


def reset_config():
    """Forget the process-wide settings (mainly for testing)."""
    global _config
    _config = None


def _ensure_parent_dir(path: str, what: str, errors: list) -> None:
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create {what} directory {directory}: {e}")


def validate_config(config: AppConfig) -> None:
    """
    Check settings against the environment they will run in.

    Creates missing directories for the SQLite file and the log file.

    Raises:
        ConfigurationError: Listing every problem found
    """
    errors = []

    if config.is_sqlite and ":memory:" not in config.database_url:
        _ensure_parent_dir(config.database_url.split(":///", 1)[-1], "database", errors)

    if config.log_file:
        _ensure_parent_dir(config.log_file, "log", errors)

    if config.smtp_username and not config.smtp_password:
        errors.append("SMTP username is set but SMTP password is missing")

    if errors:
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


def get_development_config() -> AppConfig:
    """Verbose settings with SQL echo and events mirrored to the log."""
    return AppConfig(debug=True, log_level=LogLevel.DEBUG, database_echo=True)


def get_production_config() -> AppConfig:
    """JSON log lines, no SQL echo."""
    return AppConfig(log_level=LogLevel.INFO, log_structured=True)


def get_testing_config() -> AppConfig:
    """In-memory database, small pool and tight limits."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_concurrent_executions=2,
        max_node_invocations=100,
        node_timeout=10
    )
