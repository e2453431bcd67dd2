"""SQLAlchemy engine and session plumbing for the record store."""

from typing import Any, Dict, Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

DEFAULT_DATABASE_URL = "sqlite:///./nodeflow.db"

Base = declarative_base()

# Process default, built on first use by stores created without an engine
_default_engine: Optional[Engine] = None
_default_sessions: Optional[sessionmaker] = None


def create_database_engine(database_url: str = DEFAULT_DATABASE_URL,
                           echo: bool = False,
                           connect_args: Optional[Dict[str, Any]] = None) -> Engine:
    """Build an engine for ``database_url``.

    SQLite connections may be used from pool threads. An in-memory SQLite
    database is held on a single shared connection, otherwise each session
    would get its own empty database.
    """
    sqlite = database_url.startswith("sqlite")
    if connect_args is None:
        connect_args = {"check_same_thread": False} if sqlite else {}

    options: Dict[str, Any] = {"echo": echo, "connect_args": connect_args}
    if sqlite and ":memory:" in database_url:
        options["poolclass"] = StaticPool
    return create_engine(database_url, **options)


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[Dict[str, Any]] = None) -> Engine:
    """Process default engine; the arguments only apply on the first call."""
    global _default_engine
    if _default_engine is None:
        _default_engine = create_database_engine(database_url or DEFAULT_DATABASE_URL, echo, connect_args)
    return _default_engine


def reset_database_engine():
    """Dispose of the process default engine (mainly for testing)."""
    global _default_engine, _default_sessions
    if _default_engine is not None:
        _default_engine.dispose()
    _default_engine = None
    _default_sessions = None


def _bind_sessions(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Sessions on ``engine``, or on the process default engine when omitted."""
    global _default_sessions
    if engine is not None:
        return _bind_sessions(engine)
    if _default_sessions is None:
        _default_sessions = _bind_sessions(get_database_engine())
    return _default_sessions


def create_tables(engine: Optional[Engine] = None):
    """Create the workflow, execution and log tables if missing."""
    from . import models  # noqa: F401  registers the ORM tables on Base

    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    Base.metadata.drop_all(bind=engine or get_database_engine())
