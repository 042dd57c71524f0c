"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

DEFAULT_DATABASE_URL = "sqlite:///./automation_engine.db"

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

# Base class for all database models
Base = declarative_base()


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create database engine with configuration."""
    global _engine, _session_factory

    if _engine is None:
        if database_url is None:
            database_url = os.getenv("AUTOMATION_ENGINE_DATABASE_URL", DEFAULT_DATABASE_URL)

        if connect_args is None:
            if database_url.startswith("sqlite"):
                connect_args = {"check_same_thread": False}
            else:
                connect_args = {}

        if database_url.startswith("sqlite"):
            _engine = create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        else:
            _engine = create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                pool_pre_ping=True
            )
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def init_database(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Point the module at a (possibly new) database URL and return its engine."""
    reset_database_engine()
    return get_database_engine(database_url=database_url, echo=echo)


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global _engine, _session_factory
    if _engine:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_session() -> Session:
    """Open a new session bound to the current engine."""
    if _session_factory is None:
        get_database_engine()
    return _session_factory()


def create_tables():
    """Create all database tables."""
    from . import models  # noqa: F401  registers the mapped classes

    Base.metadata.create_all(bind=get_database_engine())


def drop_tables():
    """Drop all database tables."""
    from . import models  # noqa: F401

    Base.metadata.drop_all(bind=get_database_engine())
