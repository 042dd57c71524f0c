"""Database models and storage layer."""

from .database import (
    Base,
    get_session,
    get_database_engine,
    init_database,
    reset_database_engine,
    create_tables,
    drop_tables,
)
from .models import WorkflowModel, WorkflowExecutionModel

__all__ = [
    "Base",
    "get_session",
    "get_database_engine",
    "init_database",
    "reset_database_engine",
    "create_tables",
    "drop_tables",
    "WorkflowModel",
    "WorkflowExecutionModel",
]
