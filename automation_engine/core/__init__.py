"""Core automation engine components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    NoTriggerNodeError,
    WorkflowInactiveError,
    UnknownNodeCategoryError,
    UnknownNodeSubtypeError,
    StepExecutionError,
    CycleDetectedError,
    TraversalLimitError,
    ExecutionTimeoutError,
    ExecutionCancelledError,
    StorageError,
    GraphLoadError,
    ExecutionNotFoundError,
    PersistenceWriteError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .executor_registry import ExecutorRegistry, create_default_registry
from .graph_store import GraphStore
from .traversal import CancellationToken, TraversalEngine, TraversalResult
from .lifecycle import ExecutionLifecycleManager

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "NoTriggerNodeError",
    "WorkflowInactiveError",
    "UnknownNodeCategoryError",
    "UnknownNodeSubtypeError",
    "StepExecutionError",
    "CycleDetectedError",
    "TraversalLimitError",
    "ExecutionTimeoutError",
    "ExecutionCancelledError",
    "StorageError",
    "GraphLoadError",
    "ExecutionNotFoundError",
    "PersistenceWriteError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "ExecutorRegistry",
    "create_default_registry",
    "GraphStore",
    "CancellationToken",
    "TraversalEngine",
    "TraversalResult",
    "ExecutionLifecycleManager",
]
