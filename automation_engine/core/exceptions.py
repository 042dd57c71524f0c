"""Custom exceptions for the automation engine with detailed error information."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    RESOURCE = "resource"
    BUSINESS_LOGIC = "business_logic"


class WorkflowEngineError(Exception):
    """Base exception for all automation engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class GraphValidationError(WorkflowEngineError):
    """Raised when a workflow graph fails structural validation."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_name:
            self.add_context(workflow_name=workflow_name)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class NoTriggerNodeError(WorkflowEngineError):
    """Raised when a workflow graph contains no trigger node."""

    def __init__(self, message: str = "No trigger nodes found in workflow", workflow_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class WorkflowInactiveError(WorkflowEngineError):
    """Raised when a run is requested for a deactivated workflow."""

    def __init__(self, message: str, workflow_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.BUSINESS_LOGIC,
            **kwargs
        )
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class NodeDispatchError(WorkflowEngineError):
    """Base class for errors resolving a node to its executor."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        category_name: Optional[str] = None,
        subtype: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if category_name:
            self.add_context(node_category=category_name)
        if subtype:
            self.add_context(node_subtype=subtype)


class UnknownNodeCategoryError(NodeDispatchError):
    """Raised when a node's category is not one the engine understands."""


class UnknownNodeSubtypeError(NodeDispatchError):
    """Raised when no executor is registered for a node's subtype."""


class StepExecutionError(WorkflowEngineError):
    """Raised by a step executor when a node cannot be executed."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)


class TraversalError(WorkflowEngineError):
    """Base class for guards raised by the traversal engine itself."""

    def __init__(self, message: str, execution_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, **kwargs)
        if execution_id:
            self.add_context(execution_id=execution_id)


class CycleDetectedError(TraversalError):
    """Raised when a chain follows an edge back onto its own path."""

    def __init__(self, message: str, cycle: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        if cycle:
            self.add_details(cycle=cycle)


class TraversalLimitError(TraversalError):
    """Raised when a run exceeds its depth or node-count budget."""

    def __init__(
        self,
        message: str,
        limit_name: Optional[str] = None,
        limit: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, category=ErrorCategory.RESOURCE, **kwargs)
        if limit_name is not None and limit is not None:
            self.add_details(limit_name=limit_name, limit=limit)


class ExecutionTimeoutError(TraversalError):
    """Raised when a run passes its deadline."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.RESOURCE, **kwargs)
        if timeout is not None:
            self.add_details(timeout=timeout)


class ExecutionCancelledError(TraversalError):
    """Raised inside a traversal once its cancellation token is set."""

    def __init__(self, message: str = "Cancelled by user", **kwargs):
        super().__init__(message, severity=ErrorSeverity.LOW, **kwargs)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.STORAGE,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class GraphLoadError(StorageError):
    """Raised when a workflow definition cannot be retrieved."""

    def __init__(self, message: str, workflow_id: Optional[str] = None, **kwargs):
        super().__init__(message, table="workflows", **kwargs)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class ExecutionNotFoundError(StorageError):
    """Raised when an execution record does not exist."""

    def __init__(self, message: str, execution_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            table="workflow_executions",
            severity=ErrorSeverity.LOW,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)


class PersistenceWriteError(StorageError):
    """Raised when a record could not be durably written.

    ``pending`` holds the in-memory result that failed to commit so a caller
    can retry the write.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        pending: Optional[Any] = None,
        **kwargs
    ):
        super().__init__(
            message,
            operation=operation,
            table=table,
            recoverable=True,
            retry_after=3,
            **kwargs
        )
        self.pending = pending


class TransientError(WorkflowEngineError):
    """Raised for transient errors that should be retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            recoverable=True,
            retry_after=5,
            **kwargs
        )


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
