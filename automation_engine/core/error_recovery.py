"""Retry support for transient storage failures."""

import time
import random
from typing import Callable, Any, Optional, List, Type
from functools import wraps

from .exceptions import WorkflowEngineError, TransientError, PersistenceWriteError
from .logging import get_logger, ErrorRecoveryLogger


logger = get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 5.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [
            TransientError, PersistenceWriteError
        ]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if an exception should be retried."""
        if attempt >= self.max_attempts:
            return False

        if not any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions):
            return False

        if isinstance(exception, WorkflowEngineError):
            return exception.recoverable

        return True

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


def with_retry(config: Optional[RetryConfig] = None):
    """Decorator to add retry logic to functions."""
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return _execute_with_retry(func, config, *args, **kwargs)
        return wrapper

    return decorator


def _execute_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """Execute function with retry logic."""
    recovery_logger = ErrorRecoveryLogger(func.__name__)

    attempt = 1
    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e, attempt):
                if attempt > 1:
                    recovery_logger.log_recovery_failure(func.__name__, e, attempt)
                raise

            delay = config.get_delay(attempt)
            recovery_logger.log_recovery_attempt(
                func.__name__, e, attempt, config.max_attempts
            )
            time.sleep(delay)
            attempt += 1
