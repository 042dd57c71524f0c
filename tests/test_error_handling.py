"""Tests for the exception hierarchy, retries and logging context."""

import threading
import pytest

from automation_engine.core.error_recovery import RetryConfig, with_retry
from automation_engine.core.exceptions import (
    ExecutionNotFoundError,
    GraphLoadError,
    GraphValidationError,
    NoTriggerNodeError,
    PersistenceWriteError,
    StepExecutionError,
    UnknownNodeCategoryError,
    WorkflowEngineError,
    WorkflowInactiveError,
    create_error_response,
)
from automation_engine.core.logging import (
    clear_logging_context,
    get_logging_context,
    set_logging_context,
)
from automation_engine.core.middleware import status_code_for_error


class TestErrorResponses:
    @pytest.mark.parametrize("error,expected", [
        (GraphValidationError("bad graph"), 400),
        (UnknownNodeCategoryError("Unknown node type: robot"), 400),
        (NoTriggerNodeError(), 422),
        (WorkflowInactiveError("paused"), 409),
        (ExecutionNotFoundError("gone"), 404),
        (GraphLoadError("gone").add_details(not_found=True), 404),
        (GraphLoadError("corrupt"), 500),
        (PersistenceWriteError("disk full"), 503),
        (StepExecutionError("recipient invalid"), 500),
    ])
    def test_status_codes(self, error, expected):
        assert status_code_for_error(error) == expected

    def test_error_response_shape(self):
        error = GraphValidationError("Graph validation failed", validation_errors=["dangling edge"],
                                     workflow_name="Draft")
        response = create_error_response(error)

        assert response["error"] == "GraphValidationError"
        assert response["message"] == "Graph validation failed"
        assert response["details"]["validation_errors"] == ["dangling edge"]
        assert response["details"]["category"] == "validation"
        assert response["context"] == {"workflow_name": "Draft"}

    def test_base_error_defaults(self):
        error = WorkflowEngineError("boom")
        assert error.error_code == "WorkflowEngineError"
        assert error.to_dict()["exception_type"] == "WorkflowEngineError"

    def test_persistence_errors_are_recoverable(self):
        error = PersistenceWriteError("disk full", operation="finalize_execution", pending="result")
        assert error.recoverable
        assert error.pending == "result"
        assert error.context["operation"] == "finalize_execution"


class TestRetry:
    def test_retries_transient_write_failures(self):
        calls = []

        @with_retry(RetryConfig(max_attempts=3, base_delay=0, jitter=False))
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise PersistenceWriteError("database is locked")
            return "stored"

        assert flaky() == "stored"
        assert len(calls) == 3

    def test_gives_up_after_max_attempts(self):
        calls = []

        @with_retry(RetryConfig(max_attempts=2, base_delay=0, jitter=False))
        def always_fails():
            calls.append(1)
            raise PersistenceWriteError("database is locked")

        with pytest.raises(PersistenceWriteError):
            always_fails()
        assert len(calls) == 2

    def test_does_not_retry_other_errors(self):
        calls = []

        @with_retry(RetryConfig(max_attempts=3, base_delay=0))
        def not_found():
            calls.append(1)
            raise ExecutionNotFoundError("missing")

        with pytest.raises(ExecutionNotFoundError):
            not_found()
        assert len(calls) == 1

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)
        assert config.get_delay(1) == 1.0
        assert config.get_delay(2) == 2.0
        assert config.get_delay(5) == 3.0


class TestLoggingContext:
    def test_context_is_per_thread(self):
        set_logging_context(execution_id="exec-1")
        seen = {}

        def worker():
            seen["context"] = get_logging_context()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        try:
            assert get_logging_context() == {"execution_id": "exec-1"}
            assert seen["context"] == {}
        finally:
            clear_logging_context()
        assert get_logging_context() == {}