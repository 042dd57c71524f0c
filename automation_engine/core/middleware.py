"""Middleware for error handling and logging."""

import time
import uuid
from datetime import datetime
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    ExecutionNotFoundError,
    GraphLoadError,
    GraphValidationError,
    NoTriggerNodeError,
    NodeDispatchError,
    PersistenceWriteError,
    TransientError,
    WorkflowEngineError,
    WorkflowInactiveError,
    create_error_response,
)
from .logging import get_logger, set_logging_context, clear_logging_context


logger = get_logger(__name__)


def status_code_for_error(error: WorkflowEngineError) -> int:
    """Map an engine error to the HTTP status code returned to clients."""
    if isinstance(error, (GraphValidationError, NodeDispatchError)):
        return 400
    if isinstance(error, NoTriggerNodeError):
        return 422
    if isinstance(error, WorkflowInactiveError):
        return 409
    if isinstance(error, ExecutionNotFoundError):
        return 404
    if isinstance(error, GraphLoadError):
        return 404 if error.details.get("not_found") else 500
    if isinstance(error, (PersistenceWriteError, TransientError)):
        return 503
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware that tags requests with an ID and turns errors into JSON."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.time()

        set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            logger.info(f"Request started: {request.method} {request.url.path}")
            response = await call_next(request)
            duration = time.time() - start_time

            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Duration: {duration:.3f}s"
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except WorkflowEngineError as e:
            duration = time.time() - start_time
            logger.warning(
                f"Engine error: {request.method} {request.url.path} - "
                f"Error: {e.error_code} - Duration: {duration:.3f}s",
                extra={"error_details": e.to_dict()}
            )
            return JSONResponse(
                status_code=status_code_for_error(e),
                content=create_error_response(e),
                headers={"X-Request-ID": request_id}
            )

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Unexpected error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Duration: {duration:.3f}s",
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "details": {
                        "error_type": type(e).__name__,
                        "timestamp": datetime.utcnow().isoformat()
                    },
                    "request_id": request_id
                },
                headers={"X-Request-ID": request_id}
            )

        finally:
            clear_logging_context()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Debug logging of request and response details."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.debug(
            f"Request details: {request.method} {request.url} - "
            f"Query params: {dict(request.query_params)}"
        )

        response = await call_next(request)
        duration = time.time() - start_time

        logger.debug(
            f"Response details: Status {response.status_code} - Duration: {duration:.3f}s"
        )
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
