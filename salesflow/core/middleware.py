"""HTTP middleware for error handling, request logging and slow-request monitoring."""

import time
import uuid
from datetime import datetime
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    InvalidStateError,
    NotFoundError,
    OrchestratorError,
    TransientError,
    WorkflowValidationError,
    create_error_response,
)
from .logging import clear_logging_context, get_logger, set_logging_context


logger = get_logger(__name__)


def status_code_for_error(error: OrchestratorError) -> int:
    """Map an engine error to its HTTP status code."""
    if isinstance(error, WorkflowValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, InvalidStateError):
        return 409
    if isinstance(error, TransientError):
        return 503
    # Storage and configuration errors are server faults
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns uncaught errors into the standard error body and tags responses with a request id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Request id for tracing across log lines
        request_id = str(uuid.uuid4())
        start_time = time.time()

        # Scoped to this request's task
        token = set_logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        )

        try:
            logger.info(f"Request started: {request.method} {request.url.path}")
            # Process request
            response = await call_next(request)
            duration = time.time() - start_time

            logger.info(
                f"Request completed: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - Duration: {duration:.3f}s"
            )
            # Echo the id so clients can quote it
            response.headers["X-Request-ID"] = request_id
            return response

        except OrchestratorError as e:
            # Known engine errors map to 4xx/5xx with the standard body
            duration = time.time() - start_time
            logger.warning(
                f"Orchestrator error: {request.method} {request.url.path} - "
                f"Error: {e.error_code} - Duration: {duration:.3f}s",
                extra={"extra_fields": {"error_details": e.to_dict()}}
            )
            return JSONResponse(
                status_code=status_code_for_error(e),
                content=create_error_response(e),
                headers={"X-Request-ID": request_id}
            )

        except Exception as e:
            # Anything else is an internal error
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
            # Restore the outer logging context
            clear_logging_context(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Debug-level request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        logger.debug(
            f"Request details: {request.method} {request.url} - "
            f"Query params: {dict(request.query_params)}"
        )

        # Process request
        response = await call_next(request)

        # Calculate duration
        duration = time.time() - start_time
        logger.debug(f"Response details: Status {response.status_code} - Duration: {duration:.3f}s")
        return response


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Warns about slow requests and reports response time in a header."""

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Slow requests usually mean a blocked event loop or a slow store
        if duration > self.slow_request_threshold:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path} - "
                f"Duration: {duration:.3f}s (threshold: {self.slow_request_threshold}s)"
            )

        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
