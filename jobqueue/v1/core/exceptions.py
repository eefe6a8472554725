"""
Error taxonomy of the job queue and the admin API's response envelopes.

Rejection errors (``InvalidJobType``, ``InvalidPayload``) reach the
producer as 400s. Execution errors never leave the worker: they are
recorded on the job as ``last_error``.
"""

import time
import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobqueue.config.logging import add_request_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class JobQueueException(Exception):
    """Base exception for errors surfaced to job producers."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidJobType(JobQueueException):
    """Raised when a producer submits a type with no registered handler."""

    def __init__(self, job_type: str, known_types: list[str] | None = None):
        super().__init__(
            f"Invalid job type: {job_type}",
            status.HTTP_400_BAD_REQUEST,
            {"type": job_type, "available_types": sorted(known_types or [])},
        )
        self.job_type = job_type


class InvalidPayload(JobQueueException):
    """Raised when a job payload or its enqueue options fail validation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class NotFoundError(JobQueueException):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class HandlerNotFound(KeyError):
    """Raised by the handler registry for an unknown job type."""


class HandlerTimeout(Exception):
    """Raised inside a worker when a handler exceeds its execution timeout."""

    def __init__(self, job_type: str, timeout_s: float):
        self.job_type = job_type
        self.timeout_s = timeout_s
        super().__init__(f"Handler '{job_type}' timed out after {timeout_s}s")


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Error envelope: ``{ok: false, error{message, code, details}, ...}``."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Success envelope: ``{ok: true, data, ...}``."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(
            status_code=status_code,
            message=message,
            details=details,
            request_id=_request_id(request),
        ),
    )


async def job_queue_exception_handler(
    request: Request, exc: JobQueueException
) -> JSONResponse:
    logger.warning(
        "Rejected request",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_response(request, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
    return _error_response(request, exc.status_code, str(exc.detail))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed query or body parameters, before any queue code runs."""
    errors = jsonable_encoder(exc.errors())
    logger.info("Request validation failed", errors=errors)
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Request validation failed",
        {"errors": errors},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        exc_info=exc,
    )
    return _error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlates admin API log lines with an ``X-Request-ID``.

    An id sent by the caller (``jobctl`` or a proxy) is reused; otherwise a
    new one is generated. The id is echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            "Request handled",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
