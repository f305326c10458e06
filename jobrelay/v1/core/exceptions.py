import time
import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobrelay.config.logging import add_request_context, get_logger

logger = get_logger(__name__)

# Status the delivery provider treats as "do not retry" when paired with
# the Upstash-NonRetryable-Error header.
NON_RETRYABLE_STATUS = 489

REQUEST_ID_HEADER = "X-Request-ID"


class JobRelayException(Exception):
    """
    Base exception for Job Relay.

    Subclasses pick their HTTP status through ``default_status``; the
    exception handler renders any of them as the standard error envelope.
    """

    default_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        self.message = message
        self.status_code = status_code or self.default_status
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(JobRelayException):
    """Fatal misconfiguration, such as an unregistered job type or a missing key."""


class ValidationError(JobRelayException):
    """A job payload, envelope or metadata failed its schema."""

    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(JobRelayException):
    default_status = status.HTTP_404_NOT_FOUND


class AuthenticityError(JobRelayException):
    """A delivery signature could not be verified."""

    default_status = status.HTTP_401_UNAUTHORIZED

    def __init__(
        self, message: str = "Invalid signature", details: dict[str, Any] | None = None
    ):
        super().__init__(message, details)


class PersistenceError(JobRelayException):
    """The execution record store is unavailable."""

    default_status = status.HTTP_503_SERVICE_UNAVAILABLE


class DeliveryError(JobRelayException):
    """The delivery provider rejected a request or could not be reached."""

    default_status = status.HTTP_502_BAD_GATEWAY


class ProcessingError(JobRelayException):
    """Base class for failures raised by job handlers."""


class TransientProcessingError(ProcessingError):
    """Handler failure that may succeed on redelivery."""


class PermanentProcessingError(ProcessingError):
    """Handler failure that no amount of redelivery can fix."""

    default_status = NON_RETRYABLE_STATUS


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
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
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_json(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(
            status_code, message, details, request_id=_request_id(request)
        ),
    )


async def job_relay_exception_handler(
    request: Request, exc: JobRelayException
) -> JSONResponse:
    """Render application exceptions; server-side failures log at error level."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_json(request, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
    return _error_json(request, exc.status_code, str(exc.detail))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Internal details stay in the logs
    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        exc_info=True,
    )
    return _error_json(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Bind a request id to the log context and echo it in X-Request-ID.

    A request id sent by the caller is kept so that a delivery can be traced
    across the provider, this service and its logs.
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

        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
