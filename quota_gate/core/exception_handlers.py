"""Exception handlers registered on the FastAPI app.

- RateLimitExceededError: 429 ``{"error": "Too Many Requests"}``, identical
  for every policy
- other AppError subclasses: structured ``{"error": {...}}`` body, status by type
- anything else: generic 500 without exception text
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from quota_gate.core.errors import (
    AppError,
    AuthenticationAppError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from quota_gate.core.logging import get_request_id
from quota_gate.core.rate_limit import too_many_requests_response

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, AuthenticationAppError):
        return 403
    if isinstance(exc, StoreUnavailableError):
        return 503
    return 400


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return too_many_requests_response(exc.headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError as ``{"error": {code, message, request_id, details?}}``.

    Status codes: 403 for authentication failures, 503 when the window store
    is unreachable, 400 for everything else (bad overrides, bad input).
    """
    status_code = _status_for(exc)
    request_id = get_request_id()

    logger.warning(
        "app_error",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "path": request.url.path,
            "request_id": request_id,
        },
    )

    body = {"code": exc.code, "message": exc.message, "request_id": request_id}
    if exc.details:
        body["details"] = exc.details

    return JSONResponse(status_code=status_code, content={"error": body})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500. The exception is logged with its traceback; the client
    only gets a fixed message and the request id."""
    logger.error(
        "unhandled_exception",
        exc_info=exc,
        extra={
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on ``app``.

    Starlette resolves handlers along the exception's MRO, so the 429 handler
    wins over the generic AppError one.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
