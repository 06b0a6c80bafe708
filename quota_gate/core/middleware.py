"""HTTP middleware for request correlation and caller address capture.

``request_id_middleware``:
- Accepts an incoming X-Request-ID header or generates a UUID
- Stores it in contextvars for log correlation and echoes it on the response
- Adds the total request duration as X-Request-Duration-ms

``client_address_middleware``:
- Captures the forwarded-address chain and peer address of the request
- Stores them in contextvars so admission helpers can resolve "the current
  caller" without the handler passing the request around

Both clear their context after the request to prevent leaks between requests.

Usage:
    app.middleware("http")(client_address_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from quota_gate.core.config import settings
from quota_gate.core.logging import clear_request_id, set_request_id
from quota_gate.services.identity import (
    ClientAddress,
    clear_client_address,
    set_client_address,
)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate or generate a correlation id for the request.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response with request id and duration headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def client_address_middleware(request: Request, call_next) -> Response:
    """Expose the caller's address metadata to admission helpers."""

    set_client_address(
        ClientAddress.from_request(request, forwarded_header=settings.rate_limit.forwarded_header)
    )
    try:
        return await call_next(request)
    finally:
        clear_client_address()
