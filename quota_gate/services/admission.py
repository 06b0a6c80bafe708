"""Admission helpers consumed by route handlers.

Three operations make up the whole integration surface:

- ``check_rate_limit(policy)``: boolean admit/deny for the current request.
- ``with_rate_limit(policy, handler)``: run ``handler`` only when admitted,
  otherwise return the standard 429 response.
- ``get_rate_limit_info(policy, identity)``: quota state without consuming it.

The current request's address is read from the request-scoped context set by
the HTTP middleware unless a ``client`` is passed explicitly.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from quota_gate.core.config import settings
from quota_gate.core.rate_limit import (
    get_rate_limiter,
    internal_error_response,
    rate_limit_headers,
    too_many_requests_response,
)
from quota_gate.services.identity import ClientAddress, get_client_address
from quota_gate.services.policies import PolicyName
from quota_gate.services.rate_limiter import RateLimiter, RateLimitInfo

logger = logging.getLogger(__name__)


def _resolve_limiter(limiter: RateLimiter | None) -> RateLimiter:
    return limiter if limiter is not None else get_rate_limiter()


def _resolve_client(client: ClientAddress | None) -> ClientAddress | None:
    return client if client is not None else get_client_address()


def check_rate_limit(
    policy_name: str | PolicyName,
    *,
    client: ClientAddress | None = None,
    limiter: RateLimiter | None = None,
) -> bool:
    """Consume one unit of quota for the current caller and report admission.

    Args:
        policy_name: Route category.
        client: Caller address; defaults to the current request's.
        limiter: Limiter to use; defaults to the process-wide instance.

    Returns:
        True when the request is admitted.
    """

    decision = _resolve_limiter(limiter).check(policy_name, _resolve_client(client))
    return decision.allowed


async def with_rate_limit(
    policy_name: str | PolicyName,
    handler: Callable[[], Any],
    *,
    client: ClientAddress | None = None,
    limiter: RateLimiter | None = None,
) -> Any:
    """Run ``handler`` if the current caller is admitted under ``policy_name``.

    - Denied: returns a 429 ``{"error": "Too Many Requests"}`` response and
      never calls ``handler``.
    - Limiter failure (other than a store outage covered by the policy's
      failure mode): returns a 500 ``{"error": "Internal Server Error"}``.
    - Admitted: returns whatever ``handler`` returns (awaited if needed).
      Exceptions raised by ``handler`` propagate unchanged.

    Example:
        >>> async def create_post(request):
        ...     return await with_rate_limit("administrative", lambda: save_post(request))
    """

    policy = getattr(policy_name, "value", policy_name)
    try:
        decision = _resolve_limiter(limiter).check(policy_name, _resolve_client(client))
    except Exception:
        logger.exception("rate_limit.check_failed", extra={"policy": policy})
        return internal_error_response()

    if not decision.allowed:
        headers = rate_limit_headers(decision) if settings.rate_limit.include_headers else None
        return too_many_requests_response(headers)

    result = handler()
    if inspect.isawaitable(result):
        result = await result
    return result


def get_rate_limit_info(
    policy_name: str | PolicyName,
    identity: str,
    *,
    limiter: RateLimiter | None = None,
) -> RateLimitInfo:
    """Return ``remaining`` and ``reset`` for an identity without consuming quota."""

    return _resolve_limiter(limiter).info(policy_name, identity)
