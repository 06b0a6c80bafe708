"""Rate limiting wiring for the HTTP layer.

This module builds the process-wide limiter from settings and exposes it to
FastAPI routes.

Design goals:
- Minimal coupling: routes depend on a dependency function or the admission
  helpers only, never on a concrete store.
- Swap-friendly: the window store can be replaced (memory or Redis) behind an
  abstract interface.
- Same rejection for every policy: a 429 with ``{"error": "Too Many Requests"}``.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from quota_gate.adapters.window_store.base import AbstractWindowStore
from quota_gate.adapters.window_store.in_memory import InMemoryWindowStore
from quota_gate.adapters.window_store.redis_store import RedisWindowStore
from quota_gate.core.config import RateLimitSettings, settings
from quota_gate.core.errors import RateLimitExceededError
from quota_gate.services.access_control import AllowList, BanList, parse_identity_list
from quota_gate.services.identity import ClientAddress
from quota_gate.services.policies import PolicyName, PolicyRegistry
from quota_gate.services.rate_limiter import Decision, RateLimiter

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS_BODY = {"error": "Too Many Requests"}
INTERNAL_ERROR_BODY = {"error": "Internal Server Error"}


_limiter: RateLimiter | None = None
_limiter_config: str | None = None


def build_window_store(cfg: RateLimitSettings) -> AbstractWindowStore:
    """Create the configured window store backend."""

    if cfg.backend == "redis":
        return RedisWindowStore.from_url(
            cfg.redis_url,
            timeout_seconds=cfg.redis_timeout_seconds,
            key_prefix=cfg.key_prefix,
        )
    return InMemoryWindowStore(shard_count=cfg.shard_count)


def build_rate_limiter(cfg: RateLimitSettings) -> RateLimiter:
    """Create a limiter (store, policies, allowlist, bans) from settings.

    Raises:
        ValidationAppError: If policy overrides are invalid.
    """

    return RateLimiter(
        build_window_store(cfg),
        registry=PolicyRegistry.from_overrides(cfg.policy_overrides),
        allowlist=AllowList(parse_identity_list(cfg.allowlist)),
        bans=BanList(),
        bans_enabled=cfg.bans_enabled,
        enabled=cfg.enabled,
    )


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter instance.

    The instance is cached in-module to preserve state across requests.
    If configuration changes (primarily in tests), the limiter is rebuilt.

    Returns:
        RateLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_config

    config = settings.rate_limit.model_dump_json()
    if _limiter is None or _limiter_config != config:
        _limiter = build_rate_limiter(settings.rate_limit)
        _limiter_config = config
        logger.info(
            "rate_limit.configured",
            extra={
                "backend": _limiter.store.backend_name,
                "enabled": _limiter.enabled,
                "bans_enabled": _limiter.bans_enabled,
            },
        )

    return _limiter


def set_rate_limiter(limiter: RateLimiter) -> None:
    """Install a specific limiter as the process-wide instance (tests, custom wiring)."""

    global _limiter, _limiter_config
    _limiter = limiter
    _limiter_config = settings.rate_limit.model_dump_json()


def reset_rate_limiter() -> None:
    """Forget the process-wide limiter; the next lookup rebuilds it from settings."""

    global _limiter, _limiter_config
    _limiter = None
    _limiter_config = None


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """Build ``Retry-After`` / ``X-RateLimit-*`` headers for a decision.

    ``X-RateLimit-Policy`` carries the quota in words, e.g. "5 requests per 15 minutes".
    """

    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at)),
    }
    if decision.description:
        headers["X-RateLimit-Policy"] = decision.description
    if decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def too_many_requests_response(headers: dict[str, str] | None = None) -> JSONResponse:
    """The one rejection every policy produces."""

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=dict(TOO_MANY_REQUESTS_BODY),
        headers=headers or None,
    )


def internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=dict(INTERNAL_ERROR_BODY),
    )


def require_admission(
    policy_name: str | PolicyName,
) -> Callable[[Request, Response], Awaitable[Decision]]:
    """FastAPI dependency factory enforcing a policy on a route.

    Usage:
        @router.post("/login", dependencies=[Depends(require_admission(PolicyName.AUTHENTICATION))])
        async def login(): ...

    The dependency consumes one unit of the caller's quota. When denied it
    raises RateLimitExceededError, which the global handler turns into the
    standard 429.
    """

    async def enforce(request: Request, response: Response) -> Decision:
        client = ClientAddress.from_request(
            request, forwarded_header=settings.rate_limit.forwarded_header
        )
        decision = get_rate_limiter().check(policy_name, client)
        headers = rate_limit_headers(decision) if settings.rate_limit.include_headers else {}

        if decision.allowed:
            response.headers.update(headers)
            return decision

        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message="Too Many Requests",
            details={"policy": decision.policy},
            retry_after_seconds=decision.retry_after_seconds,
            headers=headers,
        )

    return enforce
