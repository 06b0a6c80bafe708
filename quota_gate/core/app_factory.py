"""Application factory for the FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated instances.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from quota_gate.api.routes import admission_router, health_router, rate_limits_router
from quota_gate.core.config import settings
from quota_gate.core.exception_handlers import setup_exception_handlers
from quota_gate.core.logging import configure_logging
from quota_gate.core.middleware import client_address_middleware, request_id_middleware
from quota_gate.core.openapi import apply_openapi_customizations
from quota_gate.core.rate_limit import get_rate_limiter
from quota_gate.services.sweeper import WindowSweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the limiter up front and run the sweeper for the app's lifetime."""

    get_rate_limiter()
    sweeper: WindowSweeper | None = None
    if settings.rate_limit.sweep_interval_seconds > 0:
        sweeper = WindowSweeper(
            get_rate_limiter,
            interval_seconds=settings.rate_limit.sweep_interval_seconds,
            grace_factor=settings.rate_limit.sweep_grace_factor,
        )
        sweeper.start()
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Quota Gate",
        debug=settings.app.debug,
        description=(
            "Request admission service: named fixed-window quotas (authentication, "
            "public submissions, administrative mutations, ...) keyed by caller "
            "address, with read-only quota introspection and allowlist/ban management."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware (the last one added runs first)
    app.middleware("http")(client_address_middleware)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(admission_router, prefix="/v1")
    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
