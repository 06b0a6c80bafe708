from __future__ import annotations

from fastapi import APIRouter

from quota_gate.core.rate_limit import get_rate_limiter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Reports liveness plus the window store backend in use. Used by load
    balancers and monitoring systems; never consumes quota. The status is
    ``"degraded"`` while the store does not answer (admission then follows
    each policy's failure mode), but the endpoint itself still returns 200.

    Returns:
        dict: ``{"status": "ok" | "degraded", "backend": "memory" | "redis"}``.
    """

    store = get_rate_limiter().store
    status = "ok" if store.ping() else "degraded"
    return {"status": status, "backend": store.backend_name}
