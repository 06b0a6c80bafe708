from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from quota_gate.core.auth import verify_api_key
from quota_gate.core.rate_limit import get_rate_limiter
from quota_gate.schemas.rate_limit import (
    ManageAccessRequest,
    ManageAccessResponse,
    PolicyResponse,
    RateLimitInfoResponse,
)
from quota_gate.services.access_control import manage_access
from quota_gate.services.admission import get_rate_limit_info

router = APIRouter(
    prefix="/rate-limits",
    tags=["Rate Limits"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("/policies", response_model=list[PolicyResponse])
def list_policies() -> list[PolicyResponse]:
    """List the effective policy table (built-ins with configured overrides)."""

    return [PolicyResponse.from_policy(policy) for policy in get_rate_limiter().registry.all()]


@router.get("/{policy}/identities/{identity}", response_model=RateLimitInfoResponse)
def rate_limit_info(policy: str, identity: str) -> RateLimitInfoResponse:
    """Report an identity's quota state without consuming it.

    Args:
        policy: Policy name; unknown names report the default policy.
        identity: Identity key (usually the caller's address).

    Raises:
        StoreUnavailableError: When the shared store cannot be reached (503).
    """

    return RateLimitInfoResponse.from_info(get_rate_limit_info(policy, identity))


@router.post("/manage", response_model=ManageAccessResponse)
def manage(payload: ManageAccessRequest) -> ManageAccessResponse:
    """Allowlist, un-allowlist, ban or unban an identity.

    Raises:
        HTTPException: 400 if the identity is blank.
    """

    limiter = get_rate_limiter()
    try:
        manage_access(
            payload.action,
            payload.identity,
            allowlist=limiter.allowlist,
            bans=limiter.bans,
            duration_seconds=payload.duration_seconds,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return ManageAccessResponse(action=payload.action)
