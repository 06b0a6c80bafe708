from __future__ import annotations

from fastapi import APIRouter

from quota_gate.core.errors import StoreUnavailableError
from quota_gate.core.rate_limit import get_rate_limiter
from quota_gate.schemas.rate_limit import AdmissionResponse
from quota_gate.services.admission import get_rate_limit_info, with_rate_limit
from quota_gate.services.identity import get_client_address, resolve_identity

router = APIRouter(tags=["Admission"])


@router.post(
    "/admission/{policy}",
    response_model=AdmissionResponse,
    responses={429: {"description": "Too Many Requests"}},
)
async def admit(policy: str):
    """Ask whether the calling client may proceed under ``policy``.

    Meant for edge proxies and other services that delegate admission control
    (e.g. an auth-request subrequest in front of a login form). Each call
    consumes one unit of the caller's quota.

    Args:
        policy: Policy name; unknown names are limited by the default policy.

    Returns:
        AdmissionResponse when admitted, otherwise the standard 429 response.
    """

    def admitted() -> AdmissionResponse:
        try:
            info = get_rate_limit_info(policy, resolve_identity(get_client_address()))
        except StoreUnavailableError:
            # Admitted by a fail-open policy during an outage; nothing was counted.
            info = get_rate_limiter().full_quota(policy)
        return AdmissionResponse(policy=info.policy, remaining=info.remaining, reset=info.reset)

    return await with_rate_limit(policy, admitted)
