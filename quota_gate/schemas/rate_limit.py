"""Pydantic schemas for admission and rate limit introspection routes."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from quota_gate.services.access_control import ManageAction
from quota_gate.services.policies import FailureMode, Policy, PolicyName
from quota_gate.services.rate_limiter import RateLimitInfo


class PolicyResponse(BaseModel):
    """One entry of the policy table."""

    name: PolicyName = Field(..., description="Policy name.")
    limit: int = Field(..., ge=0, description="Admissions allowed per window.")
    window_seconds: float = Field(..., gt=0, description="Fixed window length in seconds.")
    description: str = Field(..., description="Human-readable quota, e.g. '5 requests per 15 minutes'.")
    failure_mode: FailureMode = Field(
        ..., description="Decision applied when the window store is unavailable ('open' or 'closed')."
    )

    @classmethod
    def from_policy(cls, policy: Policy) -> "PolicyResponse":
        return cls(
            name=policy.name,
            limit=policy.limit,
            window_seconds=policy.window_seconds,
            description=policy.description,
            failure_mode=policy.failure_mode,
        )


class RateLimitInfoResponse(BaseModel):
    """Quota state of an identity, reported without consuming quota."""

    policy: str = Field(..., description="Policy the state belongs to.")
    limit: int = Field(..., ge=0, description="Admissions allowed per window.")
    remaining: int = Field(..., ge=0, description="Admissions left in the current window.")
    reset: datetime = Field(..., description="When the current window ends (UTC).")

    @classmethod
    def from_info(cls, info: RateLimitInfo) -> "RateLimitInfoResponse":
        return cls(policy=info.policy, limit=info.limit, remaining=info.remaining, reset=info.reset)


class AdmissionResponse(BaseModel):
    """Body returned by the admission route when a request is admitted."""

    admitted: bool = Field(True, description="Always true; denials return 429.")
    policy: str = Field(..., description="Policy that was applied.")
    remaining: int = Field(..., ge=0, description="Admissions left in the current window.")
    reset: datetime = Field(..., description="When the current window ends (UTC).")


class ManageAccessRequest(BaseModel):
    """Operator action on the allowlist or ban table."""

    action: ManageAction = Field(..., description="allowlist, unallowlist, ban or unban.")
    identity: str = Field(..., min_length=1, description="Identity (caller address) to act on.")
    duration_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Ban length for action=ban (defaults to 24 hours).",
    )


class ManageAccessResponse(BaseModel):
    action: ManageAction
    applied: bool = True
