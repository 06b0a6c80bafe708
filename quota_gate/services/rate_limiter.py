"""Admission decisions.

The limiter combines the policy registry, identity resolution and the window
store into a single ``check`` call, and answers read-only ``info`` queries
that report quota state without consuming it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from quota_gate.adapters.window_store.base import AbstractWindowStore
from quota_gate.core.clock import Clock, system_clock
from quota_gate.core.errors import StoreUnavailableError
from quota_gate.services.access_control import AllowList, BanList
from quota_gate.services.identity import ClientAddress, hash_identity, resolve_identity
from quota_gate.services.policies import FailureMode, Policy, PolicyName, PolicyRegistry

logger = logging.getLogger(__name__)


def bucket_name(policy_name: str | PolicyName) -> str:
    """Store key component for a requested policy name (the raw name, even if unknown)."""
    return getattr(policy_name, "value", policy_name)


@dataclass(frozen=True)
class Decision:
    """Outcome of one admission check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Admissions left in the current window (never negative).
        reset_at: UNIX epoch seconds when the current window (or ban) ends.
        limit: Policy limit.
        policy: Name of the policy that was applied.
        identity: Identity the check was counted against.
        description: Human-readable quota of the applied policy.
        retry_after_seconds: Suggested wait in seconds when denied.
        banned: Denied because the identity is temporarily banned.
        degraded: Decided by the failure mode because the store was unavailable.
    """

    allowed: bool
    remaining: int
    reset_at: float
    limit: int
    policy: str
    identity: str
    description: str = ""
    retry_after_seconds: int | None = None
    banned: bool = False
    degraded: bool = False

    @property
    def reset(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)


@dataclass(frozen=True)
class RateLimitInfo:
    """Quota state for one (policy, identity) pair, as seen without consuming it."""

    remaining: int
    reset_at: float
    limit: int
    policy: str
    description: str

    @property
    def reset(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)


class RateLimiter:
    """Policy-driven, identity-keyed fixed-window admission control."""

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        registry: PolicyRegistry | None = None,
        allowlist: AllowList | None = None,
        bans: BanList | None = None,
        bans_enabled: bool = False,
        enabled: bool = True,
        clock: Clock = system_clock,
    ) -> None:
        self.store = store
        self.registry = registry if registry is not None else PolicyRegistry()
        self.allowlist = allowlist if allowlist is not None else AllowList()
        self.bans = bans if bans is not None else BanList(clock=clock)
        self.bans_enabled = bans_enabled
        self.enabled = enabled
        self._clock = clock

    def check(self, policy_name: str | PolicyName, client: ClientAddress | None) -> Decision:
        """Count one admission check for the caller and decide on it.

        Unknown names are limited by the default policy but counted in a bucket
        of their own, so they never draw down genuine default traffic.

        Args:
            policy_name: Route category.
            client: Address metadata of the caller.

        Returns:
            Decision for this request.

        Raises:
            Exception: Unexpected store failures other than unavailability
                propagate to the caller.
        """

        identity = resolve_identity(client)
        policy = self.registry.resolve(policy_name)
        return self.check_identity(policy, identity, bucket=bucket_name(policy_name))

    def check_identity(self, policy: Policy, identity: str, *, bucket: str | None = None) -> Decision:
        bucket = bucket or policy.name.value
        if not self.enabled:
            logger.debug("rate_limit.disabled", extra={"policy": policy.name.value})
            return self._pass_through(policy, identity)

        if policy.exempt_allowlisted and identity in self.allowlist:
            logger.debug(
                "rate_limit.allowlisted",
                extra={"policy": policy.name.value, "identity_hash": hash_identity(identity)},
            )
            return self._pass_through(policy, identity)

        if self.bans_enabled:
            banned_until = self.bans.banned_until(policy.name.value, identity)
            if banned_until is not None:
                return self._banned(policy, identity, banned_until)

        try:
            count, window_start = self.store.increment_and_read(
                bucket, identity, policy.limit, policy.window_seconds
            )
        except StoreUnavailableError:
            return self._degraded(policy, identity)

        allowed = count <= policy.limit
        remaining = max(0, policy.limit - count)
        reset_at = window_start + policy.window_seconds

        if allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "policy": policy.name.value,
                    "identity_hash": hash_identity(identity),
                    "limit": policy.limit,
                    "remaining": remaining,
                    "window_s": policy.window_seconds,
                },
            )
            return Decision(
                allowed=True,
                remaining=remaining,
                reset_at=reset_at,
                limit=policy.limit,
                policy=policy.name.value,
                identity=identity,
                description=policy.description,
            )

        retry_after = self._retry_after(reset_at)
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "policy": policy.name.value,
                "identity_hash": hash_identity(identity),
                "limit": policy.limit,
                "remaining": remaining,
                "window_s": policy.window_seconds,
                "retry_after_s": retry_after,
            },
        )

        if self.bans_enabled:
            banned_until = self.bans.record_violation(policy, identity)
            if banned_until is not None:
                return self._banned(policy, identity, banned_until)

        return Decision(
            allowed=False,
            remaining=remaining,
            reset_at=reset_at,
            limit=policy.limit,
            policy=policy.name.value,
            identity=identity,
            description=policy.description,
            retry_after_seconds=retry_after,
        )

    def info(self, policy_name: str | PolicyName, identity: str) -> RateLimitInfo:
        """Report quota state for an identity without consuming it.

        With no live counter the full limit is reported, with a reset time as
        if a fresh window started now.
        """

        policy = self.registry.resolve(policy_name)
        snapshot = self.store.peek(bucket_name(policy_name), identity)

        if snapshot is None:
            return self.full_quota(policy_name)

        return RateLimitInfo(
            remaining=max(0, policy.limit - snapshot.count),
            reset_at=snapshot.window_start + policy.window_seconds,
            limit=policy.limit,
            policy=policy.name.value,
            description=policy.description,
        )

    def full_quota(self, policy_name: str | PolicyName) -> RateLimitInfo:
        """Quota state of a window that would open now, without touching the store."""

        policy = self.registry.resolve(policy_name)
        return RateLimitInfo(
            remaining=policy.limit,
            reset_at=self._clock() + policy.window_seconds,
            limit=policy.limit,
            policy=policy.name.value,
            description=policy.description,
        )

    def _retry_after(self, reset_at: float) -> int:
        return max(0, int(math.ceil(reset_at - self._clock())))

    def _pass_through(self, policy: Policy, identity: str) -> Decision:
        return Decision(
            allowed=True,
            remaining=policy.limit,
            reset_at=self._clock() + policy.window_seconds,
            limit=policy.limit,
            policy=policy.name.value,
            identity=identity,
            description=policy.description,
        )

    def _banned(self, policy: Policy, identity: str, banned_until: float) -> Decision:
        return Decision(
            allowed=False,
            remaining=0,
            reset_at=banned_until,
            limit=policy.limit,
            policy=policy.name.value,
            identity=identity,
            description=policy.description,
            retry_after_seconds=self._retry_after(banned_until),
            banned=True,
        )

    def _degraded(self, policy: Policy, identity: str) -> Decision:
        fail_open = policy.failure_mode is FailureMode.OPEN
        reset_at = self._clock() + policy.window_seconds
        logger.warning(
            "rate_limit.store_unavailable",
            extra={
                "policy": policy.name.value,
                "identity_hash": hash_identity(identity),
                "failure_mode": policy.failure_mode.value,
                "backend": self.store.backend_name,
            },
        )
        return Decision(
            allowed=fail_open,
            remaining=policy.limit if fail_open else 0,
            reset_at=reset_at,
            limit=policy.limit,
            policy=policy.name.value,
            identity=identity,
            description=policy.description,
            retry_after_seconds=None if fail_open else self._retry_after(reset_at),
            degraded=True,
        )
