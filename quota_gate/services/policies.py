"""Named admission policies.

Route categories map to a closed set of policy names. Lookups by a name that
is not part of the set fall back to the ``default`` policy, so a new or
mistyped call site is still limited rather than left unprotected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from quota_gate.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 60 * MINUTE


class PolicyName(str, Enum):
    AUTHENTICATION = "authentication"
    PUBLIC_SUBMISSION = "public-submission"
    ADMINISTRATIVE = "administrative"
    UPLOAD = "upload"
    API = "api"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: "str | PolicyName") -> "PolicyName | None":
        """Return the matching member, or None for names outside the set."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class FailureMode(str, Enum):
    """What to decide when the window store cannot be reached."""

    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class Policy:
    """Quota applied to one class of routes.

    Attributes:
        name: Policy name.
        limit: Admissions allowed per window (0 denies everything).
        window_seconds: Fixed window length.
        failure_mode: Decision used when the store is unavailable.
        ban_threshold: Denials that trigger a temporary ban (None disables bans).
        ban_duration_seconds: Length of a ban.
        exempt_allowlisted: Admit allowlisted identities without counting them.
    """

    name: PolicyName
    limit: int
    window_seconds: float
    failure_mode: FailureMode = FailureMode.OPEN
    ban_threshold: int | None = None
    ban_duration_seconds: float = HOUR
    exempt_allowlisted: bool = False

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.ban_threshold is not None and self.ban_threshold < 1:
            raise ValueError("ban_threshold must be >= 1")
        if self.ban_duration_seconds <= 0:
            raise ValueError("ban_duration_seconds must be > 0")

    @property
    def description(self) -> str:
        """Human-readable quota, e.g. ``"5 requests per 15 minutes"``."""
        minutes = self.window_seconds / MINUTE
        if minutes.is_integer():
            window = f"{int(minutes)} minute" if minutes == 1 else f"{int(minutes)} minutes"
        else:
            window = f"{self.window_seconds:g} seconds"
        return f"{self.limit} requests per {window}"


DEFAULT_POLICIES: Mapping[PolicyName, Policy] = MappingProxyType(
    {
        PolicyName.AUTHENTICATION: Policy(
            name=PolicyName.AUTHENTICATION,
            limit=5,
            window_seconds=15 * MINUTE,
            failure_mode=FailureMode.CLOSED,
            ban_threshold=3,
            ban_duration_seconds=HOUR,
        ),
        PolicyName.PUBLIC_SUBMISSION: Policy(
            name=PolicyName.PUBLIC_SUBMISSION,
            limit=10,
            window_seconds=HOUR,
            failure_mode=FailureMode.CLOSED,
            ban_threshold=3,
            ban_duration_seconds=24 * HOUR,
        ),
        PolicyName.ADMINISTRATIVE: Policy(
            name=PolicyName.ADMINISTRATIVE,
            limit=100,
            window_seconds=15 * MINUTE,
            failure_mode=FailureMode.OPEN,
            exempt_allowlisted=True,
        ),
        PolicyName.UPLOAD: Policy(
            name=PolicyName.UPLOAD,
            limit=20,
            window_seconds=HOUR,
            failure_mode=FailureMode.CLOSED,
            ban_threshold=5,
            ban_duration_seconds=2 * HOUR,
        ),
        PolicyName.API: Policy(
            name=PolicyName.API,
            limit=200,
            window_seconds=15 * MINUTE,
            failure_mode=FailureMode.OPEN,
            ban_threshold=10,
            ban_duration_seconds=30 * MINUTE,
        ),
        PolicyName.DEFAULT: Policy(
            name=PolicyName.DEFAULT,
            limit=100,
            window_seconds=15 * MINUTE,
            failure_mode=FailureMode.OPEN,
            ban_threshold=5,
            ban_duration_seconds=HOUR,
        ),
    }
)

_OVERRIDABLE_FIELDS = frozenset(f.name for f in fields(Policy)) - {"name"}


def _apply_override(policy: Policy, override: Mapping[str, Any]) -> Policy:
    unknown = set(override) - _OVERRIDABLE_FIELDS
    if unknown:
        raise ValidationAppError(
            code="invalid_policy_override",
            message=f"Unknown policy fields for '{policy.name.value}': {', '.join(sorted(unknown))}",
            details={"policy": policy.name.value, "hint": f"Allowed: {', '.join(sorted(_OVERRIDABLE_FIELDS))}"},
        )

    changes = dict(override)
    if "failure_mode" in changes:
        try:
            changes["failure_mode"] = FailureMode(changes["failure_mode"])
        except ValueError as exc:
            raise ValidationAppError(
                code="invalid_policy_override",
                message=f"Invalid failure_mode for '{policy.name.value}'",
                details={"policy": policy.name.value, "field": "failure_mode"},
            ) from exc

    try:
        return replace(policy, **changes)
    except (TypeError, ValueError) as exc:
        raise ValidationAppError(
            code="invalid_policy_override",
            message=f"Invalid override for '{policy.name.value}': {exc}",
            details={"policy": policy.name.value},
        ) from exc


class PolicyRegistry:
    """Immutable table of policies keyed by :class:`PolicyName`."""

    def __init__(self, policies: Mapping[PolicyName, Policy] | None = None) -> None:
        table = dict(DEFAULT_POLICIES if policies is None else policies)
        if PolicyName.DEFAULT not in table:
            raise ValueError("a default policy is required")
        for name, policy in table.items():
            if policy.name is not name:
                raise ValueError(f"policy registered as '{name.value}' is named '{policy.name.value}'")
        self._policies: Mapping[PolicyName, Policy] = MappingProxyType(table)

    @classmethod
    def from_overrides(cls, overrides: Mapping[str, Mapping[str, Any]] | None) -> "PolicyRegistry":
        """Build the built-in table with configured per-policy overrides applied.

        Raises:
            ValidationAppError: If an override names an unknown policy or field.
        """

        table = dict(DEFAULT_POLICIES)
        for raw_name, override in (overrides or {}).items():
            name = PolicyName.parse(raw_name)
            if name is None:
                raise ValidationAppError(
                    code="unknown_policy",
                    message=f"Cannot override unknown policy '{raw_name}'",
                    details={"hint": f"Known policies: {', '.join(p.value for p in PolicyName)}"},
                )
            table[name] = _apply_override(table[name], override)
        return cls(table)

    def resolve(self, name: str | PolicyName) -> Policy:
        """Look up a policy, falling back to the default policy for unknown names."""

        member = PolicyName.parse(name)
        if member is None or member not in self._policies:
            logger.warning(
                "rate_limit.unknown_policy",
                extra={"requested_policy": getattr(name, "value", name), "policy": PolicyName.DEFAULT.value},
            )
            return self._policies[PolicyName.DEFAULT]
        return self._policies[member]

    def all(self) -> list[Policy]:
        return list(self._policies.values())
