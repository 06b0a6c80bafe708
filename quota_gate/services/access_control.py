"""Allowlist and temporary bans layered on top of quota counting.

Both tables are per-process and in memory. The allowlist only matters for
policies marked ``exempt_allowlisted``; bans only apply when enabled in
configuration and for policies that define a ``ban_threshold``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from quota_gate.core.clock import Clock, system_clock
from quota_gate.services.identity import hash_identity
from quota_gate.services.policies import Policy, PolicyName

logger = logging.getLogger(__name__)

DEFAULT_MANUAL_BAN_SECONDS = 24 * 60 * 60.0


def parse_identity_list(values: str | None) -> set[str]:
    """Parse a comma-separated list of identities into a set.

    Examples:
        >>> sorted(parse_identity_list("203.0.113.7, 198.51.100.2"))
        ['198.51.100.2', '203.0.113.7']
        >>> parse_identity_list(None)
        set()
    """
    if not values:
        return set()
    return {value.strip() for value in values.split(",") if value.strip()}


class AllowList:
    """Thread-safe set of identities trusted by allowlist-aware policies."""

    def __init__(self, identities: Iterable[str] = ()) -> None:
        self._identities = set(identities)
        self._lock = threading.Lock()

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._identities

    def add(self, identity: str) -> None:
        with self._lock:
            self._identities.add(identity)

    def discard(self, identity: str) -> None:
        with self._lock:
            self._identities.discard(identity)

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._identities)


@dataclass
class _BanRecord:
    violations: int = 0
    violations_expire_at: float | None = None
    banned_until: float | None = None

    def has_pending_violations(self, now: float) -> bool:
        if self.violations == 0 or self.violations_expire_at is None:
            return False
        return now < self.violations_expire_at

    def is_banned(self, now: float) -> bool:
        return self.banned_until is not None and now < self.banned_until


class BanList:
    """Tracks quota violations per (policy, identity) and the resulting bans.

    A violation is recorded for every denied check. Violations count towards a
    ban only for one policy window after the first of them; after that the
    count starts over. When the count reaches the policy's ``ban_threshold``
    the identity is banned for ``ban_duration_seconds`` and the count resets.
    """

    def __init__(self, *, clock: Clock = system_clock) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], _BanRecord] = {}

    def banned_until(self, policy_name: str, identity: str) -> float | None:
        """Return when an active ban ends, or None if the key is not banned."""

        with self._lock:
            record = self._records.get((policy_name, identity))
            if record is None or record.banned_until is None:
                return None
            if self._clock() >= record.banned_until:
                record.banned_until = None
                return None
            return record.banned_until

    def record_violation(self, policy: Policy, identity: str) -> float | None:
        """Record one denial; returns the ban expiry if this denial triggered a ban."""

        if policy.ban_threshold is None:
            return None

        key = (policy.name.value, identity)
        with self._lock:
            now = self._clock()
            record = self._records.setdefault(key, _BanRecord())
            if not record.has_pending_violations(now):
                record.violations = 0
                record.violations_expire_at = now + policy.window_seconds
            record.violations += 1
            if record.violations < policy.ban_threshold:
                return None
            record.violations = 0
            record.violations_expire_at = None
            record.banned_until = now + policy.ban_duration_seconds
            banned_until = record.banned_until

        logger.warning(
            "rate_limit.banned",
            extra={
                "policy": policy.name.value,
                "identity_hash": hash_identity(identity),
                "ban_duration_s": policy.ban_duration_seconds,
                "threshold": policy.ban_threshold,
            },
        )
        return banned_until

    def ban(self, identity: str, *, duration_seconds: float = DEFAULT_MANUAL_BAN_SECONDS) -> float:
        """Ban an identity under every policy; returns the ban expiry."""

        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be > 0")

        with self._lock:
            banned_until = self._clock() + duration_seconds
            for name in PolicyName:
                record = self._records.setdefault((name.value, identity), _BanRecord())
                record.banned_until = banned_until
        return banned_until

    def unban(self, identity: str) -> int:
        """Lift bans and forget violations for an identity; returns records cleared."""

        with self._lock:
            keys = [key for key in self._records if key[1] == identity]
            for key in keys:
                del self._records[key]
        return len(keys)

    def purge_expired(self) -> int:
        """Drop records with no active ban and no violations still counting."""

        with self._lock:
            now = self._clock()
            stale = [
                key
                for key, record in self._records.items()
                if not record.is_banned(now) and not record.has_pending_violations(now)
            ]
            for key in stale:
                del self._records[key]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()


class ManageAction(str, Enum):
    ALLOWLIST = "allowlist"
    UNALLOWLIST = "unallowlist"
    BAN = "ban"
    UNBAN = "unban"


def manage_access(
    action: ManageAction,
    identity: str,
    *,
    allowlist: AllowList,
    bans: BanList,
    duration_seconds: float | None = None,
) -> None:
    """Apply an operator action to the allowlist or ban table.

    Raises:
        ValueError: If identity is empty or the ban duration is invalid.
    """

    identity = identity.strip()
    if not identity:
        raise ValueError("identity must be a non-empty string")

    if action is ManageAction.ALLOWLIST:
        allowlist.add(identity)
    elif action is ManageAction.UNALLOWLIST:
        allowlist.discard(identity)
    elif action is ManageAction.BAN:
        bans.ban(identity, duration_seconds=duration_seconds or DEFAULT_MANUAL_BAN_SECONDS)
    elif action is ManageAction.UNBAN:
        bans.unban(identity)

    logger.info(
        "rate_limit.access_changed",
        extra={"action": action.value, "identity_hash": hash_identity(identity)},
    )
