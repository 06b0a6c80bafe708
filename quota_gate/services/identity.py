"""Caller identity resolution.

Quota state is partitioned by a string key derived from the caller's network
address. Precedence is fixed:

1. the first entry of the forwarded-address chain (``X-Forwarded-For`` by
   default), when present and non-empty;
2. the raw connection (peer) address;
3. the literal ``"unknown"``.

Callers sharing a forwarding proxy therefore share one bucket, and every
caller without any address shares the ``"unknown"`` bucket.
"""

from __future__ import annotations

import hashlib
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Sequence

from starlette.requests import Request

UNKNOWN_IDENTITY = "unknown"
DEFAULT_FORWARDED_HEADER = "X-Forwarded-For"


@dataclass(frozen=True)
class ClientAddress:
    """Network metadata of an inbound request as seen by the server.

    Attributes:
        forwarded_for: Forwarded-address header value(s), in arrival order.
        peer: Address of the directly connected client.
    """

    forwarded_for: str | Sequence[str] | None = None
    peer: str | None = None

    @classmethod
    def from_request(
        cls,
        request: Request,
        *,
        forwarded_header: str = DEFAULT_FORWARDED_HEADER,
    ) -> "ClientAddress":
        """Capture address metadata from a Starlette/FastAPI request."""

        forwarded = request.headers.getlist(forwarded_header)
        peer = request.client.host if request.client else None
        return cls(forwarded_for=forwarded or None, peer=peer)


_client_address_var: ContextVar[ClientAddress | None] = ContextVar("client_address", default=None)


def set_client_address(client: ClientAddress | None) -> None:
    """Store the current request's address metadata in a context variable."""

    _client_address_var.set(client)


def get_client_address() -> ClientAddress | None:
    """Fetch the current request's address metadata from context."""

    return _client_address_var.get()


def clear_client_address() -> None:
    """Clear any stored address metadata from context."""

    _client_address_var.set(None)


def _first_forwarded(forwarded_for: str | Sequence[str] | None) -> str | None:
    if not forwarded_for:
        return None
    if isinstance(forwarded_for, str):
        chain = forwarded_for
    else:
        # Repeated headers form one list, in the order they were received.
        chain = ",".join(forwarded_for)
    first = chain.split(",", 1)[0].strip()
    return first or None


def resolve_identity(client: ClientAddress | None) -> str:
    """Derive the quota identity for a caller.

    Never raises; falls back to ``"unknown"`` when no address is available.

    Examples:
        >>> resolve_identity(ClientAddress(forwarded_for="203.0.113.7, 10.0.0.1", peer="10.0.0.2"))
        '203.0.113.7'
        >>> resolve_identity(ClientAddress(forwarded_for="", peer=" 10.0.0.2 "))
        '10.0.0.2'
        >>> resolve_identity(None)
        'unknown'
    """

    if client is None:
        return UNKNOWN_IDENTITY

    forwarded = _first_forwarded(client.forwarded_for)
    if forwarded:
        return forwarded

    peer = (client.peer or "").strip()
    if peer:
        return peer

    return UNKNOWN_IDENTITY


def hash_identity(identity: str) -> str:
    """Hash an identity for logging without exposing the address."""

    return hashlib.sha256(identity.encode()).hexdigest()[:16]
