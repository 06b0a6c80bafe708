"""Tests for caller identity resolution."""

import pytest
from starlette.requests import Request

from quota_gate.services.identity import (
    UNKNOWN_IDENTITY,
    ClientAddress,
    clear_client_address,
    get_client_address,
    hash_identity,
    resolve_identity,
    set_client_address,
)


def _request(headers: list[tuple[bytes, bytes]], client: tuple[str, int] | None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": headers,
        "client": client,
    }
    return Request(scope)


@pytest.mark.parametrize(
    ("client", "expected"),
    [
        (ClientAddress(forwarded_for="203.0.113.7", peer="10.0.0.1"), "203.0.113.7"),
        (ClientAddress(forwarded_for="203.0.113.7, 198.51.100.2", peer="10.0.0.1"), "203.0.113.7"),
        (ClientAddress(forwarded_for="  203.0.113.7  ,198.51.100.2"), "203.0.113.7"),
        (ClientAddress(forwarded_for=["203.0.113.7", "198.51.100.2"]), "203.0.113.7"),
        (ClientAddress(forwarded_for="", peer="10.0.0.1"), "10.0.0.1"),
        (ClientAddress(forwarded_for=" , 198.51.100.2", peer="10.0.0.1"), "10.0.0.1"),
        (ClientAddress(forwarded_for=[], peer="10.0.0.1"), "10.0.0.1"),
        (ClientAddress(forwarded_for=None, peer="10.0.0.1"), "10.0.0.1"),
        (ClientAddress(forwarded_for=None, peer="   "), UNKNOWN_IDENTITY),
        (ClientAddress(), UNKNOWN_IDENTITY),
        (None, UNKNOWN_IDENTITY),
    ],
)
def test_resolution_precedence(client: ClientAddress | None, expected: str) -> None:
    assert resolve_identity(client) == expected


def test_callers_behind_same_proxy_share_identity() -> None:
    a = ClientAddress(forwarded_for="203.0.113.7", peer="10.0.0.1")
    b = ClientAddress(forwarded_for="203.0.113.7", peer="10.0.0.2")

    assert resolve_identity(a) == resolve_identity(b)


def test_from_request_reads_forwarded_header_and_peer() -> None:
    request = _request(
        [(b"x-forwarded-for", b"203.0.113.7, 10.0.0.9")],
        ("10.0.0.1", 51000),
    )

    client = ClientAddress.from_request(request)

    assert client.peer == "10.0.0.1"
    assert resolve_identity(client) == "203.0.113.7"


def test_from_request_keeps_repeated_headers_in_order() -> None:
    request = _request(
        [(b"x-forwarded-for", b"203.0.113.7"), (b"x-forwarded-for", b"198.51.100.2")],
        ("10.0.0.1", 51000),
    )

    assert resolve_identity(ClientAddress.from_request(request)) == "203.0.113.7"


def test_from_request_custom_header() -> None:
    request = _request(
        [(b"x-forwarded-for", b"203.0.113.7"), (b"x-real-ip", b"198.51.100.2")],
        ("10.0.0.1", 51000),
    )

    client = ClientAddress.from_request(request, forwarded_header="X-Real-IP")

    assert resolve_identity(client) == "198.51.100.2"


def test_from_request_without_client() -> None:
    client = ClientAddress.from_request(_request([], None))

    assert client == ClientAddress(forwarded_for=None, peer=None)
    assert resolve_identity(client) == UNKNOWN_IDENTITY


def test_context_round_trip() -> None:
    client = ClientAddress(peer="10.0.0.1")

    set_client_address(client)
    assert get_client_address() is client

    clear_client_address()
    assert get_client_address() is None


def test_hash_identity_is_stable_and_opaque() -> None:
    digest = hash_identity("203.0.113.7")

    assert digest == hash_identity("203.0.113.7")
    assert len(digest) == 16
    assert all(c in "0123456789abcdef" for c in digest)
