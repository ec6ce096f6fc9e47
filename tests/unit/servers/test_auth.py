"""Tests for the bearer-token authentication backend."""

from __future__ import annotations

import pytest
from starlette.authentication import AuthenticationError
from starlette.requests import HTTPConnection

from oauth_link_broker.servers.auth import StaticTokenBackend


def _conn(authorization: str | None) -> HTTPConnection:
    headers = [] if authorization is None else [(b"authorization", authorization.encode())]
    return HTTPConnection({"type": "http", "headers": headers})


@pytest.fixture()
def backend() -> StaticTokenBackend:
    return StaticTokenBackend({"tok-1": "user-1"})


@pytest.mark.anyio
async def test_no_header_is_anonymous(backend: StaticTokenBackend) -> None:
    assert await backend.authenticate(_conn(None)) is None


@pytest.mark.anyio
async def test_known_token(backend: StaticTokenBackend) -> None:
    creds, user = await backend.authenticate(_conn("Bearer tok-1"))
    assert "authenticated" in creds.scopes
    assert user.is_authenticated
    assert user.identity == "user-1"


@pytest.mark.anyio
@pytest.mark.parametrize("header", ["Bearer nope", "Bearer ", "Token tok-1", "tok-1"])
async def test_rejected_headers(backend: StaticTokenBackend, header: str) -> None:
    with pytest.raises(AuthenticationError):
        await backend.authenticate(_conn(header))
