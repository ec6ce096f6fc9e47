"""Tests for MetaOAuthProvider against a stubbed ``requests.get``."""

from __future__ import annotations

from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from oauth_link_broker.link.errors import TokenExchangeError
from oauth_link_broker.providers.meta import MetaOAuthProvider

REDIRECT_URI = "https://broker.example.com/api/oauth-broker/meta/callback"


def _resp(status: int, body) -> SimpleNamespace:
    def _json():
        if isinstance(body, Exception):
            raise body
        return body

    return SimpleNamespace(ok=200 <= status < 400, status_code=status, text=str(body), json=_json)


@pytest.fixture()
def meta() -> MetaOAuthProvider:
    return MetaOAuthProvider(client_id="app-id", client_secret="app-secret")


@pytest.fixture()
def graph(monkeypatch):
    """Route requests.get to canned responses keyed by URL suffix."""
    calls: list[tuple[str, dict]] = []
    responses: dict[str, SimpleNamespace] = {}

    def fake_get(url: str, *, params: dict, timeout: tuple[int, int]):  # noqa: ANN001
        calls.append((url, params))
        for suffix, resp in responses.items():
            if url.endswith(suffix):
                return resp
        raise AssertionError(f"unexpected URL {url}")

    monkeypatch.setattr(requests, "get", fake_get, raising=True)
    return SimpleNamespace(calls=calls, responses=responses)


def test_requires_credentials() -> None:
    with pytest.raises(ValueError):
        MetaOAuthProvider(client_id="", client_secret="x")


def test_authorize_url(meta: MetaOAuthProvider) -> None:
    url = meta.build_authorize_url(REDIRECT_URI)
    parsed = urlparse(url)
    query = parse_qs(parsed.query)

    assert parsed.netloc == "www.facebook.com"
    assert parsed.path == "/v19.0/dialog/oauth"
    assert query["client_id"] == ["app-id"]
    assert query["redirect_uri"] == [REDIRECT_URI]
    assert query["scope"] == ["ads_management,business_management,pages_show_list,email"]
    assert query["response_type"] == ["code"]
    assert query["display"] == ["popup"]
    assert query["state"][0]
    assert "app-secret" not in url


def test_exchange_code_success(meta: MetaOAuthProvider, graph) -> None:
    graph.responses["/oauth/access_token"] = _resp(
        200, {"access_token": "tok", "token_type": "bearer", "expires_in": 5183944}
    )
    graph.responses["/me"] = _resp(200, {"id": "10101", "name": "Ada"})

    grant = meta.exchange_code("the-code", REDIRECT_URI)

    assert grant.access_token == "tok"
    assert grant.account_id == "10101"
    assert grant.account_name == "Ada"
    assert grant.expires_in == 5183944

    token_url, token_params = graph.calls[0]
    assert token_url == "https://graph.facebook.com/v19.0/oauth/access_token"
    assert token_params["code"] == "the-code"
    assert token_params["redirect_uri"] == REDIRECT_URI
    assert token_params["client_secret"] == "app-secret"
    assert graph.calls[1][1]["access_token"] == "tok"


def test_exchange_code_rejected(meta: MetaOAuthProvider, graph) -> None:
    graph.responses["/oauth/access_token"] = _resp(
        400, {"error": {"message": "This authorization code has been used."}}
    )
    with pytest.raises(TokenExchangeError) as exc_info:
        meta.exchange_code("used", REDIRECT_URI)
    assert "has been used" in exc_info.value.detail
    assert exc_info.value.reason == "OAuth callback failed"
    assert len(graph.calls) == 1


def test_exchange_code_missing_token(meta: MetaOAuthProvider, graph) -> None:
    graph.responses["/oauth/access_token"] = _resp(200, {"token_type": "bearer"})
    with pytest.raises(TokenExchangeError):
        meta.exchange_code("c", REDIRECT_URI)


def test_exchange_code_network_error(meta: MetaOAuthProvider, monkeypatch) -> None:
    def boom(url, *, params, timeout):  # noqa: ANN001
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(requests, "get", boom)
    with pytest.raises(TokenExchangeError):
        meta.exchange_code("c", REDIRECT_URI)


def test_exchange_code_invalid_json(meta: MetaOAuthProvider, graph) -> None:
    graph.responses["/oauth/access_token"] = _resp(200, ValueError("no json"))
    with pytest.raises(TokenExchangeError):
        meta.exchange_code("c", REDIRECT_URI)


def test_validate_token(meta: MetaOAuthProvider, graph) -> None:
    graph.responses["/me/adaccounts"] = _resp(200, {"data": []})
    assert meta.validate_token("tok") is True

    graph.responses["/me/adaccounts"] = _resp(401, {"error": {"message": "expired"}})
    assert meta.validate_token("tok") is False
