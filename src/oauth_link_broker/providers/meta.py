"""Meta (Facebook Graph API) OAuth provider.

Scopes default to what the ads dashboard needs to read campaigns and
insights.  All calls go through :mod:`requests` with explicit
``(connect, read)`` timeouts; access tokens are never logged.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Final
from urllib.parse import urlencode

import requests

from oauth_link_broker.link.errors import TokenExchangeError
from oauth_link_broker.link.models import ProviderGrant

_LOG = logging.getLogger("oauth-link-broker.providers.meta")

DEFAULT_GRAPH_VERSION: Final[str] = "v19.0"
DEFAULT_SCOPES: Final[tuple[str, ...]] = (
    "ads_management",
    "business_management",
    "pages_show_list",
    "email",
)
_TIMEOUT: Final[tuple[int, int]] = (5, 20)


def _graph_error(resp: requests.Response) -> str:
    """Extract Graph's ``error.message`` from a failed response, if any."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message", ""))[:200]
    return resp.text[:200]


class MetaOAuthProvider:
    """Authorization-code flow against Facebook Login."""

    name = "meta"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        graph_version: str = DEFAULT_GRAPH_VERSION,
        scopes: tuple[str, ...] | list[str] = DEFAULT_SCOPES,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("META_APP_ID and META_APP_SECRET are required")
        self.client_id = client_id
        self._client_secret = client_secret
        self.scopes = tuple(scopes)
        self.dialog_url = f"https://www.facebook.com/{graph_version}/dialog/oauth"
        self.graph_url = f"https://graph.facebook.com/{graph_version}"

    def build_authorize_url(self, redirect_uri: str) -> str:
        """Return the Facebook Login dialog URL for a popup."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "scope": ",".join(self.scopes),
            "response_type": "code",
            # placeholder; the broker swaps in its signed state
            "state": secrets.token_urlsafe(16),
            "display": "popup",
        }
        return f"{self.dialog_url}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> ProviderGrant:
        """Exchange *code* for a user access token and resolve the account id."""
        token_data = self._get(
            f"{self.graph_url}/oauth/access_token",
            {
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )
        access_token = token_data.get("access_token")
        if not access_token:
            raise TokenExchangeError(detail="token response missing access_token")

        user = self._get(
            f"{self.graph_url}/me",
            {"access_token": access_token, "fields": "id,name,email"},
        )
        account_id = user.get("id")
        if not account_id:
            raise TokenExchangeError(detail="profile response missing id")

        expires_in = token_data.get("expires_in")
        _LOG.info("Exchanged Meta OAuth code for account=%s****", str(account_id)[:6])
        return ProviderGrant(
            access_token=access_token,
            account_id=str(account_id),
            account_name=user.get("name"),
            expires_in=int(expires_in) if expires_in is not None else None,
        )

    def validate_token(self, access_token: str) -> bool:
        """Return *True* if *access_token* can still list ad accounts."""
        try:
            resp = requests.get(
                f"{self.graph_url}/me/adaccounts",
                params={"access_token": access_token, "fields": "id,name", "limit": 1},
                timeout=_TIMEOUT,
            )
        except requests.RequestException:
            return False
        return resp.ok

    def _get(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = requests.get(url, params=params, timeout=_TIMEOUT)
        except requests.RequestException as exc:
            raise TokenExchangeError(detail=f"request to Graph API failed: {exc}") from exc
        if not resp.ok:
            raise TokenExchangeError(
                detail=f"Graph API returned {resp.status_code}: {_graph_error(resp)}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise TokenExchangeError(detail="Graph API returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise TokenExchangeError(detail="Graph API returned unexpected payload")
        return data
