"""Authentication seam for the broker's user-facing endpoints.

The broker does not own user sign-in; it only needs to know *which*
application user is asking.  Any Starlette
:class:`~starlette.authentication.AuthenticationBackend` can be plugged into
:func:`~oauth_link_broker.servers.app.create_app`.  The bundled
:class:`StaticTokenBackend` maps ``Authorization: Bearer <token>`` headers to
user ids and suits service-to-service deployments and tests.
"""

from __future__ import annotations

import hmac
import logging
from typing import Mapping

from starlette.authentication import (
    AuthCredentials,
    AuthenticationBackend,
    AuthenticationError,
    BaseUser,
)
from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse, Response

from oauth_link_broker.link.log_utils import mask_sensitive

_LOG = logging.getLogger("oauth-link-broker.auth")


class LinkUser(BaseUser):
    """Authenticated application user as seen by the broker."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.user_id

    @property
    def identity(self) -> str:
        return self.user_id


def _parse_bearer(header_val: str) -> str:
    """Return the token from a ``Bearer`` header or raise AuthenticationError."""
    if not header_val.strip():
        raise AuthenticationError("Unauthorized: Empty Authorization header")
    if header_val.startswith("Bearer "):
        token = header_val[7:].strip()
        if not token:
            raise AuthenticationError("Unauthorized: Empty Bearer token")
        return token
    scheme = header_val.split(" ", 1)[0]
    _LOG.warning("Unsupported Authorization type: %s", scheme)
    raise AuthenticationError("Unauthorized: Only 'Bearer <token>' is supported.")


class StaticTokenBackend(AuthenticationBackend):
    """Resolve bearer tokens against a fixed ``token -> user_id`` mapping."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    async def authenticate(
        self, conn: HTTPConnection
    ) -> tuple[AuthCredentials, BaseUser] | None:
        header = conn.headers.get("authorization")
        if header is None:
            return None
        token = _parse_bearer(header)
        for known, user_id in self._tokens.items():
            if hmac.compare_digest(known.encode(), token.encode()):
                return AuthCredentials(["authenticated"]), LinkUser(user_id)
        _LOG.info("Unknown bearer token %s", mask_sensitive(token, 4))
        raise AuthenticationError("Unauthorized: Unknown token")


def on_auth_error(conn: HTTPConnection, exc: AuthenticationError) -> Response:
    return JSONResponse({"error": str(exc)}, status_code=401)


def authenticated_user_id(request: Request) -> str | None:
    """Return the authenticated user's id, or ``None``.

    Works whether or not an authentication middleware is installed.
    """
    if "user" not in request.scope:
        return None
    user = request.user
    if not getattr(user, "is_authenticated", False):
        return None
    try:
        user_id = user.identity
    except NotImplementedError:
        user_id = user.display_name
    return user_id or None
