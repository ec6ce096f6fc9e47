"""Browser-facing OAuth linking endpoints.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters.
2. Delegate business logic to :class:`~oauth_link_broker.link.service.LinkBroker`.
3. Return an appropriate Starlette ``Response`` type.

The routes are mounted under a configurable base path (default
``/api/oauth-broker``) so the broker can live behind any prefix.

SECURITY NOTE
-------------
• No raw secrets (state, authorization codes, access tokens, client secrets)
  are ever logged.
• The callback always answers ``200 text/html``; the embedded script carries
  the real outcome to the opener window.
• The origin used to scope ``postMessage`` comes from the ``Origin`` /
  ``Referer`` headers of the *start* request.  This is best-effort: browsers
  set these reliably, other clients can omit or forge them.
"""

from __future__ import annotations

import logging
from typing import Sequence
from urllib.parse import urlsplit

from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from oauth_link_broker.config import BrokerConfig
from oauth_link_broker.link.errors import (
    SessionExpiredError,
    SessionNotFoundError,
    UnknownProviderError,
)
from oauth_link_broker.link.models import LinkOutcome
from oauth_link_broker.link.service import MSG_CALLBACK_FAILED, LinkBroker
from oauth_link_broker.servers.auth import authenticated_user_id
from oauth_link_broker.servers.correlation import correlation_id
from oauth_link_broker.servers.pages import render_callback_page

_LOG = logging.getLogger("oauth-link-broker.routes")


def request_origin(request: Request) -> str | None:
    """Return the initiating page's origin from ``Origin`` or ``Referer``."""
    origin = (request.headers.get("origin") or "").strip()
    if origin and origin != "null":
        return origin.rstrip("/")
    referer = request.headers.get("referer")
    if referer:
        parts = urlsplit(referer)
        if parts.scheme and parts.netloc:
            return f"{parts.scheme}://{parts.netloc}"
    return None


def _provider_label(name: str) -> str:
    return name.capitalize()


def _store_unavailable(request: Request) -> Response:
    _LOG.error(
        "Credential store unavailable correlation_id=%s",
        correlation_id(request),
        exc_info=True,
    )
    return JSONResponse({"error": "Credential store unavailable"}, status_code=503)


def broker_routes(
    broker: LinkBroker,
    config: BrokerConfig,
    *,
    auth: Sequence[Middleware] = (),
) -> list[Route]:
    """Return the broker's routes, bound to *broker*.

    *auth* wraps every route except the provider callback, which is reached
    by a provider redirect and always answers with the popup page.
    """

    def callback_url(request: Request, provider: str) -> str:
        # must be identical for the authorize request and the code exchange
        return config.callback_url(provider) or str(
            request.url_for("oauth_callback", provider=provider)
        )

    # ----- GET /{provider}/start ------------------------------------------ #
    async def start_link(request: Request) -> Response:
        provider: str = request.path_params["provider"]
        user_id = authenticated_user_id(request)
        if not user_id:
            return JSONResponse({"error": "Authentication required"}, status_code=401)
        if provider not in broker.providers:
            return JSONResponse(UnknownProviderError().to_payload(), status_code=404)

        origin = request_origin(request)
        if not origin:
            return JSONResponse({"error": "Origin header required"}, status_code=400)

        try:
            started = broker.start_link(
                provider=provider,
                user_id=user_id,
                origin=origin,
                redirect_uri=callback_url(request, provider),
            )
        except Exception:
            _LOG.error(
                "Error starting OAuth broker flow correlation_id=%s",
                correlation_id(request),
                exc_info=True,
            )
            return JSONResponse({"error": "Failed to start OAuth flow"}, status_code=500)
        return JSONResponse(started.to_payload())

    # ----- GET /{provider}/callback --------------------------------------- #
    async def oauth_callback(request: Request) -> Response:
        provider: str = request.path_params["provider"]
        params = request.query_params
        if provider not in broker.providers:
            outcome = LinkOutcome(success=False, error=UnknownProviderError().reason)
            return render_callback_page(outcome, provider_label=_provider_label(provider))

        try:
            outcome = await broker.complete_link(
                provider=provider,
                code=params.get("code"),
                state=params.get("state"),
                error=params.get("error"),
                redirect_uri=callback_url(request, provider),
                correlation_id=correlation_id(request),
            )
        except Exception:
            _LOG.error(
                "Error in OAuth broker callback correlation_id=%s",
                correlation_id(request),
                exc_info=True,
            )
            outcome = LinkOutcome(success=False, error=MSG_CALLBACK_FAILED)

        _LOG.info(
            "OAuth callback provider=%s success=%s correlation_id=%s",
            provider,
            outcome.success,
            correlation_id(request),
        )
        return render_callback_page(outcome, provider_label=_provider_label(provider))

    # ----- GET /{provider}/status/{link_session_id} ----------------------- #
    async def link_status(request: Request) -> Response:
        provider: str = request.path_params["provider"]
        link_session_id: str = request.path_params["link_session_id"]
        try:
            status = broker.get_status(link_session_id, provider=provider)
        except SessionExpiredError as exc:
            return JSONResponse(exc.to_payload(), status_code=410)
        except SessionNotFoundError as exc:
            return JSONResponse(exc.to_payload(), status_code=404)
        return JSONResponse(status, headers={"Cache-Control": "no-store"})

    # ----- GET /{provider}/connection ------------------------------------- #
    async def connection(request: Request) -> Response:
        provider: str = request.path_params["provider"]
        user_id = authenticated_user_id(request)
        if not user_id:
            return JSONResponse({"error": "Authentication required"}, status_code=401)
        try:
            payload = await broker.get_connection(user_id=user_id, provider=provider)
            if request.query_params.get("validate") in ("1", "true"):
                payload["valid"] = await broker.validate_connection(
                    user_id=user_id, provider=provider
                )
        except UnknownProviderError as exc:
            return JSONResponse(exc.to_payload(), status_code=404)
        except OSError:
            return _store_unavailable(request)
        return JSONResponse(payload)

    # ----- POST /{provider}/disconnect ------------------------------------ #
    async def disconnect(request: Request) -> Response:
        provider: str = request.path_params["provider"]
        user_id = authenticated_user_id(request)
        if not user_id:
            return JSONResponse({"error": "Authentication required"}, status_code=401)
        try:
            await broker.disconnect(user_id=user_id, provider=provider)
        except UnknownProviderError as exc:
            return JSONResponse(exc.to_payload(), status_code=404)
        except OSError:
            return _store_unavailable(request)
        _LOG.info(
            "Disconnected provider=%s correlation_id=%s", provider, correlation_id(request)
        )
        return Response(status_code=204)

    return [
        Route(
            "/{provider}/start",
            start_link,
            methods=["GET"],
            name="start_link",
            middleware=auth,
        ),
        Route("/{provider}/callback", oauth_callback, methods=["GET"], name="oauth_callback"),
        Route(
            "/{provider}/status/{link_session_id}",
            link_status,
            methods=["GET"],
            name="link_status",
            middleware=auth,
        ),
        Route(
            "/{provider}/connection",
            connection,
            methods=["GET"],
            name="connection",
            middleware=auth,
        ),
        Route(
            "/{provider}/disconnect",
            disconnect,
            methods=["POST"],
            name="disconnect",
            middleware=auth,
        ),
    ]
