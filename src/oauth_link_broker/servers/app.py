"""Starlette application factory for the OAuth link broker."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Mapping

from starlette.applications import Starlette
from starlette.authentication import AuthenticationBackend
from starlette.middleware import Middleware
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import BaseRoute, Mount, Route

from oauth_link_broker.config import BrokerConfig
from oauth_link_broker.link.clock import Clock, default_clock
from oauth_link_broker.link.credentials import CredentialStore, DiskCredentialStore
from oauth_link_broker.link.service import LinkBroker
from oauth_link_broker.link.signer import StateSigner
from oauth_link_broker.link.store import InMemoryLinkSessionStore, LinkSessionStore
from oauth_link_broker.providers.base import OAuthProvider
from oauth_link_broker.providers.meta import MetaOAuthProvider
from oauth_link_broker.servers.auth import StaticTokenBackend, on_auth_error
from oauth_link_broker.servers.correlation import CorrelationIdMiddleware
from oauth_link_broker.servers.routes import broker_routes

logger = logging.getLogger("oauth-link-broker.server.app")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def build_providers(config: BrokerConfig) -> dict[str, OAuthProvider]:
    """Instantiate every provider whose credentials are configured."""
    providers: dict[str, OAuthProvider] = {}
    if config.meta.is_configured():
        providers["meta"] = MetaOAuthProvider(
            client_id=config.meta.client_id,
            client_secret=config.meta.client_secret,
            graph_version=config.meta.graph_version,
            scopes=config.meta.scopes,
        )
    return providers


def build_broker(
    config: BrokerConfig,
    *,
    providers: Mapping[str, OAuthProvider] | None = None,
    sessions: LinkSessionStore | None = None,
    credentials: CredentialStore | None = None,
    clock: Clock = default_clock,
) -> LinkBroker:
    """Wire a :class:`LinkBroker` from *config*, honouring any overrides."""
    if sessions is None:
        sessions = InMemoryLinkSessionStore(
            clock=clock,
            ttl_seconds=config.session_ttl,
            grace_seconds=config.grace_seconds,
            sweep_interval=config.sweep_interval,
        )
    if credentials is None:
        credentials = DiskCredentialStore(config.credentials_dir)
    return LinkBroker(
        signer=StateSigner(config.state_secret),
        sessions=sessions,
        credentials=credentials,
        providers=build_providers(config) if providers is None else providers,
        clock=clock,
    )


def create_app(
    config: BrokerConfig | None = None,
    *,
    broker: LinkBroker | None = None,
    auth_backend: AuthenticationBackend | None = None,
) -> Starlette:
    """Return the broker ASGI application.

    Without arguments everything is read from the environment, which makes the
    function usable as a uvicorn factory
    (``uvicorn oauth_link_broker.servers.app:create_app --factory``).
    """
    config = config or BrokerConfig.from_env()
    broker = broker or build_broker(config)
    backend = auth_backend or StaticTokenBackend(config.user_tokens)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info(
            "OAuth link broker starting providers=%s base_path=%s",
            sorted(broker.providers) or "none",
            config.base_path or "/",
        )
        sessions = broker.sessions
        if isinstance(sessions, InMemoryLinkSessionStore):
            sessions.start()
        try:
            yield
        finally:
            if isinstance(sessions, InMemoryLinkSessionStore):
                await sessions.stop()
            logger.info("OAuth link broker shutdown complete.")

    middleware = [Middleware(CorrelationIdMiddleware)]
    if config.cors_origins:
        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=list(config.cors_origins),
                allow_methods=["GET", "POST"],
                allow_headers=["Authorization", "Content-Type"],
                allow_credentials=True,
            )
        )
    auth = [Middleware(AuthenticationMiddleware, backend=backend, on_error=on_auth_error)]
    link_routes = broker_routes(broker, config, auth=auth)
    routes: list[BaseRoute] = [
        Route("/healthz", health_check, methods=["GET"], include_in_schema=False),
    ]
    if config.base_path:
        routes.append(Mount(config.base_path, routes=link_routes))
    else:
        routes.extend(link_routes)

    app = Starlette(
        debug=config.debug, routes=routes, middleware=middleware, lifespan=lifespan
    )
    app.state.broker = broker
    app.state.config = config
    return app
