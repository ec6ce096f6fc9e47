"""Environment-driven configuration for the link broker."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Final, Tuple

from oauth_link_broker.link.store import (
    DEFAULT_GRACE_SECONDS,
    DEFAULT_SWEEP_INTERVAL,
    DEFAULT_TTL_SECONDS,
)
from oauth_link_broker.providers.meta import DEFAULT_GRAPH_VERSION, DEFAULT_SCOPES

logger = logging.getLogger("oauth-link-broker.config")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")

SECRET_ENV: Final[str] = "SESSION_SECRET"


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _csv(value: str | None) -> tuple[str, ...]:
    return tuple(item.strip() for item in (value or "").split(",") if item.strip())


def _number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def _user_tokens(value: str | None) -> dict[str, str]:
    """Parse ``token:user,token:user`` pairs."""
    tokens: dict[str, str] = {}
    for pair in _csv(value):
        token, sep, user_id = pair.partition(":")
        if not sep or not token.strip() or not user_id.strip():
            logger.warning("Ignoring malformed OAUTH_BROKER_USER_TOKENS entry")
            continue
        tokens[token.strip()] = user_id.strip()
    return tokens


@dataclass(frozen=True)
class MetaConfig:
    """Meta app credentials; the provider is disabled when incomplete."""

    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    graph_version: str = DEFAULT_GRAPH_VERSION
    scopes: tuple[str, ...] = DEFAULT_SCOPES

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class BrokerConfig:
    """Everything the broker reads from its environment at startup."""

    state_secret: str = field(repr=False)
    broker_url: str | None = None
    base_path: str = "/api/oauth-broker"
    session_ttl: float = DEFAULT_TTL_SECONDS
    grace_seconds: float = DEFAULT_GRACE_SECONDS
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    credentials_dir: str | None = None
    user_tokens: dict[str, str] = field(default_factory=dict, repr=False)
    cors_origins: tuple[str, ...] = ()
    meta: MetaConfig = field(default_factory=MetaConfig)
    debug: bool = False

    def callback_url(self, provider: str) -> str | None:
        """Fixed callback address for *provider*, when ``OAUTH_BROKER_URL`` is set."""
        if not self.broker_url:
            return None
        return f"{self.broker_url}/{provider}/callback"

    @classmethod
    def from_env(cls) -> "BrokerConfig":
        """Load configuration from environment variables.

        Raises
        ------
        ValueError
            If ``SESSION_SECRET`` is missing or a numeric setting is invalid.
        """
        secret = os.getenv(SECRET_ENV, "")
        if not secret:
            raise ValueError(
                f"{SECRET_ENV} environment variable is required for OAuth broker security"
            )

        base_path = os.getenv("OAUTH_BROKER_BASE_PATH", "/api/oauth-broker").strip().strip("/")
        base_path = f"/{base_path}" if base_path else ""
        broker_url = (os.getenv("OAUTH_BROKER_URL") or "").strip().rstrip("/") or None

        meta = MetaConfig(
            client_id=os.getenv("META_APP_ID", ""),
            client_secret=os.getenv("META_APP_SECRET", ""),
            graph_version=os.getenv("META_GRAPH_VERSION") or DEFAULT_GRAPH_VERSION,
            scopes=_csv(os.getenv("META_OAUTH_SCOPE")) or DEFAULT_SCOPES,
        )
        if not meta.is_configured():
            logger.warning("META_APP_ID / META_APP_SECRET not set; Meta linking disabled.")

        return cls(
            state_secret=secret,
            broker_url=broker_url,
            base_path=base_path,
            session_ttl=_number("OAUTH_BROKER_SESSION_TTL", DEFAULT_TTL_SECONDS),
            grace_seconds=_number("OAUTH_BROKER_GRACE_SECONDS", DEFAULT_GRACE_SECONDS),
            sweep_interval=_number("OAUTH_BROKER_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL),
            credentials_dir=os.getenv("OAUTH_BROKER_CREDENTIALS_DIR") or None,
            user_tokens=_user_tokens(os.getenv("OAUTH_BROKER_USER_TOKENS")),
            cors_origins=_csv(os.getenv("OAUTH_BROKER_CORS_ORIGINS")),
            meta=meta,
            debug=_truthy(os.getenv("OAUTH_BROKER_DEBUG")),
        )
