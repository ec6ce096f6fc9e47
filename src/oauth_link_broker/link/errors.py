"""Exception types raised by the link broker core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP
layer can transform them into JSON responses or callback pages.  The
``reason`` attribute is safe to show to the end user; anything more specific
belongs in server-side logs only.
"""

from __future__ import annotations


class LinkError(RuntimeError):
    """Base class for link flow failures with a user-presentable reason."""

    default_reason = "OAuth callback failed"

    def __init__(self, reason: str | None = None, *, detail: str | None = None) -> None:
        super().__init__(reason or self.default_reason)
        self.reason: str = reason or self.default_reason
        # Server-side only; never rendered.
        self.detail: str | None = detail

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.reason}


class InvalidStateError(LinkError):
    """Raised when an incoming state is malformed or its signature check fails."""

    default_reason = "Invalid or corrupted state parameter"


class UnknownProviderError(LinkError):
    """Raised when a route names a provider that is not registered."""

    default_reason = "Unknown provider"


class TokenExchangeError(LinkError):
    """Raised when the provider rejects the authorization code or is unreachable."""


class CredentialPersistenceError(LinkError):
    """Raised when the obtained credential cannot be saved for the user."""


class SessionNotFoundError(LinkError):
    """Raised when a link session id is unknown or its grace period elapsed."""

    default_reason = "Link session not found"


class SessionExpiredError(LinkError):
    """Raised when a link session is still tracked but past ``expires_at``."""

    default_reason = "Link session expired"
