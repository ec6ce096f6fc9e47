"""Contract between the link broker and an external OAuth provider."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from oauth_link_broker.link.models import ProviderGrant


@runtime_checkable
class OAuthProvider(Protocol):
    """An authorization-code provider the broker can link accounts with.

    ``exchange_code`` and ``validate_token`` perform blocking network I/O; the
    broker runs them in a worker thread.  ``exchange_code`` raises
    :class:`~oauth_link_broker.link.errors.TokenExchangeError` on any failure
    and never retries.
    """

    name: str

    def build_authorize_url(self, redirect_uri: str) -> str: ...

    def exchange_code(self, code: str, redirect_uri: str) -> ProviderGrant: ...

    def validate_token(self, access_token: str) -> bool: ...
