"""LinkBroker – links a third-party OAuth grant to an authenticated user.

Handlers in ``oauth_link_broker.servers.routes`` call the thin façade methods
below; everything here is HTTP-agnostic.

Flow
----
1. :meth:`LinkBroker.start_link` creates a link session and returns the
   provider authorization URL carrying a signed state and the broker's fixed
   callback address.
2. The provider redirects the popup to the callback, which calls
   :meth:`LinkBroker.complete_link`.  Every outcome is a :class:`LinkOutcome`;
   nothing raises past this method.
3. The initiating tab polls :meth:`LinkBroker.get_status` in case the popup's
   ``postMessage`` never arrives.

**No secrets are logged**: link session ids are truncated and access tokens
never leave the callback's own stack except to be persisted.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from anyio import to_thread

from oauth_link_broker.link.clock import Clock, default_clock, epoch_ms
from oauth_link_broker.link.credentials import CredentialStore
from oauth_link_broker.link.errors import (
    CredentialPersistenceError,
    InvalidStateError,
    LinkError,
    SessionExpiredError,
    SessionNotFoundError,
    TokenExchangeError,
    UnknownProviderError,
)
from oauth_link_broker.link.log_utils import get_link_logger, mask_sensitive
from oauth_link_broker.link.models import (
    LinkedCredential,
    LinkOutcome,
    LinkSession,
    LinkStart,
    ProviderGrant,
)
from oauth_link_broker.link.signer import StateSigner, build_state, parse_state
from oauth_link_broker.link.store import LinkSessionStore
from oauth_link_broker.providers.base import OAuthProvider

_LOG = logging.getLogger("oauth-link-broker.link.service")

MSG_MISSING_PARAMS = "Missing OAuth parameters"
MSG_SESSION_NOT_FOUND = "Link session not found or expired"
MSG_BAD_NONCE = "Invalid session nonce"
MSG_SESSION_EXPIRED = "Link session expired"
MSG_SESSION_USED = "Link session already used"
MSG_CALLBACK_FAILED = "OAuth callback failed"


def replace_state(url: str, state: str) -> str:
    """Return *url* with its ``state`` query parameter set to *state*."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "state"]
    query.append(("state", state))
    return urlunsplit(parts._replace(query=urlencode(query)))


class LinkBroker:
    """Application service orchestrating popup-based account linking."""

    def __init__(
        self,
        *,
        signer: StateSigner,
        sessions: LinkSessionStore,
        credentials: CredentialStore,
        providers: Mapping[str, OAuthProvider],
        clock: Clock = default_clock,
    ) -> None:
        self.signer = signer
        self.sessions = sessions
        self.credentials = credentials
        self.providers = dict(providers)
        self._clock = clock

    def provider(self, name: str) -> OAuthProvider:
        try:
            return self.providers[name]
        except KeyError:
            raise UnknownProviderError() from None

    # ------------------------------------------------------------------ #
    # Flow initiator                                                     #
    # ------------------------------------------------------------------ #
    def start_link(
        self, *, provider: str, user_id: str, origin: str, redirect_uri: str
    ) -> LinkStart:
        """Create a link session and return the popup URL for it.

        *redirect_uri* is the broker's fixed callback address; the same value
        must be passed to :meth:`complete_link`.
        """
        oauth = self.provider(provider)
        session = self.sessions.create(user_id=user_id, origin=origin, provider=provider)
        state = build_state(session.id, session.nonce, self.signer)
        auth_url = replace_state(oauth.build_authorize_url(redirect_uri), state)

        get_link_logger(
            base_logger_name="oauth-link-broker.link.service",
            link_session_id=session.id,
            provider=provider,
            user_id=user_id,
        ).info("Started link flow origin=%s redirect_uri=%s", origin, redirect_uri)
        return LinkStart(
            auth_url=auth_url, link_session_id=session.id, expires_at=session.expires_at
        )

    # ------------------------------------------------------------------ #
    # Callback handler                                                   #
    # ------------------------------------------------------------------ #
    async def complete_link(
        self,
        *,
        provider: str,
        code: str | None,
        state: str | None,
        error: str | None,
        redirect_uri: str,
        correlation_id: str | None = None,
    ) -> LinkOutcome:
        """Validate the provider redirect and persist the resulting credential."""
        log = get_link_logger(
            base_logger_name="oauth-link-broker.link.service",
            provider=provider,
            correlation_id=correlation_id,
        )
        if error:
            log.info("Provider returned error=%s", error)
            return LinkOutcome(success=False, error=f"OAuth error: {error}")

        if not code or not state:
            return LinkOutcome(success=False, error=MSG_MISSING_PARAMS)

        try:
            payload = parse_state(state, self.signer)
        except InvalidStateError as exc:
            log.warning("Rejected callback state: %s", exc.detail)
            return LinkOutcome(success=False, error=exc.reason)

        session = self.sessions.get(payload.link_session_id)
        if session is None or session.provider != provider:
            log.warning(
                "No link session for id=%s", mask_sensitive(payload.link_session_id)
            )
            return LinkOutcome(success=False, error=MSG_SESSION_NOT_FOUND)

        log = get_link_logger(
            base_logger_name="oauth-link-broker.link.service",
            link_session_id=session.id,
            provider=provider,
            user_id=session.user_id,
            correlation_id=correlation_id,
        )
        if session.nonce != payload.nonce:
            log.warning("Nonce mismatch on callback")
            return LinkOutcome(success=False, error=MSG_BAD_NONCE, origin=session.origin)

        if session.is_expired(clock=self._clock):
            # left in place so the status poller can still answer 410; the sweep drops it
            log.info("Callback arrived after link session expiry")
            return LinkOutcome(
                success=False,
                link_session_id=session.id,
                error=MSG_SESSION_EXPIRED,
                origin=session.origin,
            )

        if session.is_terminal:
            log.warning("Callback replayed against a finished link session")
            return LinkOutcome(
                success=False,
                link_session_id=session.id,
                error=MSG_SESSION_USED,
                origin=session.origin,
            )

        try:
            await self._link_account(session, code=code, redirect_uri=redirect_uri)
        except LinkError as exc:
            log.warning("Link failed: %s (%s)", exc.reason, exc.detail or "-")
            return self._fail(session, MSG_CALLBACK_FAILED)
        except Exception:
            log.error("Unexpected error completing link", exc_info=True)
            return self._fail(session, MSG_CALLBACK_FAILED)

        self.sessions.mark_completed(session.id)
        log.info("Linked %s account", provider)
        return LinkOutcome(success=True, link_session_id=session.id, origin=session.origin)

    async def _link_account(self, session: LinkSession, *, code: str, redirect_uri: str) -> None:
        oauth = self.provider(session.provider)
        try:
            grant: ProviderGrant = await to_thread.run_sync(
                oauth.exchange_code, code, redirect_uri
            )
        except TokenExchangeError:
            raise
        except Exception as exc:
            raise TokenExchangeError(detail=str(exc)) from exc

        now = int(self._clock())
        credential = LinkedCredential(
            # keyed by the session's user, never by anything the client sent
            user_id=session.user_id,
            provider=session.provider,
            access_token=grant.access_token,
            account_id=grant.account_id,
            account_name=grant.account_name,
            connected_at=now,
            expires_at=now + grant.expires_in if grant.expires_in else None,
        )
        try:
            await to_thread.run_sync(self.credentials.save, credential)
        except Exception as exc:
            raise CredentialPersistenceError(detail=str(exc)) from exc

    def _fail(self, session: LinkSession, reason: str) -> LinkOutcome:
        self.sessions.mark_error(session.id, reason)
        return LinkOutcome(
            success=False, link_session_id=session.id, error=reason, origin=session.origin
        )

    # ------------------------------------------------------------------ #
    # Status poller                                                      #
    # ------------------------------------------------------------------ #
    def get_status(self, link_session_id: str, *, provider: str | None = None) -> dict[str, Any]:
        """Return ``{completed, error, expiresAt}`` for a tracked session.

        Raises
        ------
        SessionNotFoundError
            Unknown id, grace period elapsed, or bound to another provider.
        SessionExpiredError
            Session is still tracked but past ``expires_at``.
        """
        session = self.sessions.get(link_session_id)
        if session is None or (provider is not None and session.provider != provider):
            raise SessionNotFoundError()
        if session.is_expired(clock=self._clock):
            raise SessionExpiredError()
        return {
            "completed": session.completed,
            "error": session.error,
            "expiresAt": session.expires_at_ms,
        }

    # ------------------------------------------------------------------ #
    # Linked credentials                                                 #
    # ------------------------------------------------------------------ #
    async def get_connection(self, *, user_id: str, provider: str) -> dict[str, Any]:
        """Describe the stored credential for *user_id* without the token."""
        self.provider(provider)
        cred = await to_thread.run_sync(self.credentials.load, user_id, provider)
        if cred is None:
            return {"connected": False, "accountId": None, "accountName": None, "connectedAt": None}
        return {
            "connected": True,
            "accountId": cred.account_id,
            "accountName": cred.account_name,
            "connectedAt": epoch_ms(cred.connected_at),
        }

    async def validate_connection(self, *, user_id: str, provider: str) -> bool:
        """Return *True* if the stored token is still accepted by the provider."""
        oauth = self.provider(provider)
        cred = await to_thread.run_sync(self.credentials.load, user_id, provider)
        if cred is None:
            return False
        return await to_thread.run_sync(oauth.validate_token, cred.access_token)

    async def disconnect(self, *, user_id: str, provider: str) -> bool:
        """Forget the stored credential; return whether one existed.

        Store failures (``OSError``, including a lock ``TimeoutError``)
        propagate to the caller.
        """
        self.provider(provider)
        removed = await to_thread.run_sync(self.credentials.delete, user_id, provider)
        _LOG.info("Disconnected provider=%s user=%s removed=%s", provider, user_id, removed)
        return removed
