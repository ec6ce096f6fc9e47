"""Typed, immutable records used by the link broker."""

from __future__ import annotations

from dataclasses import dataclass

from oauth_link_broker.link.clock import Clock, default_clock, epoch_ms


@dataclass(frozen=True, slots=True)
class LinkSession:
    """One in-flight or finished attempt to link an external account to a user.

    Credential material is never kept here; the callback handler persists it
    straight to the credential store.
    """

    id: str
    user_id: str
    provider: str
    origin: str
    nonce: str
    expires_at: float
    completed: bool = False
    error: str | None = None
    # set once the session turns terminal; past this point it reads as absent
    purge_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.completed or self.error is not None

    @property
    def expires_at_ms(self) -> int:
        """``expires_at`` as epoch milliseconds, the unit browsers expect."""
        return epoch_ms(self.expires_at)

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once ``expires_at`` has passed."""
        return clock() > self.expires_at

    def is_purged(self, *, clock: Clock = default_clock) -> bool:
        return self.purge_at is not None and clock() >= self.purge_at


@dataclass(frozen=True, slots=True)
class ProviderGrant:
    """Result of a successful authorization-code exchange."""

    access_token: str
    account_id: str
    account_name: str | None = None
    expires_in: int | None = None


@dataclass(frozen=True, slots=True)
class LinkedCredential:
    """Credential persisted against an application user."""

    user_id: str
    provider: str
    access_token: str
    account_id: str
    connected_at: int
    account_name: str | None = None
    expires_at: int | None = None


@dataclass(frozen=True, slots=True)
class LinkStart:
    """What the initiating tab needs to open the popup and poll."""

    auth_url: str
    link_session_id: str
    expires_at: float

    def to_payload(self) -> dict[str, object]:
        return {
            "authUrl": self.auth_url,
            "linkSessionId": self.link_session_id,
            "expiresAt": epoch_ms(self.expires_at),
        }


@dataclass(frozen=True, slots=True)
class LinkOutcome:
    """Terminal result of one callback request, rendered into the popup page."""

    success: bool
    link_session_id: str | None = None
    error: str | None = None
    # postMessage target; None falls back to "*"
    origin: str | None = None
