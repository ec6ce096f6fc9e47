"""Shared fixtures: a controllable clock, a fake provider and a wired broker."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from oauth_link_broker.link.credentials import InMemoryCredentialStore
from oauth_link_broker.link.errors import TokenExchangeError
from oauth_link_broker.link.models import ProviderGrant
from oauth_link_broker.link.service import LinkBroker
from oauth_link_broker.link.signer import StateSigner
from oauth_link_broker.link.store import InMemoryLinkSessionStore

SECRET = "test-broker-secret"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Clock returning a settable time."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeProvider:
    """In-process stand-in for an OAuth provider."""

    name: str = "meta"
    authorize_base: str = "https://provider.example/dialog/oauth"
    grant: ProviderGrant = field(
        default_factory=lambda: ProviderGrant(
            access_token="access-xyz", account_id="act-42", account_name="Ada", expires_in=3600
        )
    )
    fail_with: Exception | None = None
    exchanges: list[tuple[str, str]] = field(default_factory=list)

    def build_authorize_url(self, redirect_uri: str) -> str:
        return f"{self.authorize_base}?client_id=cid&redirect_uri={redirect_uri}&state=provider-default"

    def exchange_code(self, code: str, redirect_uri: str) -> ProviderGrant:
        self.exchanges.append((code, redirect_uri))
        if self.fail_with is not None:
            raise self.fail_with
        return self.grant

    def validate_token(self, access_token: str) -> bool:
        return access_token == self.grant.access_token


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signer() -> StateSigner:
    return StateSigner(SECRET)


@pytest.fixture
def sessions(clock: FakeClock) -> InMemoryLinkSessionStore:
    return InMemoryLinkSessionStore(clock=clock, ttl_seconds=900, grace_seconds=30)


@pytest.fixture
def credentials() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def broker(
    signer: StateSigner,
    sessions: InMemoryLinkSessionStore,
    credentials: InMemoryCredentialStore,
    provider: FakeProvider,
    clock: FakeClock,
) -> LinkBroker:
    return LinkBroker(
        signer=signer,
        sessions=sessions,
        credentials=credentials,
        providers={"meta": provider},
        clock=clock,
    )


@pytest.fixture
def failing_exchange(provider: FakeProvider) -> FakeProvider:
    provider.fail_with = TokenExchangeError(detail="provider returned 400")
    return provider
