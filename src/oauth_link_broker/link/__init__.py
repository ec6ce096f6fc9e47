"""Link broker core package.

This namespace hosts the **HTTP-agnostic** building blocks for linking a
third-party OAuth grant to an already-authenticated application user through
a browser popup.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
signer
    HMAC-signed ``state`` parameter encoding / validation.
models
    Immutable dataclasses for link sessions, grants and credentials.
store
    In-memory link session registry with expiry and a sweep task.
credentials
    Persistence of linked credentials keyed by application user.
errors
    Exception types used by the broker logic.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).
service
    The :class:`LinkBroker` façade used by the HTTP layer.

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock, epoch_ms  # noqa: F401
from .credentials import (  # noqa: F401
    CredentialStore,
    DiskCredentialStore,
    InMemoryCredentialStore,
)
from .errors import (  # noqa: F401
    CredentialPersistenceError,
    InvalidStateError,
    LinkError,
    SessionExpiredError,
    SessionNotFoundError,
    TokenExchangeError,
    UnknownProviderError,
)
from .log_utils import get_link_logger, mask_sensitive  # noqa: F401
from .models import (  # noqa: F401
    LinkedCredential,
    LinkOutcome,
    LinkSession,
    LinkStart,
    ProviderGrant,
)
from .service import LinkBroker  # noqa: F401
from .signer import StatePayload, StateSigner, build_state, parse_state  # noqa: F401
from .store import InMemoryLinkSessionStore, LinkSessionStore  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    "epoch_ms",
    # signer
    "StateSigner",
    "StatePayload",
    "build_state",
    "parse_state",
    # models
    "LinkSession",
    "LinkStart",
    "LinkOutcome",
    "ProviderGrant",
    "LinkedCredential",
    # stores
    "LinkSessionStore",
    "InMemoryLinkSessionStore",
    "CredentialStore",
    "DiskCredentialStore",
    "InMemoryCredentialStore",
    # errors
    "LinkError",
    "InvalidStateError",
    "UnknownProviderError",
    "TokenExchangeError",
    "CredentialPersistenceError",
    "SessionNotFoundError",
    "SessionExpiredError",
    # logging helpers
    "get_link_logger",
    "mask_sensitive",
    # service
    "LinkBroker",
]
