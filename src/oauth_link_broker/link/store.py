"""In-process storage for pending link sessions.

This module introduces a *narrow* storage interface (:class:`LinkSessionStore`)
and a dict-backed implementation (:class:`InMemoryLinkSessionStore`).

* **Lifetime** – process-lifetime only, not crash-safe.  Abandoned flows age out
  through ``expires_at`` and a periodic sweep task.
* **Grace deletion** – a session that reached a terminal state stays readable
  for ``grace_seconds`` so a late status poll still observes the outcome.
* **Concurrency** – every operation is a synchronous dict access executed on the
  event loop, so no locking is required.  Running several worker processes
  needs an external keyed store with TTL support instead.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import secrets
from typing import Protocol, runtime_checkable

from oauth_link_broker.link.clock import Clock, default_clock
from oauth_link_broker.link.models import LinkSession

_LOG = logging.getLogger("oauth-link-broker.link.store")

DEFAULT_TTL_SECONDS = 15 * 60
DEFAULT_GRACE_SECONDS = 30
DEFAULT_SWEEP_INTERVAL = 5 * 60


@runtime_checkable
class LinkSessionStore(Protocol):
    """Minimal storage contract for link sessions."""

    def create(self, user_id: str, origin: str, provider: str) -> LinkSession: ...
    def get(self, link_session_id: str) -> LinkSession | None: ...
    def mark_completed(self, link_session_id: str) -> LinkSession | None: ...
    def mark_error(self, link_session_id: str, reason: str) -> LinkSession | None: ...
    def delete(self, link_session_id: str) -> None: ...
    def sweep(self) -> int: ...


class InMemoryLinkSessionStore(LinkSessionStore):
    """Dict-backed :class:`LinkSessionStore` with a cancellable sweep task."""

    def __init__(
        self,
        *,
        clock: Clock = default_clock,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self._clock = clock
        self.ttl_seconds = ttl_seconds
        self.grace_seconds = grace_seconds
        self.sweep_interval = sweep_interval
        self._sessions: dict[str, LinkSession] = {}
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    # ---------------- lifecycle ------------------------------------------ #
    def start(self) -> None:
        """Start the periodic sweep; must be called from a running loop."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                removed = self.sweep()
            except Exception:
                _LOG.exception("Link session sweep failed")
                continue
            if removed:
                _LOG.debug("Swept %d link session(s)", removed)

    # ---------------- sessions ------------------------------------------- #
    def create(self, user_id: str, origin: str, provider: str) -> LinkSession:
        session = LinkSession(
            id=secrets.token_hex(16),
            user_id=user_id,
            provider=provider,
            origin=origin,
            # drawn separately from the id; knowing one reveals nothing about the other
            nonce=secrets.token_hex(16),
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._sessions[session.id] = session
        return session

    def get(self, link_session_id: str) -> LinkSession | None:
        session = self._sessions.get(link_session_id)
        if session is None:
            return None
        if session.is_purged(clock=self._clock):
            del self._sessions[link_session_id]
            return None
        return session

    def _finish(self, link_session_id: str, **changes: object) -> LinkSession | None:
        session = self.get(link_session_id)
        if session is None:
            return None
        updated = dataclasses.replace(
            session, purge_at=self._clock() + self.grace_seconds, **changes
        )
        self._sessions[link_session_id] = updated
        return updated

    def mark_completed(self, link_session_id: str) -> LinkSession | None:
        return self._finish(link_session_id, completed=True, error=None)

    def mark_error(self, link_session_id: str, reason: str) -> LinkSession | None:
        return self._finish(link_session_id, completed=False, error=reason)

    def delete(self, link_session_id: str) -> None:
        self._sessions.pop(link_session_id, None)

    # ---------------- maintenance ---------------------------------------- #
    def sweep(self) -> int:
        """Remove expired and purged sessions; return how many were dropped."""
        stale = [
            sid
            for sid, session in self._sessions.items()
            if session.is_expired(clock=self._clock) or session.is_purged(clock=self._clock)
        ]
        for sid in stale:
            del self._sessions[sid]
        return len(stale)
