"""Time source for the link broker.

Session expiry, grace purging and credential timestamps all read the current
time through an injected :class:`Clock` so tests can move time forward
without sleeping.  Timestamps are kept as epoch *seconds* internally and
converted with :func:`epoch_ms` only where they leave the process (browser
clients compare against ``Date.now()``).
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Zero-argument callable returning epoch seconds."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    return time.time()


def epoch_ms(seconds: float) -> int:
    """Epoch seconds to the integer milliseconds used in JSON payloads."""
    return int(seconds * 1000)
