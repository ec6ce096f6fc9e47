"""Structured logging helpers for link broker components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``link_session_id`` – The link session identifier (first 6 chars kept)
- ``provider``        – External provider being linked (``meta``…)
- ``user_id``         – Application user on whose behalf the link is made
- ``correlation_id``  – Request correlation id set by the HTTP layer

Usage
-----
>>> from oauth_link_broker.link.log_utils import get_link_logger
>>> log = get_link_logger(
...     link_session_id="9f1c2b7d4e5a6b7c8d9e0f1a2b3c4d5e",
...     provider="meta",
... )
>>> log.info("Starting link flow")
INFO oauth-link-broker.link link_session_id=9f1c2b provider=meta ...
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


def mask_sensitive(value: str | None, keep: int = 6) -> str:
    """Return *value* truncated to its first ``keep`` characters plus ``****``."""
    if not value:
        return "<none>"
    if len(value) <= keep:
        return "****"
    return f"{value[:keep]}****"


class _LinkLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted link context into log records."""

    extra_keys = ("link_session_id", "provider", "user_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if extra is None or extra.get(k) is None:
                continue
            if k == "link_session_id":
                # the full id is a bearer handle for the status endpoint
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        # call-site extras win over the bound link context
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_link_logger(
    *,
    base_logger_name: str = "oauth-link-broker.link",
    link_session_id: str | None = None,
    provider: str | None = None,
    user_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with link context."""
    logger = logging.getLogger(base_logger_name)
    return _LinkLoggerAdapter(
        logger,
        {
            "link_session_id": link_session_id,
            "provider": provider,
            "user_id": user_id,
            "correlation_id": correlation_id,
        },
    )
