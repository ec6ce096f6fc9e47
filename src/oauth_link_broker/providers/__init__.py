"""External OAuth providers the broker can link accounts with."""

from __future__ import annotations

from .base import OAuthProvider  # noqa: F401
from .meta import MetaOAuthProvider  # noqa: F401

__all__ = ["OAuthProvider", "MetaOAuthProvider"]
