"""HTTP layer (Starlette) for the OAuth link broker."""

from __future__ import annotations

from .app import build_broker, create_app  # noqa: F401

__all__ = ["create_app", "build_broker"]
