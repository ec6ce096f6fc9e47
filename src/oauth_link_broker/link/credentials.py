"""Persistence of linked provider credentials, keyed by application user.

This module introduces a *narrow* persistence interface
(:class:`CredentialStore`) plus two implementations:

* :class:`DiskCredentialStore` – one JSON file per ``(user, provider)``.
  Writes use *temp-file + os.replace* under an advisory lock file, and
  user-supplied identifiers are hashed before hitting the filesystem.
* :class:`InMemoryCredentialStore` – dict-backed, for tests and single-process
  development setups.

Environment variables
---------------------
OAUTH_BROKER_CREDENTIALS_DIR
    Base directory for persisted credentials.
    Defaults to ``~/.oauth-link-broker/credentials`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from contextlib import contextmanager
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from oauth_link_broker.link.models import LinkedCredential

_LOG = logging.getLogger("oauth-link-broker.link.credentials")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 16) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _slug(text: str, max_len: int = 40) -> str:
    """Filesystem-safe slug."""
    text = (text or "").strip().lower()
    text = re.sub(r"[^a-z0-9._-]+", "-", text)
    text = re.sub(r"-{2,}", "-", text).strip("-")
    return text[:max_len] or "unknown"


STALE_LOCK_SECONDS = 30.0


def _atomic_write(path: Path, data: dict) -> None:
    """Replace *path* with *data*; the file is readable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.chmod(tmp, 0o600)  # O_CREAT mode is ignored for an existing leftover
    os.replace(tmp, path)  # atomic on POSIX


def _break_stale_lock(lock_path: Path, stale_after: float) -> bool:
    """Remove *lock_path* if its holder has not touched it for *stale_after* s."""
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return True
    if age < stale_after:
        return False
    _LOG.warning("Breaking stale lock %s (age %.0fs)", lock_path.name, age)
    lock_path.unlink(missing_ok=True)
    return True


@contextmanager
def _file_lock(
    lock_path: Path,
    retries: int = 25,
    delay: float = 0.2,
    stale_after: float = STALE_LOCK_SECONDS,
) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation.

    A lock file older than *stale_after* seconds is left over from a crashed
    holder and is removed before retrying.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    attempt = 0
    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break
        except FileExistsError:
            if _break_stale_lock(lock_path, stale_after):
                continue
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            attempt += 1
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class CredentialStore(Protocol):
    """Minimal persistence contract for linked credentials."""

    def save(self, credential: LinkedCredential) -> None: ...
    def load(self, user_id: str, provider: str) -> LinkedCredential | None: ...
    def delete(self, user_id: str, provider: str) -> bool: ...


class InMemoryCredentialStore(CredentialStore):
    """Dict-backed :class:`CredentialStore`."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], LinkedCredential] = {}

    def save(self, credential: LinkedCredential) -> None:
        self._records[(credential.user_id, credential.provider)] = credential

    def load(self, user_id: str, provider: str) -> LinkedCredential | None:
        return self._records.get((user_id, provider))

    def delete(self, user_id: str, provider: str) -> bool:
        return self._records.pop((user_id, provider), None) is not None


class DiskCredentialStore(CredentialStore):
    """JSON-file implementation of :class:`CredentialStore`."""

    def __init__(self, base_dir: str | os.PathLike | None = None) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("OAUTH_BROKER_CREDENTIALS_DIR")
            or Path.home() / ".oauth-link-broker" / "credentials"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, user_id: str, provider: str) -> Path:
        return self.base_dir / _slug(provider) / f"{_hash(user_id)}.json"

    def _lock(self, user_id: str, provider: str) -> Path:
        return self._path(user_id, provider).with_suffix(".lock")

    def save(self, credential: LinkedCredential) -> None:
        path = self._path(credential.user_id, credential.provider)
        with _file_lock(self._lock(credential.user_id, credential.provider)):
            _atomic_write(path, asdict(credential))

    def load(self, user_id: str, provider: str) -> LinkedCredential | None:
        path = self._path(user_id, provider)
        if not path.exists():
            return None
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        return LinkedCredential(**data)

    def delete(self, user_id: str, provider: str) -> bool:
        path = self._path(user_id, provider)
        with _file_lock(self._lock(user_id, provider)):
            existed = path.exists()
            path.unlink(missing_ok=True)
        return existed
