"""Access token persistence.

Lets a previously acquired token survive process restarts. A stored token
carries its own expiry; loading it past that point behaves as if nothing was
stored.
"""

from __future__ import annotations

import os
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

from .models import AccessToken, TokenSource
from .telemetry import get_logger


class TokenStore(Protocol):
    """External storage for a single access token."""

    def load(self) -> AccessToken | None:
        """Return the stored token, or None if absent or expired."""
        ...

    def save(self, token: AccessToken) -> None:
        """Store the token, replacing any previous one."""
        ...

    def clear(self) -> None:
        """Remove the stored token. Idempotent."""
        ...


class StoredToken(BaseModel):
    """On-disk representation of a persisted token."""

    model_config = ConfigDict(frozen=True)

    token: AccessToken
    store_expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.store_expires_at


class MemoryTokenStore:
    """In-process token store."""

    def __init__(self) -> None:
        self._token: AccessToken | None = None
        self._lock = threading.Lock()

    def load(self) -> AccessToken | None:
        with self._lock:
            if self._token is not None and self._token.is_expired():
                self._token = None
            return self._token

    def save(self, token: AccessToken) -> None:
        with self._lock:
            self._token = token

    def clear(self) -> None:
        with self._lock:
            self._token = None


class FileTokenStore:
    """Token store backed by a small JSON file.

    Args:
        path: File to store the token in. Parent directories are created.
        max_age: Storage lifetime in seconds for tokens without their own expiry.
    """

    def __init__(self, path: Path | str, *, max_age: int = 86340) -> None:
        self.path = Path(path)
        self.max_age = max_age
        self._lock = threading.Lock()
        self._logger = get_logger()

    def load(self) -> AccessToken | None:
        with self._lock:
            if not self.path.exists():
                return None
            try:
                stored = StoredToken.model_validate_json(self.path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                self._logger.warning("Discarding unreadable stored token", path=str(self.path), error=str(e))
                self._remove()
                return None

            if stored.is_expired() or stored.token.is_expired():
                self._logger.debug("Stored token expired", path=str(self.path))
                self._remove()
                return None

            return stored.token.model_copy(update={"source": TokenSource.STORED})

    def save(self, token: AccessToken) -> None:
        store_expires_at = token.expires_at or (
            datetime.now(UTC) + timedelta(seconds=self.max_age)
        )
        stored = StoredToken(token=token, store_expires_at=store_expires_at)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(stored.model_dump_json(), encoding="utf-8")
            os.chmod(tmp, 0o600)
            tmp.replace(self.path)

    def clear(self) -> None:
        with self._lock:
            self._remove()

    def _remove(self) -> None:
        self.path.unlink(missing_ok=True)
