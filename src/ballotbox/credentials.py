"""Session token persistence.

A credential store keeps at most one opaque token for one origin. The
absence of a token simply means "unauthenticated"; none of the
operations raise.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from ballotbox._constants import TOKEN_TTL_DAYS
from ballotbox.models._base import utcnow
from ballotbox.models.token import StoredToken

_logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Structural interface used by the dispatcher and account endpoints."""

    def save(self, token: str) -> None: ...

    def get(self) -> str | None: ...

    def clear(self) -> None: ...


class MemoryCredentialStore:
    """Process-local store; the token lives as long as the object."""

    def __init__(
        self,
        origin: str = "",
        *,
        ttl: timedelta = timedelta(days=TOKEN_TTL_DAYS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._origin = origin
        self._ttl = ttl
        self._clock = clock
        self._token: StoredToken | None = None

    def save(self, token: str) -> None:
        self._token = StoredToken(value=token, origin=self._origin, expires_at=self._clock() + self._ttl)

    def get(self) -> str | None:
        token = self._token
        if token is None:
            return None
        if token.is_expired(self._clock()):
            self._token = None
            return None
        return token.value

    def clear(self) -> None:
        self._token = None


class FileCredentialStore:
    """Durable store backed by a JSON file readable only by the owner.

    The file maps origins to tokens, so one file can serve several
    services without a token ever being read back for the wrong origin.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        origin: str,
        *,
        ttl: timedelta = timedelta(days=TOKEN_TTL_DAYS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._path = Path(path)
        self._origin = origin
        self._ttl = ttl
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, dict]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError):
            _logger.warning("Credential file %s is unreadable; treating as empty", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".credentials-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def save(self, token: str) -> None:
        stored = StoredToken(value=token, origin=self._origin, expires_at=self._clock() + self._ttl)
        data = self._read_all()
        data[self._origin] = stored.model_dump(mode="json")
        self._write_all(data)

    def get(self) -> str | None:
        data = self._read_all()
        entry = data.get(self._origin)
        if entry is None:
            return None
        try:
            stored = StoredToken.model_validate(entry)
        except ValidationError:
            _logger.warning("Dropping malformed credential entry for %s", self._origin)
            self.clear()
            return None
        if stored.origin != self._origin or stored.is_expired(self._clock()):
            self.clear()
            return None
        return stored.value

    def clear(self) -> None:
        data = self._read_all()
        if data.pop(self._origin, None) is not None:
            self._write_all(data)
