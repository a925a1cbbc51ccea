"""Session state owned elsewhere: bearer token and user profile."""

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from .models import User

log = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Read-only view of the login session."""

    def token(self) -> str | None:
        """Current bearer token, or None when logged out."""
        ...

    def user(self) -> User | None:
        """Profile of the logged-in user."""
        ...


class MemorySessionStore:
    def __init__(self, token: str | None = None, user: User | None = None):
        self._token = token
        self._user = user

    def token(self) -> str | None:
        return self._token

    def user(self) -> User | None:
        return self._user


class FileSessionStore:
    """Session written by the login flow as `{"token": ..., "user": {...}}`.

    The token is re-read on every call so a refreshed login is picked up by the
    next connect. The user profile is parsed once and kept for the session.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._user: User | None = None

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            log.warning(f"Unreadable session file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def token(self) -> str | None:
        token = self._read().get("token")
        return token or None

    def user(self) -> User | None:
        if self._user is None:
            data = self._read().get("user")
            if isinstance(data, dict):
                self._user = User.from_dict(data)
        return self._user
