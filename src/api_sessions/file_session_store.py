"""
Filesystem Session Store Implementation

One file per session key under a shared session directory. The file's
modification time is the session's last-touch time: it is refreshed on every
read and every write, and the ExpirySweeper uses it to reclaim idle sessions.

Key Properties:
- Directory creation is best-effort at construction; a read-only or missing
  directory only surfaces as a failed write later
- No locking: a read followed by a write is not atomic, last writer wins
- I/O errors are logged and reported through return values
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .base_session_store import SessionStore
from .config import SessionConfig
from .exceptions import InvalidSessionKeyError
from .identity import sanitize_key
from .storage_types import StorageTier

logger = logging.getLogger(__name__)


class FileSessionStore(SessionStore):
    """File-backed SessionStore bound to a single session key."""

    tier = StorageTier.FILESYSTEM

    def __init__(self, key: str, config: SessionConfig | None = None) -> None:
        """
        Initialize FileSessionStore.

        Args:
            key: Session key; sanitized again before building the path
            config: Session configuration (directory layout)
        """
        super().__init__(sanitize_key(key))
        self._config = config or SessionConfig()
        self._session_dir = self._config.session_dir
        self._path = self._session_dir / self._key

        # Sanitized keys can still be "." or "..", which are not files.
        if self._path.parent != self._session_dir or self._key in (".", ".."):
            raise InvalidSessionKeyError(f"Session key {key!r} is not a file name")

        try:
            self._session_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug(f"Could not create session directory {self._session_dir}: {e}")

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def read(self) -> bytes:
        if not self._path.is_file():
            return b""
        try:
            os.utime(self._path)
        except OSError as e:
            logger.debug(f"Could not touch session file {self._path}: {e}")
        try:
            return self._path.read_bytes()
        except OSError as e:
            logger.warning(f"Failed to read session {self._key}: {e}")
            return b""

    def write(self, content: bytes) -> bool:
        try:
            self._path.write_bytes(content)
        except OSError as e:
            logger.warning(f"Failed to write session {self._key}: {e}")
            return False
        return True

    def destroy(self) -> bool:
        try:
            self._path.unlink()
        except FileNotFoundError:
            logger.debug(f"Session {self._key} has no record to destroy")
            return False
        except OSError as e:
            logger.warning(f"Failed to destroy session {self._key}: {e}")
            return False
        return True
