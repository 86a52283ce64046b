"""
In-Memory Session Store Implementation (Cacheout-backed)

Keeps session blobs in a Cacheout cache shared by every store instance of a
process. Entries carry a sliding TTL equal to the configured lifetime, which
is refreshed on every read and write, so idle sessions expire on their own.

Useful for tests and single-process deployments where a shared filesystem is
not wanted. Nothing survives a restart.
"""

from __future__ import annotations

from typing import Optional, cast

from cacheout import Cache

from .base_session_store import SessionStore
from .config import SessionConfig
from .storage_types import StorageTier


class MemorySessionStore(SessionStore):
    """In-memory SessionStore with sliding TTL."""

    tier = StorageTier.MEMORY

    def __init__(self, key: str, cache: Cache, ttl_seconds: int | None = None) -> None:
        super().__init__(key)
        self._cache = cache
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def create_cache(config: SessionConfig | None = None, max_sessions: int = 0) -> Cache:
        """Build the shared cache; max_sessions=0 means unbounded."""
        config = config or SessionConfig()
        return Cache(maxsize=max_sessions, ttl=config.lifetime_seconds)

    def exists(self) -> bool:
        return self._cache.has(self._key)

    def read(self) -> bytes:
        content = cast(Optional[bytes], self._cache.get(self._key))
        if content is None:
            return b""
        # Re-set to refresh TTL (sliding TTL behavior)
        self._cache.set(self._key, content, ttl=self._ttl_seconds)
        return content

    def write(self, content: bytes) -> bool:
        self._cache.set(self._key, bytes(content), ttl=self._ttl_seconds)
        return True

    def destroy(self) -> bool:
        return self._cache.delete(self._key) > 0
