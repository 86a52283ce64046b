"""
Abstract Base Session Store

This module contains the abstract base class that defines the interface
for all session storage implementations.
"""

from abc import ABC, abstractmethod

from .storage_types import StorageTier


class SessionStore(ABC):
    """
    Abstract base class for session persistence.

    A store instance is bound to exactly one session key at construction.
    The SessionService uses this interface to load and persist the session
    blob without knowing the underlying storage mechanism.

    Storage failures are never raised; they are reported through return
    values so that callers can continue with an empty (fresh) session:
    - read() degrades to empty content
    - write() and destroy() return False
    """

    tier: StorageTier

    def __init__(self, key: str) -> None:
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def open(self) -> bool:
        """No-op; present for callers that expect an explicit open phase."""
        return True

    def close(self) -> bool:
        """No-op; present for callers that expect an explicit close phase."""
        return True

    @abstractmethod
    def read(self) -> bytes:
        """
        Read the stored content and refresh the record's last-touch time.

        Returns:
            The stored bytes, or b"" if no record exists or it cannot be read
        """
        pass

    @abstractmethod
    def write(self, content: bytes) -> bool:
        """
        Persist content, creating or overwriting the record.

        Args:
            content: The serialized session blob

        Returns:
            True if the content was written, False otherwise
        """
        pass

    @abstractmethod
    def destroy(self) -> bool:
        """
        Delete the record.

        Returns:
            True if a record was deleted, False if it was absent or could not be removed
        """
        pass

    @abstractmethod
    def exists(self) -> bool:
        """Check whether a record currently exists for the key."""
        pass

    def __enter__(self):
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(key={self._key!r})"
