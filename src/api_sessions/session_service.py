"""
Session Service

Front door of the package: resolves the caller's identity, binds it to a
session store and hands back a SessionHandle, a mutable mapping whose changes
are persisted on commit/close (or immediately, with write_through enabled).

Bindings live in a per-execution-context registry (contextvars), so each
thread or asyncio task sees its own sessions, and a second start() within the
same unit of work returns the handle that is already bound instead of
re-reading storage.
"""

from __future__ import annotations

import contextvars
import json
import logging
import random
from collections.abc import MutableMapping
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, Mapping

from .base_session_store import SessionStore
from .config import SessionConfig
from .exceptions import SessionClosedError
from .expiry_sweeper import ExpirySweeper
from .file_session_store import FileSessionStore
from .identity import IdentityResolver

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of a SessionHandle."""

    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


def serialize_session(data: Mapping[str, Any]) -> bytes:
    return json.dumps(dict(data), separators=(",", ":")).encode("utf-8")


def deserialize_session(content: bytes) -> dict[str, Any]:
    """Decode a stored blob; anything unreadable becomes an empty session."""
    if not content:
        return {}
    try:
        data = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Discarding unreadable session content: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning("Discarding session content that is not a mapping")
        return {}
    return data


class SessionHandle(MutableMapping):
    """In-memory view of one session, bound to its store."""

    def __init__(
        self,
        store: SessionStore,
        write_through: bool = False,
        on_release: Callable[["SessionHandle"], None] | None = None,
    ) -> None:
        self._store = store
        self._write_through = write_through
        self._on_release = on_release
        self._data: dict[str, Any] = {}
        self._state = SessionState.UNBOUND

    @property
    def key(self) -> str:
        return self._store.key

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def state(self) -> SessionState:
        return self._state

    def bind(self) -> SessionHandle:
        """Open the store and load its content into memory."""
        if self._state is SessionState.CLOSED:
            raise SessionClosedError(f"Session {self.key} is closed")
        if self._state is SessionState.UNBOUND:
            self._store.open()
            self._data = deserialize_session(self._store.read())
            self._state = SessionState.BOUND
        return self

    def _check_open(self) -> None:
        if self._state is not SessionState.BOUND:
            raise SessionClosedError(f"Session {self.key} is {self._state.value}")

    # Mapping interface
    def __getitem__(self, name: str) -> Any:
        self._check_open()
        return self._data[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._check_open()
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            raise TypeError(f"Session value {name!r} is not JSON-serializable: {e}") from e
        self._data[name] = value
        if self._write_through:
            self.commit()

    def __delitem__(self, name: str) -> None:
        self._check_open()
        del self._data[name]
        if self._write_through:
            self.commit()

    def __iter__(self) -> Iterator[str]:
        self._check_open()
        return iter(list(self._data))

    def __len__(self) -> int:
        self._check_open()
        return len(self._data)

    def set(self, name: str, value: Any) -> None:
        self[name] = value

    def to_dict(self) -> dict[str, Any]:
        """Return a shallow copy of the session data."""
        self._check_open()
        return dict(self._data)

    # Persistence
    def commit(self) -> bool:
        """Write the current data to the store."""
        self._check_open()
        return self._store.write(serialize_session(self._data))

    def close(self) -> bool:
        """Commit and release the session. Closing twice is a no-op."""
        if self._state is SessionState.CLOSED:
            return True
        written = True
        if self._state is SessionState.BOUND:
            written = self.commit()
            self._store.close()
        self._release()
        return written

    def destroy(self) -> bool:
        """Delete the stored session and release the handle."""
        self._check_open()
        self._data.clear()
        destroyed = self._store.destroy()
        self._store.close()
        self._release()
        return destroyed

    def _release(self) -> None:
        self._state = SessionState.CLOSED
        if self._on_release is not None:
            self._on_release(self)

    def __enter__(self):
        """Context manager entry."""
        return self.bind()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - commits and closes the session."""
        self.close()

    def __repr__(self) -> str:
        return f"SessionHandle(key={self.key!r}, state={self._state.value})"


class SessionService:
    """Resolve, bind and track sessions for the current execution context."""

    def __init__(
        self,
        config: SessionConfig | None = None,
        resolver: IdentityResolver | None = None,
        sweeper: ExpirySweeper | None = None,
        store_factory: Callable[[str], SessionStore] | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.resolver = resolver or IdentityResolver()
        self.sweeper = sweeper or ExpirySweeper(self.config)
        self._store_factory = store_factory or (
            lambda key: FileSessionStore(key, self.config)
        )
        self._registry: contextvars.ContextVar[dict | None] = contextvars.ContextVar(
            f"api_sessions_registry_{id(self)}", default=None
        )

    def _bound(self) -> dict[str | None, SessionHandle]:
        # Never mutated in place: child tasks share the parent's dict object.
        return self._registry.get() or {}

    def _unbind(self, discriminator: str | None, handle: SessionHandle) -> None:
        bound = self._bound()
        if bound.get(discriminator) is handle:
            self._registry.set(
                {name: h for name, h in bound.items() if name != discriminator}
            )

    def current(self, discriminator: str | None = None) -> SessionHandle | None:
        """Return the handle bound in this context, if any."""
        bound = self._registry.get()
        return bound.get(discriminator) if bound else None

    def start(
        self,
        environ: Mapping[str, Any] | None = None,
        discriminator: str | None = None,
    ) -> SessionHandle:
        """
        Get the session for the current request.

        Args:
            environ: CGI-style request metadata used to resolve the origin
            discriminator: Optional scope combined with the origin address

        Returns:
            The bound SessionHandle; the same object for repeated calls in
            one execution context
        """
        bound = self._bound()
        handle = bound.get(discriminator)
        if handle is not None and handle.state is SessionState.BOUND:
            return handle

        key = self.resolver.resolve(environ, discriminator)
        store = self._store_factory(key)

        handle = SessionHandle(
            store,
            write_through=self.config.write_through,
            on_release=lambda released: self._unbind(discriminator, released),
        )
        handle.bind()
        self._registry.set({**bound, discriminator: handle})
        logger.debug(f"Bound session {key}")

        self._maybe_sweep()
        return handle

    def _maybe_sweep(self) -> None:
        probability = self.config.gc_probability
        if probability > 0 and random.random() < probability:
            self.sweep()

    def sweep(self) -> None:
        """Run the expiry sweep now."""
        self.sweeper.sweep(self.config.lifetime_seconds)

    @contextmanager
    def scope(self) -> Iterator[SessionService]:
        """
        Delimit one unit of work.

        Sessions started inside the block are committed and closed on exit,
        and bindings made inside do not leak to the enclosing context.
        """
        token = self._registry.set({})
        try:
            yield self
        finally:
            try:
                for handle in list(self._bound().values()):
                    try:
                        handle.close()
                    except Exception as e:  # noqa: BLE001
                        logger.error(f"Failed to close session {handle.key}: {e}")
            finally:
                self._registry.reset(token)
