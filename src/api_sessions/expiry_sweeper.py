"""
Expiry Sweeper

Reclaims session files that have not been touched within the configured
lifetime. The sweep is independent of any single session: it scans the whole
session directory, and can be run on demand, probabilistically from the
SessionService, or periodically from a background thread.
"""

from __future__ import annotations

import logging
import threading
import time

import psutil

from .config import SessionConfig
from .session_metadata import SessionMetadata
from .storage_types import StorageStats, StorageTier

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Delete expired session files from the session directory."""

    def __init__(self, config: SessionConfig | None = None) -> None:
        self._config = config or SessionConfig()
        self._session_dir = self._config.session_dir
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def _now(self) -> float:
        return time.time()

    def sweep(self, lifetime_seconds: int | None = None) -> None:
        """
        Delete every session file last modified before now - lifetime.

        Args:
            lifetime_seconds: Accepted for callers that pass their own maximum
                lifetime; the configured lifetime is always used so that no
                caller can shorten another session's life.
        """
        self.purge()

    def purge(self) -> int:
        """Run a sweep and return the number of session files removed."""
        expire_before = self._now() - self._config.lifetime_seconds
        try:
            entries = list(self._session_dir.iterdir())
        except OSError as e:
            logger.debug(f"Session directory {self._session_dir} not readable: {e}")
            return 0

        removed = 0
        for entry in entries:
            try:
                if entry.is_file() and entry.stat().st_mtime < expire_before:
                    entry.unlink()
                    removed += 1
            except OSError as e:
                logger.debug(f"Skipping session file {entry.name}: {e}")
                continue

        if removed:
            logger.info(f"Expired {removed} session(s) in {self._session_dir}")
        return removed

    def list_sessions(self) -> list[SessionMetadata]:
        """Describe every session file currently in the directory."""
        sessions = []
        try:
            entries = list(self._session_dir.iterdir())
        except OSError:
            return sessions

        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except OSError:
                # Removed between listing and stat
                continue
            sessions.append(
                SessionMetadata(
                    key=entry.name,
                    path=str(entry),
                    size_bytes=stat.st_size,
                    last_modified=stat.st_mtime,
                )
            )
        return sessions

    def get_oldest_sessions(self, limit: int = 10) -> list[tuple[str, float]]:
        """Get the least recently touched sessions, oldest first."""
        sessions = [(s.key, s.last_modified) for s in self.list_sessions()]
        sessions.sort(key=lambda x: x[1])
        return sessions[:limit]

    def get_storage_stats(self) -> StorageStats:
        """Get storage statistics for the session directory."""
        sessions = self.list_sessions()
        return StorageStats(
            total_sessions=len(sessions),
            total_size_bytes=sum(s.size_bytes for s in sessions),
            oldest_last_modified=min(
                (s.last_modified for s in sessions), default=None
            ),
            disk_usage_percent=self._get_disk_usage_percent(),
            tier=StorageTier.FILESYSTEM,
        )

    def _get_disk_usage_percent(self) -> float:
        """Get disk usage percentage of the volume holding the sessions."""
        target = self._session_dir
        if not target.exists():
            target = target.parent
        try:
            return float(psutil.disk_usage(str(target)).percent)
        except OSError:
            return 0.0

    # Background sweeping
    def start(self, interval_seconds: float | None = None) -> bool:
        """
        Sweep periodically on a daemon thread.

        Args:
            interval_seconds: Seconds between sweeps; defaults to the
                configured sweep interval, then to the lifetime

        Returns:
            True if a thread was started, False if one is already running
        """
        interval = (
            interval_seconds
            or self._config.sweep_interval_seconds
            or self._config.lifetime_seconds
        )
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, args=(interval,), name="session-sweeper", daemon=True
            )
            self._thread.start()
        logger.info(f"Session sweeper started, interval={interval}s")
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the background thread, if any, and wait for it to exit."""
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.sweep()
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Session sweep failed: {e}")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - stops background sweeping."""
        self.stop()
