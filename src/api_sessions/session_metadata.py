"""
Session Metadata

This module contains the SessionMetadata class used by the ExpirySweeper
to describe the session records found on the filesystem.
"""

from dataclasses import dataclass


@dataclass
class SessionMetadata:
    """Metadata for a session record stored on filesystem."""

    key: str
    path: str
    size_bytes: int
    last_modified: float  # file mtime, refreshed on every read and write
