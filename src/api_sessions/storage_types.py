"""
Storage Types and Data Classes

This module contains the core data structures and enums used by the session stores.
"""

from dataclasses import dataclass
from enum import Enum


class StorageTier(Enum):
    """Storage tier enumeration for session store implementations."""

    MEMORY = "memory"
    FILESYSTEM = "filesystem"


@dataclass
class StorageStats:
    """Storage statistics for monitoring the session directory."""

    total_sessions: int
    total_size_bytes: int
    oldest_last_modified: float | None
    disk_usage_percent: float
    tier: StorageTier
