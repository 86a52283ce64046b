"""
Session Configuration

Explicit configuration passed to stores, sweepers and the session service.
Values can be built directly or read from the environment with from_env().
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .exceptions import ConfigurationError

DEFAULT_SUBDIRECTORY = "perritu_api_sessions"
DEFAULT_LIFETIME_SECONDS = 30 * 60  # 30 minutes
DEFAULT_GC_PROBABILITY = 0.01

_TRUE_VALUES = {"1", "true", "yes"}


@dataclass
class SessionConfig:
    """Process-wide session settings."""

    temp_dir: str = field(default_factory=tempfile.gettempdir)
    subdirectory: str = DEFAULT_SUBDIRECTORY
    lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS
    gc_probability: float = DEFAULT_GC_PROBABILITY
    write_through: bool = False
    sweep_interval_seconds: float | None = None

    @property
    def session_dir(self) -> Path:
        """Directory holding one file per session key."""
        return Path(self.temp_dir) / self.subdirectory

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> SessionConfig:
        """Build a config from API_SESSIONS_* environment variables.

        Unset variables keep their defaults. Values that are set but cannot
        be parsed raise ConfigurationError.
        """
        env = os.environ if environ is None else environ
        config = cls()

        temp_dir = env.get("API_SESSIONS_TMPDIR")
        if temp_dir:
            config.temp_dir = temp_dir
        subdirectory = env.get("API_SESSIONS_SUBDIR")
        if subdirectory:
            config.subdirectory = subdirectory

        lifetime = env.get("API_SESSIONS_LIFETIME")
        if lifetime:
            config.lifetime_seconds = _parse_number(
                "API_SESSIONS_LIFETIME", lifetime, int
            )
        probability = env.get("API_SESSIONS_GC_PROBABILITY")
        if probability:
            config.gc_probability = _parse_number(
                "API_SESSIONS_GC_PROBABILITY", probability, float
            )
        interval = env.get("API_SESSIONS_SWEEP_INTERVAL")
        if interval:
            config.sweep_interval_seconds = _parse_number(
                "API_SESSIONS_SWEEP_INTERVAL", interval, float
            )

        config.write_through = (
            env.get("API_SESSIONS_WRITE_THROUGH", "false").lower() in _TRUE_VALUES
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Reject values that would make expiry or sweeping meaningless."""
        if self.lifetime_seconds <= 0:
            raise ConfigurationError("lifetime_seconds must be positive")
        if not 0.0 <= self.gc_probability <= 1.0:
            raise ConfigurationError("gc_probability must be between 0 and 1")
        if self.sweep_interval_seconds is not None and self.sweep_interval_seconds <= 0:
            raise ConfigurationError("sweep_interval_seconds must be positive")
        if (
            self.subdirectory in ("", ".", "..")
            or os.sep in self.subdirectory
            or (os.altsep and os.altsep in self.subdirectory)
        ):
            raise ConfigurationError("subdirectory must be a single path component")


def _parse_number(name: str, raw: str, kind: type) -> int | float:
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
