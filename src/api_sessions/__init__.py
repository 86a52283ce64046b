from importlib.metadata import version, PackageNotFoundError

from .config import SessionConfig
from .expiry_sweeper import ExpirySweeper
from .file_session_store import FileSessionStore
from .identity import IdentityResolver
from .session_service import SessionHandle, SessionService


def main():
    """Main entry point for the package."""
    from . import server

    server.main()


# Package metadata helpers
try:
    __version__ = version("api-sessions")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0+dev"

# Public API
__all__ = [
    "main",
    "__version__",
    "SessionConfig",
    "ExpirySweeper",
    "FileSessionStore",
    "IdentityResolver",
    "SessionHandle",
    "SessionService",
]
