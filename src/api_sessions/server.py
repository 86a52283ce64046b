import json
import logging
import os
import sys
from typing import Any, Mapping

# FastMCP 2.0 import
from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request

from .config import SessionConfig
from .identity import environ_from_headers
from .session_service import SessionService

logger = logging.getLogger(__name__)
# Ensure logs are visible in the FastMCP subprocess even if no handlers configured
if not logger.handlers:
    _handler = logging.StreamHandler(sys.stdout)
    _handler.setLevel(logging.INFO)
    _formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    _handler.setFormatter(_formatter)
    logger.addHandler(_handler)
logger.setLevel(logging.INFO)

# Create FastMCP instance
mcp = FastMCP("API Sessions")


def request_environ() -> dict[str, str]:
    """CGI-style metadata for the active HTTP request, or {} outside HTTP."""
    try:
        request = get_http_request()
    except RuntimeError:
        return {}
    remote_addr = request.client.host if request.client else None
    return environ_from_headers(request.headers.items(), remote_addr)


# SessionTools: one unit of work per call
class SessionTools:
    def __init__(self, service: SessionService | None = None):
        self.service = service or SessionService(SessionConfig.from_env())
        logger.info(
            f"Session tools using {self.service.config.session_dir} "
            f"(lifetime={self.service.config.lifetime_seconds}s)"
        )

    def get(
        self,
        name: str,
        environ: Mapping[str, Any] | None = None,
        discriminator: str | None = None,
    ) -> str:
        with self.service.scope():
            session = self.service.start(environ, discriminator)
            if name not in session:
                return f"Key '{name}' not found in session."
            return json.dumps(session[name])

    def set(
        self,
        name: str,
        value: Any,
        environ: Mapping[str, Any] | None = None,
        discriminator: str | None = None,
    ) -> str:
        with self.service.scope():
            session = self.service.start(environ, discriminator)
            session[name] = value
            if not session.close():
                raise Exception(f"Error saving session '{session.key}'")
            return f"Stored '{name}' in session '{session.key}'"

    def delete(
        self,
        name: str,
        environ: Mapping[str, Any] | None = None,
        discriminator: str | None = None,
    ) -> str:
        with self.service.scope():
            session = self.service.start(environ, discriminator)
            if name not in session:
                return f"Key '{name}' not found in session."
            del session[name]
            return f"Removed '{name}' from session '{session.key}'"

    def snapshot(
        self,
        environ: Mapping[str, Any] | None = None,
        discriminator: str | None = None,
    ) -> str:
        with self.service.scope():
            session = self.service.start(environ, discriminator)
            return json.dumps(session.to_dict(), sort_keys=True)

    def destroy(
        self,
        environ: Mapping[str, Any] | None = None,
        discriminator: str | None = None,
    ) -> str:
        with self.service.scope():
            session = self.service.start(environ, discriminator)
            key = session.key
            if session.destroy():
                return f"Session '{key}' destroyed"
            return f"Session '{key}' had no stored data"

    def sweep(self) -> str:
        removed = self.service.sweeper.purge()
        return f"Sweep complete: {removed} expired session(s) removed"

    def stats(self) -> str:
        stats = self.service.sweeper.get_storage_stats()
        return (
            f"Sessions={stats.total_sessions} | Size={stats.total_size_bytes}B | "
            f"Disk used={stats.disk_usage_percent:.1f}% | Tier={stats.tier.value}"
        )


# Global session tools instance
session_tools = SessionTools()


# === TOOLS ===
@mcp.tool
def session_get(name: str, discriminator: str | None = None) -> str:
    """Read one value from the caller's session.

    Args:
        name: Session variable name
        discriminator: Optional scope combined with the client address

    Returns:
        JSON-encoded value, or a not-found message
    """
    return session_tools.get(name, request_environ(), discriminator)


@mcp.tool
def session_set(name: str, value: Any, discriminator: str | None = None) -> str:
    """Store a JSON-compatible value in the caller's session.

    Args:
        name: Session variable name
        value: Value to store
        discriminator: Optional scope combined with the client address
    """
    return session_tools.set(name, value, request_environ(), discriminator)


@mcp.tool
def session_delete(name: str, discriminator: str | None = None) -> str:
    """Remove one value from the caller's session."""
    return session_tools.delete(name, request_environ(), discriminator)


@mcp.tool
def session_snapshot(discriminator: str | None = None) -> str:
    """Return the caller's whole session as a JSON object."""
    return session_tools.snapshot(request_environ(), discriminator)


@mcp.tool
def session_destroy(discriminator: str | None = None) -> str:
    """Delete the caller's session (logout)."""
    return session_tools.destroy(request_environ(), discriminator)


@mcp.tool
def sweep_sessions() -> str:
    """Delete every session idle for longer than the configured lifetime."""
    return session_tools.sweep()


@mcp.tool
def session_stats() -> str:
    """Summarize the session directory."""
    return session_tools.stats()


# === MAIN ENTRY POINT ===
def main():
    """Main entry point for the FastMCP 2.0 server."""
    config = session_tools.service.config
    if config.sweep_interval_seconds:
        session_tools.service.sweeper.start(config.sweep_interval_seconds)

    transport = os.environ.get("API_SESSIONS_TRANSPORT", "stdio")
    try:
        if transport == "stdio":
            mcp.run()
        else:
            mcp.run(
                transport=transport,
                host=os.environ.get("API_SESSIONS_HOST", "127.0.0.1"),
                port=int(os.environ.get("API_SESSIONS_PORT", "8000")),
            )
    finally:
        session_tools.service.sweeper.stop()


if __name__ == "__main__":
    main()
