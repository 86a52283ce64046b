"""
Identity Resolution

Derives a session key from the client's network origin. The origin address is
taken from the first forwarding header that is present and carries a valid IP
address; an optional discriminator narrows the session further.

Forwarding headers are trusted as sent. Callers that need a stronger identity
should pass an authenticated value (an access token id, for example) as the
discriminator.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Any, Iterable, Mapping

# Checked in order; the first header holding a valid address wins.
ORIGIN_HEADERS: tuple[str, ...] = (
    "HTTP_CF_CONNECTING_IP",
    "HTTP_INCAP_CLIENT_IP",
    "HTTP_X_FORWARDED_FOR",
    "HTTP_X_FORWARDED",
    "HTTP_X_CLUSTER_CLIENT_IP",
    "HTTP_FORWARDED_FOR",
    "HTTP_FORWARDED",
    "HTTP_CLIENT_IP",
    "REMOTE_ADDR",
)

FALLBACK_ADDRESS = "0.0.0.0"

_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9.,\-;]", re.IGNORECASE | re.ASCII)


def sanitize_key(raw: str) -> str:
    """Replace every character outside ``[A-Za-z0-9.,-;]`` with ``_``."""
    return _UNSAFE_KEY_CHARS.sub("_", raw)


def is_valid_ip(candidate: str) -> bool:
    """Return True for a well-formed IPv4 or IPv6 address."""
    # Zone ids ("fe80::1%eth0") are not plain addresses.
    if "%" in candidate:
        return False
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def environ_from_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
    remote_addr: str | None = None,
) -> dict[str, str]:
    """Translate HTTP header names into CGI-style environ keys.

    ``X-Forwarded-For`` becomes ``HTTP_X_FORWARDED_FOR``. The peer address of
    the connection, when known, is stored under ``REMOTE_ADDR``.
    """
    items = headers.items() if isinstance(headers, Mapping) else headers
    environ = {
        "HTTP_" + name.upper().replace("-", "_"): value for name, value in items
    }
    if remote_addr:
        environ["REMOTE_ADDR"] = remote_addr
    return environ


class IdentityResolver:
    """Resolve session keys from request origin metadata."""

    def __init__(
        self,
        headers: Iterable[str] = ORIGIN_HEADERS,
        fallback_address: str = FALLBACK_ADDRESS,
    ) -> None:
        self._headers = tuple(headers)
        self._fallback_address = fallback_address

    @property
    def headers(self) -> tuple[str, ...]:
        return self._headers

    def resolve_address(self, environ: Mapping[str, Any] | None = None) -> str:
        """Return the client address, or the fallback address if none validates."""
        environ = environ or {}
        for header in self._headers:
            value = environ.get(header)
            if value is None:
                continue
            for candidate in str(value).split(","):
                candidate = candidate.strip()
                if is_valid_ip(candidate):
                    return candidate
        return self._fallback_address

    def resolve(
        self,
        environ: Mapping[str, Any] | None = None,
        discriminator: str | None = None,
    ) -> str:
        """
        Compute the session key for a request.

        Args:
            environ: CGI-style request metadata (``HTTP_*`` headers, ``REMOTE_ADDR``)
            discriminator: Optional caller-supplied scope, prefixed to the address

        Returns:
            The sanitized session key
        """
        address = self.resolve_address(environ)
        raw = f"{discriminator}_{address}" if discriminator else address
        return sanitize_key(raw)
