"""
Session Exceptions

Errors raised by the session layer. Storage operations never raise these;
they report failure through their return values instead.
"""


class ApiSessionError(Exception):
    """Base class for all api_sessions errors."""


class SessionClosedError(ApiSessionError):
    """Raised when a closed SessionHandle is used."""


class InvalidSessionKeyError(ApiSessionError):
    """Raised when a session key would resolve outside the session directory."""


class ConfigurationError(ApiSessionError):
    """Raised when configuration values cannot be parsed."""
