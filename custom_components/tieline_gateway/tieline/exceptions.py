"""Internal API exception types.

These exceptions are raised by the standalone API client and helpers. The Home
Assistant integration should translate these into HA-specific exception types.

This module intentionally avoids Home Assistant imports.
"""

from __future__ import annotations


class TielineError(Exception):
    """Base exception for Tieline gateway API failures."""


class TielineConfigError(TielineError):
    """Required connection settings are missing."""


class TielineAuthError(TielineError):
    """Digest authentication was rejected or the challenge was malformed."""


class TielineTransportError(TielineError):
    """Network failure, timeout, or server-side HTTP error."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TielineDiscoveryError(TielineError):
    """The device answered but its matrix capabilities could not be used."""
