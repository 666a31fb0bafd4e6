"""Internal Tieline gateway API package.

This package centralizes device-specific behavior so Home Assistant platform
files can stay small and focused.

The package provides:
    - An async HTTP client with Digest authentication
    - Immutable session snapshots with a monotonic nonce counter
    - Schema-tolerant matrix feature parsing
    - The reconnect backoff schedule
"""

from __future__ import annotations

# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
from .backoff import reconnect_delay_ms
from .client import HttpResult, TielineClient, build_base_url, extract_csrf_token
from .digest import (
    DigestChallenge,
    build_authorization_header,
    compute_digest_response,
    parse_www_authenticate,
)
from .exceptions import (
    TielineAuthError,
    TielineConfigError,
    TielineDiscoveryError,
    TielineError,
    TielineTransportError,
)
from .matrix import (
    FEATURE_DESTINATIONS,
    FEATURE_PRESETS,
    FEATURE_SOURCES,
    FEATURE_TYPES,
    MatrixFeatures,
    parse_matrix_features,
)
from .session import SessionState
from .util import slugify_label

__all__ = [
    "DigestChallenge",
    "FEATURE_DESTINATIONS",
    "FEATURE_PRESETS",
    "FEATURE_SOURCES",
    "FEATURE_TYPES",
    "HttpResult",
    "MatrixFeatures",
    "SessionState",
    "TielineAuthError",
    "TielineClient",
    "TielineConfigError",
    "TielineDiscoveryError",
    "TielineError",
    "TielineTransportError",
    "build_authorization_header",
    "build_base_url",
    "compute_digest_response",
    "extract_csrf_token",
    "parse_matrix_features",
    "parse_www_authenticate",
    "reconnect_delay_ms",
    "slugify_label",
]
