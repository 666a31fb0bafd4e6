"""Constants for the Tieline Gateway integration.

This module centralizes configuration keys, defaults, and platform registration.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Final

from homeassistant.const import Platform

DOMAIN: Final = "tieline_gateway"

# Use a stable logger name so users can configure logging via
# `logger: default: ... logs: { custom_components.tieline_gateway: debug }`.
LOGGER_NAME: Final = f"custom_components.{DOMAIN}"

CONF_HOST: Final = "host"
CONF_USERNAME: Final = "username"
CONF_PASSWORD: Final = "password"
CONF_PORT: Final = "port"
CONF_TIMEOUT: Final = "timeout"

REQUIRED_CONF_KEYS: Final[tuple[str, ...]] = (CONF_HOST, CONF_USERNAME, CONF_PASSWORD)

DEFAULT_USERNAME: Final = "admin"
DEFAULT_PORT: Final[int] = 80
DEFAULT_TIMEOUT_SECONDS: Final[int] = 10

# The gateway expires its Digest nonce after roughly a minute of inactivity.
HEARTBEAT_INTERVAL: Final = timedelta(seconds=30)

PLATFORMS: Final[list[Platform]] = [
    Platform.SENSOR,
    Platform.BINARY_SENSOR,
    Platform.SELECT,
    Platform.BUTTON,
]

MANUFACTURER: Final = "Tieline"
MODEL: Final = "Gateway"
