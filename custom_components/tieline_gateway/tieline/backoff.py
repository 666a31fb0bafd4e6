"""Reconnect backoff schedule."""

from __future__ import annotations

RECONNECT_BASE_DELAY_MS = 1000
RECONNECT_MAX_DELAY_MS = 30000

# 2**15 seconds is already far past the cap.
_MAX_EXPONENT = 15


def reconnect_delay_ms(attempts: int) -> int:
    """Return the reconnect delay for a number of prior attempts.

    Doubles from one second and is capped at thirty seconds:
    1000, 2000, 4000, 8000, 16000, 30000, 30000, ...
    """
    exponent = min(max(0, int(attempts)), _MAX_EXPONENT)
    return min(RECONNECT_MAX_DELAY_MS, RECONNECT_BASE_DELAY_MS * 2**exponent)
