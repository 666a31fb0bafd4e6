"""Authenticated session snapshot.

A `SessionState` is an immutable snapshot: operations take one and return an
updated copy. The owner (the coordinator) keeps the current snapshot and
reserves nonce counters by calling `advance()` before any await, so every
authenticated request carries a distinct, strictly increasing `nc` for the
current nonce.

This module intentionally avoids Home Assistant imports.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .digest import DigestChallenge


@dataclass(frozen=True)
class SessionState:
    """Digest session established with the gateway.

    Attributes:
        challenge: Challenge the session answers; `None` when the device does
            not require authentication.
        auth_header: Last `Authorization` header sent.
        csrf_token: Anti-forgery token to echo on state-changing requests.
        nc: Nonce counter used by the most recent authenticated request.
        last_auth_time: Unix timestamp of the handshake.
    """

    challenge: DigestChallenge | None = None
    auth_header: str | None = None
    csrf_token: str | None = None
    nc: int = 0
    last_auth_time: float | None = None

    @property
    def realm(self) -> str | None:
        return self.challenge.realm if self.challenge else None

    @property
    def nonce(self) -> str | None:
        return self.challenge.nonce if self.challenge else None

    @property
    def requires_auth(self) -> bool:
        return self.challenge is not None

    def advance(self) -> SessionState:
        """Return a copy with the nonce counter reserved for the next request."""
        return replace(self, nc=self.nc + 1)

    def with_tokens(
        self, *, auth_header: str | None = None, csrf_token: str | None = None
    ) -> SessionState:
        """Return a copy carrying refreshed tokens.

        The nonce counter is kept. `None` values keep the current token.
        """
        return replace(
            self,
            auth_header=auth_header if auth_header is not None else self.auth_header,
            csrf_token=csrf_token if csrf_token is not None else self.csrf_token,
        )
