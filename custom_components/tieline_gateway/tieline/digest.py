"""HTTP Digest authentication helpers (RFC 2617, MD5).

The gateway protects its control API with Digest auth. These helpers parse the
`WWW-Authenticate` challenge and build `Authorization` headers; they keep no
state. The nonce counter is owned by `SessionState`.

This module intentionally avoids Home Assistant imports.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass

from .exceptions import TielineAuthError

QOP_AUTH = "auth"
QOP_AUTH_INT = "auth-int"

_PARAM_RE = re.compile(r'(\w+)\s*=\s*("(?:[^"\\]|\\.)*"|[^,\s]+)')


@dataclass(frozen=True)
class DigestChallenge:
    """Parsed `WWW-Authenticate: Digest ...` challenge."""

    realm: str
    nonce: str
    qop: str | None = None
    opaque: str | None = None
    algorithm: str | None = None
    stale: bool = False

    @property
    def qop_options(self) -> list[str]:
        if not self.qop:
            return []
        return [q.strip().lower() for q in self.qop.split(",") if q.strip()]


def md5_hex(text: str) -> str:
    """Return the lowercase hex MD5 digest of a UTF-8 string."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def generate_cnonce() -> str:
    """Return a random client nonce (16 hex characters)."""
    return secrets.token_hex(8)


def format_nc(nc: int) -> str:
    """Format a nonce counter as 8 zero-padded lowercase hex digits."""
    return f"{nc:08x}"


def parse_www_authenticate(header: str | None) -> DigestChallenge:
    """Parse a Digest challenge header.

    Args:
        header: Raw `WWW-Authenticate` header value.

    Returns:
        The parsed challenge.

    Raises:
        TielineAuthError: If the header is missing, not a Digest challenge, or
            lacks `realm`/`nonce`.
    """
    raw = (header or "").strip()
    scheme, _, rest = raw.partition(" ")
    if scheme.lower() != "digest":
        raise TielineAuthError(f"Expected a Digest challenge, got: {raw or 'none'}")

    params: dict[str, str] = {}
    for key, value in _PARAM_RE.findall(rest):
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1].replace('\\"', '"')
        params[key.lower()] = value

    realm = params.get("realm")
    nonce = params.get("nonce")
    if not realm or not nonce:
        raise TielineAuthError("Digest challenge is missing realm or nonce")

    return DigestChallenge(
        realm=realm,
        nonce=nonce,
        qop=params.get("qop") or None,
        opaque=params.get("opaque") or None,
        algorithm=params.get("algorithm") or None,
        stale=params.get("stale", "").lower() == "true",
    )


def select_qop(challenge: DigestChallenge) -> str | None:
    """Pick the quality of protection to answer a challenge with.

    Returns:
        `"auth"` when offered, `None` when the challenge carries no qop.

    Raises:
        TielineAuthError: If only `auth-int` is offered.
    """
    options = challenge.qop_options
    if not options:
        return None
    if QOP_AUTH in options:
        return QOP_AUTH
    raise TielineAuthError(f"Unsupported Digest qop: {challenge.qop}")


def compute_digest_response(
    *,
    username: str,
    password: str,
    realm: str,
    nonce: str,
    method: str,
    uri: str,
    nc: int,
    cnonce: str,
    qop: str | None = QOP_AUTH,
) -> str:
    """Compute the Digest `response` value.

    `HA1 = MD5(username:realm:password)`, `HA2 = MD5(method:uri)`. With qop the
    response is `MD5(HA1:nonce:nc:cnonce:qop:HA2)`, otherwise `MD5(HA1:nonce:HA2)`.
    """
    ha1 = md5_hex(f"{username}:{realm}:{password}")
    ha2 = md5_hex(f"{method.upper()}:{uri}")
    if qop:
        return md5_hex(f"{ha1}:{nonce}:{format_nc(nc)}:{cnonce}:{qop}:{ha2}")
    return md5_hex(f"{ha1}:{nonce}:{ha2}")


def build_authorization_header(
    *,
    challenge: DigestChallenge,
    username: str,
    password: str,
    method: str,
    uri: str,
    nc: int,
    cnonce: str | None = None,
) -> str:
    """Build an `Authorization: Digest ...` header value for one request.

    Args:
        challenge: Challenge previously issued by the device.
        username: Account name.
        password: Account password.
        method: HTTP method of the request being signed.
        uri: Request path (including query string) being signed.
        nc: Nonce counter for this request; must not repeat for the nonce.
        cnonce: Optional client nonce; generated when omitted.

    Returns:
        Header value.

    Raises:
        TielineAuthError: If the challenge asks for an unsupported algorithm
            or qop.
    """
    if challenge.algorithm and challenge.algorithm.upper() != "MD5":
        raise TielineAuthError(f"Unsupported Digest algorithm: {challenge.algorithm}")
    qop = select_qop(challenge)
    cnonce = cnonce or generate_cnonce()
    response = compute_digest_response(
        username=username,
        password=password,
        realm=challenge.realm,
        nonce=challenge.nonce,
        method=method,
        uri=uri,
        nc=nc,
        cnonce=cnonce,
        qop=qop,
    )

    parts = [
        f'username="{username}"',
        f'realm="{challenge.realm}"',
        f'nonce="{challenge.nonce}"',
        f'uri="{uri}"',
    ]
    if qop:
        parts.extend([f"qop={qop}", f"nc={format_nc(nc)}", f'cnonce="{cnonce}"'])
    parts.append(f'response="{response}"')
    if challenge.opaque:
        parts.append(f'opaque="{challenge.opaque}"')
    if challenge.algorithm:
        parts.append(f"algorithm={challenge.algorithm}")

    return f"Digest {', '.join(parts)}"
