"""Standalone async API client.

This client owns connection details and the HTTP transport. It performs the
Digest handshake, signs authenticated requests, and fetches/sets matrix state.

Session state is not stored here: every authenticated call takes a
`SessionState` snapshot whose `nc` has already been reserved by the caller and
returns an updated snapshot.

The Home Assistant integration should treat this client as the primary API.

This module intentionally avoids Home Assistant imports.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from typing import Any, Mapping, cast

import aiohttp
import async_timeout
from yarl import URL

from .digest import build_authorization_header, parse_www_authenticate
from .exceptions import (
    TielineAuthError,
    TielineConfigError,
    TielineDiscoveryError,
    TielineTransportError,
)
from .matrix import MatrixFeatures, parse_matrix_features
from .session import SessionState

_LOGGER = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 10
_DEFAULT_PORT = 80

PROBE_PATH = "/api/get_version"
HEARTBEAT_PATH = "/api/get_pid"
MATRIX_FEATURES_PATH = "/api/get_matrix_features"
SET_ROUTE_PATH = "/api/set_matrix_route"
RECALL_PRESET_PATH = "/api/recall_matrix_preset"

CSRF_HEADER = "X-CSRF-Token"
_CSRF_COOKIES: tuple[str, ...] = ("csrf_token", "XSRF-TOKEN")
_CSRF_BODY_KEYS: tuple[str, ...] = ("csrf_token", "csrfToken")

_STATE_CHANGING_METHODS: set[str] = {"POST", "PUT", "PATCH", "DELETE"}


def build_base_url(host: str, port: int | None = None) -> str:
    """Build the base URL for the gateway.

    Args:
        host: Hostname, IP, or URL.
        port: Optional TCP port; the default HTTP port is left implicit.

    Returns:
        Base URL without trailing slash.
    """
    host = (host or "").strip()
    if host.startswith("http://") or host.startswith("https://"):
        url = URL(host)
        base = f"{url.scheme}://{url.raw_host}"
        if url.explicit_port is not None:
            base += f":{url.explicit_port}"
        return base
    host = host.rstrip("/")
    if port and int(port) != _DEFAULT_PORT:
        return f"http://{host}:{int(port)}"
    return f"http://{host}"


def _normalize_path(path: str) -> str:
    path = (path or "").strip()
    if not path.startswith("/"):
        path = "/" + path
    return path


@dataclass(frozen=True)
class HttpResult:
    """Response of a single HTTP request.

    Header names are stored lowercase.
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    cookies: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            json.JSONDecodeError: If the body is not valid JSON.
        """
        return json.loads(self.body) if self.body else {}


def extract_csrf_token(result: HttpResult) -> str | None:
    """Extract an anti-forgery token from a response.

    Checks the `X-CSRF-Token` header, then the `csrf_token`/`XSRF-TOKEN`
    cookies, then a `csrf_token` field of a JSON object body.

    Returns:
        The token, or `None` when the response carries none.
    """
    token = (result.header(CSRF_HEADER) or "").strip()
    if token:
        return token

    for name in _CSRF_COOKIES:
        token = (result.cookies.get(name) or "").strip()
        if token:
            return token

    if not result.body.lstrip().startswith("{"):
        return None
    try:
        body_any: Any = result.json()
    except json.JSONDecodeError:
        return None
    if isinstance(body_any, dict):
        body = cast(dict[str, Any], body_any)
        for key in _CSRF_BODY_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def _status_error(result: HttpResult, operation: str) -> Exception:
    if result.status in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN):
        return TielineAuthError(f"{operation} rejected (HTTP {result.status})")
    return TielineTransportError(
        f"{operation} failed (HTTP {result.status})", status=result.status
    )


class TielineClient:
    """Async client for the Tieline gateway HTTP control API."""

    def __init__(
        self,
        *,
        host: str,
        username: str | None = None,
        password: str | None = None,
        port: int | None = None,
        timeout_seconds: int | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.host = str(host or "").strip()
        self.username = str(username or "")
        self.password = str(password or "")
        self.port = int(port or _DEFAULT_PORT)
        self.timeout_seconds = int(timeout_seconds or _DEFAULT_TIMEOUT_SECONDS)

        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    @property
    def base_url(self) -> str:
        return build_base_url(self.host, self.port)

    async def async_close(self) -> None:
        """Close any internally-owned aiohttp session."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _require_config(self) -> None:
        if not self.host or not self.username or not self.password:
            raise TielineConfigError("Host, username and password are required")

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def async_request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> HttpResult:
        """Send one HTTP request.

        Args:
            method: HTTP method.
            path: Request path, with or without a leading slash.
            headers: Optional request headers.
            body: Optional body; mappings and lists are sent as JSON.

        Returns:
            The response status, headers, body text and cookies.

        Raises:
            TielineTransportError: On network errors or timeouts.
        """
        method = method.upper()
        path = _normalize_path(path)
        url = f"{self.base_url}{path}"

        kwargs: dict[str, Any] = {}
        if isinstance(body, (Mapping, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["data"] = body

        started = time.monotonic()
        try:
            async with async_timeout.timeout(self.timeout_seconds):
                async with self.session.request(
                    method, url, headers=dict(headers or {}), **kwargs
                ) as resp:
                    text = await resp.text(errors="replace")
                    result = HttpResult(
                        status=resp.status,
                        headers={str(k).lower(): str(v) for k, v in resp.headers.items()},
                        body=text,
                        cookies={
                            str(name): str(morsel.value)
                            for name, morsel in resp.cookies.items()
                        },
                    )
        except (asyncio.TimeoutError, aiohttp.ClientError, UnicodeDecodeError) as err:
            raise TielineTransportError(
                f"Error requesting {method} {path} from {self.host}: {err}"
            ) from err

        _LOGGER.debug(
            "%s %s -> HTTP %s in %d ms",
            method,
            url,
            result.status,
            int((time.monotonic() - started) * 1000),
        )
        return result

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def build_auth_header(self, state: SessionState, method: str, path: str) -> str:
        """Sign a request with the session challenge and its reserved `nc`."""
        if state.challenge is None:
            raise TielineAuthError("Session has no Digest challenge")
        return build_authorization_header(
            challenge=state.challenge,
            username=self.username,
            password=self.password,
            method=method.upper(),
            uri=_normalize_path(path),
            nc=state.nc,
        )

    async def async_authenticate(self) -> SessionState:
        """Perform the Digest handshake.

        Sends an unauthenticated probe, answers the 401 challenge, and retries
        the probe with the computed `Authorization` header.

        Returns:
            A new session whose `nc` is 1 (the counter used by the retry).

        Raises:
            TielineConfigError: If host or credentials are missing.
            TielineAuthError: If the challenge is malformed or the credentials
                are rejected.
            TielineTransportError: On network failures.
        """
        self._require_config()

        probe = await self.async_request("GET", PROBE_PATH)
        if probe.ok:
            _LOGGER.debug("Gateway %s accepted an unauthenticated probe", self.host)
            return SessionState(
                csrf_token=extract_csrf_token(probe), last_auth_time=time.time()
            )
        if probe.status != HTTPStatus.UNAUTHORIZED:
            raise _status_error(probe, "Authentication probe")

        challenge = parse_www_authenticate(probe.header("WWW-Authenticate"))
        state = SessionState(challenge=challenge, last_auth_time=time.time()).advance()
        auth_header = self.build_auth_header(state, "GET", PROBE_PATH)

        result = await self.async_request(
            "GET", PROBE_PATH, headers={"Authorization": auth_header}
        )
        if not result.ok:
            raise _status_error(result, "Digest authentication")

        _LOGGER.debug("Authenticated with gateway %s (realm=%s)", self.host, challenge.realm)
        return replace(
            state, auth_header=auth_header, csrf_token=extract_csrf_token(result)
        )

    async def async_authed_request(
        self,
        state: SessionState,
        method: str,
        path: str,
        *,
        body: Any = None,
    ) -> tuple[SessionState, HttpResult]:
        """Send a signed request.

        Args:
            state: Session snapshot whose `nc` is reserved for this request.
            method: HTTP method.
            path: Request path.
            body: Optional JSON body.

        Returns:
            The session with refreshed tokens and the response.

        Raises:
            TielineAuthError: If the session was rejected.
            TielineTransportError: On network failures or other HTTP errors.
        """
        method = method.upper()
        headers: dict[str, str] = {"Accept": "application/json"}
        auth_header: str | None = None
        if state.requires_auth:
            auth_header = self.build_auth_header(state, method, path)
            headers["Authorization"] = auth_header
        if method in _STATE_CHANGING_METHODS and state.csrf_token:
            headers[CSRF_HEADER] = state.csrf_token

        result = await self.async_request(method, path, headers=headers, body=body)
        if not result.ok:
            raise _status_error(result, f"{method} {_normalize_path(path)}")

        return (
            state.with_tokens(
                auth_header=auth_header, csrf_token=extract_csrf_token(result)
            ),
            result,
        )

    async def async_send_heartbeat(self, state: SessionState) -> SessionState:
        """Send the keepalive request that stops the device nonce expiring.

        Returns:
            The session with refreshed tokens.
        """
        new_state, _result = await self.async_authed_request(
            state, "GET", HEARTBEAT_PATH
        )
        return new_state

    # -------------------------------------------------------------------------
    # Matrix
    # -------------------------------------------------------------------------

    async def async_fetch_matrix_features(
        self, state: SessionState
    ) -> tuple[SessionState, MatrixFeatures]:
        """Fetch the routing capabilities of the device.

        Returns:
            The refreshed session and the parsed capabilities.

        Raises:
            TielineDiscoveryError: If the response cannot be used.
        """
        new_state, result = await self.async_authed_request(
            state, "GET", MATRIX_FEATURES_PATH
        )
        try:
            obj = result.json()
        except json.JSONDecodeError as err:
            raise TielineDiscoveryError(
                f"Matrix feature response was not valid JSON: {err}"
            ) from err
        return new_state, parse_matrix_features(obj)

    async def async_set_route(
        self, state: SessionState, *, source: str, destination: str
    ) -> SessionState:
        """Route a source to a destination."""
        new_state, _result = await self.async_authed_request(
            state,
            "POST",
            SET_ROUTE_PATH,
            body={"source": source, "destination": destination},
        )
        return new_state

    async def async_recall_preset(self, state: SessionState, *, preset: str) -> SessionState:
        """Recall a stored matrix preset."""
        new_state, _result = await self.async_authed_request(
            state, "POST", RECALL_PRESET_PATH, body={"preset": preset}
        )
        return new_state
