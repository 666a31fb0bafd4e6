"""Tests for the standalone Tieline API client.

These tests use aiohttp-like fakes so request sequences (challenge, then
signed retry) can be asserted precisely.
"""

from __future__ import annotations

import json
from typing import Any

import aiohttp
import pytest

from custom_components.tieline_gateway.tieline.client import (
    CSRF_HEADER,
    HEARTBEAT_PATH,
    MATRIX_FEATURES_PATH,
    PROBE_PATH,
    SET_ROUTE_PATH,
    HttpResult,
    TielineClient,
    build_base_url,
    extract_csrf_token,
)
from custom_components.tieline_gateway.tieline.digest import DigestChallenge
from custom_components.tieline_gateway.tieline.exceptions import (
    TielineAuthError,
    TielineConfigError,
    TielineDiscoveryError,
    TielineTransportError,
)
from custom_components.tieline_gateway.tieline.session import SessionState

_CHALLENGE = 'Digest realm="Tieline", nonce="n0nce", qop="auth", opaque="op"'


class _Morsel:
    """Cookie morsel stub with a `value` attribute."""

    def __init__(self, value: str):
        self.value = value


class _Resp:
    """aiohttp-like response stub used by session fakes."""

    def __init__(
        self,
        status: int,
        text: str = "",
        headers: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
        raw: bytes | None = None,
    ):
        self.status = status
        self._text = text
        self._raw = raw
        self.headers = headers or {}
        self.cookies = {k: _Morsel(v) for k, v in (cookies or {}).items()}

    async def text(self, encoding: str | None = None, errors: str = "strict") -> str:
        if self._raw is not None:
            return self._raw.decode(encoding or "utf-8", errors=errors)
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _Session:
    """aiohttp-like client session stub.

    Returns preconfigured responses in order and records every request.
    """

    def __init__(self, responses: list[_Resp] | None = None, raises: Exception | None = None):
        self._iter = iter(responses or [])
        self._raises = raises
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _Resp:
        self.calls.append({"method": method, "url": url, **kwargs})
        if self._raises is not None:
            raise self._raises
        return next(self._iter)


def _client(session: _Session, **kwargs: Any) -> TielineClient:
    params: dict[str, Any] = {
        "host": "10.0.0.5",
        "username": "admin",
        "password": "pw",
    }
    params.update(kwargs)
    return TielineClient(session=session, **params)  # type: ignore[arg-type]


def _authed_state(nc: int = 2, csrf: str | None = None) -> SessionState:
    return SessionState(
        challenge=DigestChallenge(realm="Tieline", nonce="n0nce", qop="auth"),
        csrf_token=csrf,
        nc=nc,
    )


def test_build_base_url_variants():
    assert build_base_url("10.0.0.5") == "http://10.0.0.5"
    assert build_base_url("10.0.0.5", 80) == "http://10.0.0.5"
    assert build_base_url("10.0.0.5/", 8080) == "http://10.0.0.5:8080"
    assert build_base_url("https://gw.local/path") == "https://gw.local"
    assert build_base_url("http://gw.local:8080/") == "http://gw.local:8080"


def test_extract_csrf_token_sources():
    assert extract_csrf_token(HttpResult(200, headers={"x-csrf-token": " h "})) == "h"
    assert extract_csrf_token(HttpResult(200, cookies={"XSRF-TOKEN": "c"})) == "c"
    assert extract_csrf_token(HttpResult(200, body='{"csrfToken": "b"}')) == "b"
    assert extract_csrf_token(HttpResult(200, body="{broken")) is None
    assert extract_csrf_token(HttpResult(200, body="plain")) is None


async def test_authenticate_answers_challenge_with_nc_one():
    session = _Session(
        [
            _Resp(401, headers={"WWW-Authenticate": _CHALLENGE}),
            _Resp(200, text="{}", headers={"X-CSRF-Token": "tok"}),
        ]
    )

    state = await _client(session).async_authenticate()

    assert state.nc == 1
    assert state.realm == "Tieline"
    assert state.nonce == "n0nce"
    assert state.csrf_token == "tok"
    assert state.last_auth_time is not None

    assert [c["url"] for c in session.calls] == [
        f"http://10.0.0.5{PROBE_PATH}",
        f"http://10.0.0.5{PROBE_PATH}",
    ]
    assert "Authorization" not in session.calls[0]["headers"]
    auth = session.calls[1]["headers"]["Authorization"]
    assert auth.startswith('Digest username="admin", realm="Tieline"')
    assert "nc=00000001" in auth
    assert 'opaque="op"' in auth
    assert state.auth_header == auth


async def test_authenticate_tolerates_non_utf8_challenge_body():
    session = _Session(
        [
            _Resp(
                401,
                headers={"WWW-Authenticate": _CHALLENGE},
                raw=b"<html>\xa9 Tieline</html>",
            ),
            _Resp(200, raw=b"\xff\xfe"),
        ]
    )

    state = await _client(session).async_authenticate()

    assert state.nc == 1
    assert state.nonce == "n0nce"
    assert len(session.calls) == 2


async def test_undecodable_body_is_transport_error():
    class _StrictResp(_Resp):
        async def text(self, encoding: str | None = None, errors: str = "strict") -> str:
            return b"\xa9".decode("utf-8")

    session = _Session([_StrictResp(200)])

    with pytest.raises(TielineTransportError) as excinfo:
        await _client(session).async_authenticate()
    assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)


async def test_authenticate_accepts_open_device():
    session = _Session([_Resp(200, text="{}")])

    state = await _client(session).async_authenticate()

    assert state.requires_auth is False
    assert len(session.calls) == 1


async def test_authenticate_rejected_credentials_raise_auth_error():
    session = _Session(
        [
            _Resp(401, headers={"WWW-Authenticate": _CHALLENGE}),
            _Resp(401, headers={"WWW-Authenticate": _CHALLENGE}),
        ]
    )

    with pytest.raises(TielineAuthError):
        await _client(session).async_authenticate()


async def test_authenticate_malformed_challenge_raises_auth_error():
    session = _Session([_Resp(401, headers={"WWW-Authenticate": "Basic realm=x"})])

    with pytest.raises(TielineAuthError):
        await _client(session).async_authenticate()


async def test_authenticate_server_error_is_transport_error():
    session = _Session([_Resp(503)])

    with pytest.raises(TielineTransportError) as excinfo:
        await _client(session).async_authenticate()
    assert excinfo.value.status == 503


async def test_authenticate_requires_complete_config():
    session = _Session()

    with pytest.raises(TielineConfigError):
        await _client(session, password="").async_authenticate()
    assert session.calls == []


async def test_network_errors_become_transport_errors():
    session = _Session(raises=aiohttp.ClientConnectionError("refused"))

    with pytest.raises(TielineTransportError) as excinfo:
        await _client(session).async_authenticate()
    assert excinfo.value.status is None


async def test_authed_post_signs_with_reserved_nc_and_echoes_csrf():
    session = _Session([_Resp(200, text="{}", cookies={"csrf_token": "next"})])
    client = _client(session)

    state = await client.async_set_route(
        _authed_state(nc=5, csrf="tok"), source="Mic 1", destination="PGM"
    )

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"http://10.0.0.5{SET_ROUTE_PATH}"
    assert call["json"] == {"source": "Mic 1", "destination": "PGM"}
    assert call["headers"][CSRF_HEADER] == "tok"
    assert "nc=00000005" in call["headers"]["Authorization"]

    assert state.nc == 5
    assert state.csrf_token == "next"


async def test_heartbeat_get_does_not_send_csrf():
    session = _Session([_Resp(200, text="{}")])

    state = await _client(session).async_send_heartbeat(_authed_state(nc=3, csrf="tok"))

    call = session.calls[0]
    assert call["url"] == f"http://10.0.0.5{HEARTBEAT_PATH}"
    assert CSRF_HEADER not in call["headers"]
    assert state.csrf_token == "tok"


async def test_authed_request_maps_status_errors():
    session = _Session([_Resp(401), _Resp(400)])
    client = _client(session)

    with pytest.raises(TielineAuthError):
        await client.async_send_heartbeat(_authed_state())
    with pytest.raises(TielineTransportError) as excinfo:
        await client.async_recall_preset(_authed_state(), preset="Morning")
    assert excinfo.value.status == 400


async def test_fetch_matrix_features_parses_document():
    doc = {"sources": ["Mic 1"], "destinations": ["PGM"], "routes": {"PGM": "Mic 1"}}
    session = _Session([_Resp(200, text=json.dumps(doc))])

    state, features = await _client(session).async_fetch_matrix_features(
        _authed_state(nc=2)
    )

    assert session.calls[0]["url"] == f"http://10.0.0.5{MATRIX_FEATURES_PATH}"
    assert state.nc == 2
    assert features.routes == {"PGM": "Mic 1"}


async def test_fetch_matrix_features_invalid_json_is_discovery_error():
    session = _Session([_Resp(200, text="<html>")])

    with pytest.raises(TielineDiscoveryError):
        await _client(session).async_fetch_matrix_features(_authed_state())


async def test_build_auth_header_requires_challenge():
    client = _client(_Session())
    with pytest.raises(TielineAuthError):
        client.build_auth_header(SessionState(), "GET", "/x")
