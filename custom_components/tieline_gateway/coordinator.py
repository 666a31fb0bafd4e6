"""Connection coordinator for a Tieline gateway.

Strategy:
- Authenticate with Digest auth, discover matrix features, then publish data so
  platforms can register their entities.
- Keep the device nonce alive with a fixed-interval heartbeat.
- On any failure, retry the full connect sequence with exponential backoff.

Timers are held as Home Assistant unsubscribe callables; there is at most one
heartbeat and at most one pending reconnect at any time.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from enum import StrEnum
from typing import Any, Awaitable, Callable, Mapping

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import CALLBACK_TYPE, HomeAssistant, callback
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.event import async_call_later, async_track_time_interval
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .const import (
    CONF_HOST,
    CONF_PASSWORD,
    CONF_PORT,
    CONF_TIMEOUT,
    CONF_USERNAME,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_SECONDS,
    DOMAIN,
    HEARTBEAT_INTERVAL,
    LOGGER_NAME,
    MANUFACTURER,
    MODEL,
    REQUIRED_CONF_KEYS,
)
from .tieline.backoff import reconnect_delay_ms
from .tieline.client import TielineClient, build_base_url
from .tieline.exceptions import (
    TielineAuthError,
    TielineConfigError,
    TielineError,
    TielineTransportError,
)
from .tieline.matrix import (
    FEATURE_DESTINATIONS,
    FEATURE_PRESETS,
    FEATURE_SOURCES,
    MatrixFeatures,
)
from .tieline.session import SessionState

_LOGGER = logging.getLogger(LOGGER_NAME)


class ConnectionStatus(StrEnum):
    """Connection state shown to the user."""

    UNINITIALIZED = "uninitialized"
    BAD_CONFIG = "bad_config"
    CONNECTING = "connecting"
    OK = "ok"
    CONNECTION_FAILURE = "connection_failure"


def config_from_entry(entry: ConfigEntry) -> dict[str, Any]:
    """Merge entry data and options into one connection config."""
    config: dict[str, Any] = dict(entry.data)
    config.update(entry.options)
    return config


def config_is_complete(config: Mapping[str, Any]) -> bool:
    """Return True when host, username and password are all non-empty."""
    return all(str(config.get(key) or "").strip() for key in REQUIRED_CONF_KEYS)


def _is_connection_error(err: TielineError) -> bool:
    """Return True when an error means the session or link is unusable.

    Client-side HTTP errors (e.g. a rejected route) leave the session intact.
    """
    if isinstance(err, TielineTransportError):
        return err.status is None or err.status >= 500
    return True


def build_device_info(*, host: str, device_identifier: str) -> DeviceInfo:
    """Build DeviceInfo for the gateway.

    Args:
        host: Gateway host/IP.
        device_identifier: Stable identifier for the HA device registry.

    Returns:
        DeviceInfo instance.
    """
    return DeviceInfo(
        identifiers={(DOMAIN, device_identifier)},
        name=f"Tieline Gateway ({host})" if host else "Tieline Gateway",
        manufacturer=MANUFACTURER,
        model=MODEL,
        configuration_url=build_base_url(host) if host else None,
    )


class TielineGatewayCoordinator(DataUpdateCoordinator[dict[str, Any]]):
    """Owns the gateway session, heartbeat and reconnect scheduling."""

    def __init__(self, hass: HomeAssistant, *, entry: ConfigEntry) -> None:
        """Initialize the coordinator.

        Args:
            hass: Home Assistant instance.
            entry: Config entry containing connection details.
        """
        self.hass = hass
        self.entry = entry
        self.config: dict[str, Any] = config_from_entry(entry)

        self.status = ConnectionStatus.UNINITIALIZED
        self.connection_failed = False
        self.reconnect_attempts = 0
        self.session_state: SessionState | None = None
        self.features = MatrixFeatures()

        self._cancel_heartbeat: CALLBACK_TYPE | None = None
        self._cancel_reconnect: CALLBACK_TYPE | None = None

        # Bumped whenever the current session is superseded; async
        # continuations drop their results when it moved.
        self._generation = 0
        # Bumped on reconfiguration; an in-flight connect restarts when it moved.
        self._config_version = 0
        self._connect_in_progress = False
        self._closed = False

        self._client = self._build_client(self.config)

        super().__init__(
            hass,
            _LOGGER,
            config_entry=entry,
            name=f"Tieline Gateway ({self.host})",
            update_interval=None,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def host(self) -> str:
        return str(self.config.get(CONF_HOST) or "").strip()

    @property
    def client(self) -> TielineClient:
        return self._client

    @property
    def device_identifier(self) -> str:
        """Return a stable identifier for this gateway."""
        return str(self.entry.unique_id or f"entry:{self.entry.entry_id}")

    @property
    def device_info(self) -> DeviceInfo:
        return build_device_info(host=self.host, device_identifier=self.device_identifier)

    @property
    def heartbeat_active(self) -> bool:
        return self._cancel_heartbeat is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._cancel_reconnect is not None

    def _build_client(self, config: Mapping[str, Any]) -> TielineClient:
        return TielineClient(
            host=str(config.get(CONF_HOST) or ""),
            username=str(config.get(CONF_USERNAME) or ""),
            password=str(config.get(CONF_PASSWORD) or ""),
            port=int(config.get(CONF_PORT) or DEFAULT_PORT),
            timeout_seconds=int(config.get(CONF_TIMEOUT) or DEFAULT_TIMEOUT_SECONDS),
            session=async_get_clientsession(self.hass),
        )

    def _build_data(self) -> dict[str, Any]:
        state = self.session_state
        return {
            "status": self.status.value,
            "variables": {k: list(v) for k, v in self.features.variables.items()},
            "routes": dict(self.features.routes),
            "reconnect_attempts": self.reconnect_attempts,
            "last_auth_time": state.last_auth_time if state else None,
        }

    @callback
    def _set_status(self, status: ConnectionStatus) -> None:
        self.status = status
        self.async_update_listeners()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def async_start(self) -> None:
        """Start the connection for a freshly set up entry."""
        if not config_is_complete(self.config):
            _LOGGER.warning(
                "Tieline gateway is not configured yet. Please configure host, username and password"
            )
            self._enter_bad_config()
            return

        _LOGGER.info("Initializing Tieline gateway %s", self.host)
        await self.async_connect()

    async def async_config_updated(self, config: Mapping[str, Any]) -> None:
        """Apply a new configuration and restart the connect sequence.

        Args:
            config: Complete replacement configuration.
        """
        self.config = dict(config)
        self._generation += 1
        self._config_version += 1
        self.stop_heartbeat()
        self._cancel_pending_reconnect()
        self.session_state = None
        self._client = self._build_client(self.config)

        if not config_is_complete(self.config):
            _LOGGER.warning(
                "Tieline gateway is not fully configured. Please configure all required settings"
            )
            self._enter_bad_config()
            return

        await self.async_connect()

    async def async_shutdown(self) -> None:
        """Cancel all timers and drop the session."""
        self._closed = True
        self._generation += 1
        self.stop_heartbeat()
        self._cancel_pending_reconnect()
        self.session_state = None
        await self._client.async_close()
        await super().async_shutdown()

    @callback
    def _enter_bad_config(self) -> None:
        self.stop_heartbeat()
        self._cancel_pending_reconnect()
        self._set_status(ConnectionStatus.BAD_CONFIG)

    # -------------------------------------------------------------------------
    # Connect / reconnect
    # -------------------------------------------------------------------------

    async def async_connect(self) -> bool:
        """Run the full connect sequence.

        Returns:
            True when the gateway is connected and its features published.
        """
        if self._closed:
            return False
        if self._connect_in_progress:
            _LOGGER.debug("Connect to %s already in progress; skipping", self.host)
            return False

        self._connect_in_progress = True
        try:
            while True:
                config_version = self._config_version
                connected = await self._async_connect_attempt()
                if self._closed or config_version == self._config_version:
                    return connected
                _LOGGER.debug("Configuration changed during connect; restarting")
        finally:
            self._connect_in_progress = False

    async def _async_connect_attempt(self) -> bool:
        if not config_is_complete(self.config):
            self._enter_bad_config()
            return False

        generation = self._generation
        client = self._client
        self._set_status(ConnectionStatus.CONNECTING)

        try:
            state = await client.async_authenticate()
            if generation != self._generation:
                return False
            self.session_state = state

            state, features = await client.async_fetch_matrix_features(
                self._reserve_session()
            )
            if generation != self._generation:
                return False
        except TielineConfigError:
            if generation == self._generation:
                self._enter_bad_config()
            return False
        except TielineError as err:
            if generation != self._generation:
                return False
            _LOGGER.error("Connection to %s failed: %s", self.host, err)
            if isinstance(err, TielineAuthError):
                # No-op while a reauth flow for this entry is already open.
                self.entry.async_start_reauth(self.hass)
            self._handle_connection_failure(err)
            return False

        self._merge_session(state)
        self.features = features
        _LOGGER.debug("Variables after initialization: %s", features.variables)

        self.status = ConnectionStatus.OK
        self.connection_failed = False
        self.reconnect_attempts = 0
        self.async_set_updated_data(self._build_data())
        self.start_heartbeat()
        _LOGGER.info("Connected to Tieline gateway %s", self.host)
        return True

    @callback
    def _handle_connection_failure(self, err: Exception) -> None:
        self._generation += 1
        self.stop_heartbeat()
        self.session_state = None
        self.connection_failed = True
        self.async_set_update_error(err)
        self.schedule_reconnect()
        self._set_status(ConnectionStatus.CONNECTION_FAILURE)

    @callback
    def schedule_reconnect(self) -> None:
        """Arm a single reconnect timer with exponential backoff."""
        self._cancel_pending_reconnect()
        if self._closed:
            return

        delay_ms = reconnect_delay_ms(self.reconnect_attempts)
        self.reconnect_attempts += 1
        self._cancel_reconnect = async_call_later(
            self.hass, delay_ms / 1000, self._async_reconnect_timer_fired
        )
        _LOGGER.info(
            "Scheduling reconnect attempt %s to %s in %sms",
            self.reconnect_attempts,
            self.host,
            delay_ms,
        )

    @callback
    def _cancel_pending_reconnect(self) -> None:
        if self._cancel_reconnect is not None:
            self._cancel_reconnect()
            self._cancel_reconnect = None

    async def _async_reconnect_timer_fired(self, _now: datetime) -> None:
        self._cancel_reconnect = None
        await self.async_connect()

    async def async_reconnect_now(self) -> None:
        """Drop the current session and connect immediately."""
        if self._connect_in_progress:
            _LOGGER.debug("Connect to %s already in progress; skipping", self.host)
            return
        self._cancel_pending_reconnect()
        self.stop_heartbeat()
        self._generation += 1
        self.session_state = None
        await self.async_connect()

    # -------------------------------------------------------------------------
    # Heartbeat
    # -------------------------------------------------------------------------

    @callback
    def start_heartbeat(self) -> None:
        """Arm the keepalive timer, replacing any existing one."""
        self.stop_heartbeat()
        self._cancel_heartbeat = async_track_time_interval(
            self.hass, self._async_heartbeat_tick, HEARTBEAT_INTERVAL
        )

    @callback
    def stop_heartbeat(self) -> None:
        """Cancel the keepalive timer if armed."""
        if self._cancel_heartbeat is not None:
            self._cancel_heartbeat()
            self._cancel_heartbeat = None

    async def _async_heartbeat_tick(self, _now: datetime) -> None:
        await self.async_send_heartbeat()

    async def async_send_heartbeat(self) -> None:
        """Send one keepalive and merge the refreshed session tokens."""
        if self.session_state is None:
            return

        generation = self._generation
        try:
            state = await self._client.async_send_heartbeat(self._reserve_session())
        except TielineError as err:
            if generation != self._generation:
                return
            _LOGGER.warning("Heartbeat to %s failed: %s", self.host, err)
            self._handle_connection_failure(err)
            return

        if generation == self._generation:
            self._merge_session(state)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def _reserve_session(self) -> SessionState:
        """Advance the nonce counter and return the snapshot to sign with."""
        if self.session_state is None:
            raise TielineAuthError("Not authenticated")
        self.session_state = self.session_state.advance()
        return self.session_state

    def _merge_session(self, state: SessionState) -> None:
        """Take refreshed tokens from a returned snapshot, keeping our counter."""
        current = self.session_state
        if current is None or current.challenge != state.challenge:
            self.session_state = state
            return
        self.session_state = current.with_tokens(
            auth_header=state.auth_header, csrf_token=state.csrf_token
        )

    # -------------------------------------------------------------------------
    # Matrix
    # -------------------------------------------------------------------------

    def get_variable_choices(self, feature_type: str) -> list[dict[str, str]]:
        """Return `{id, label}` choices for a discovered capability type.

        Args:
            feature_type: Capability type, e.g. `sources`.

        Returns:
            Choices in device order; empty when the type was not discovered.
        """
        values = self.features.variables.get(feature_type) or []
        if not values:
            _LOGGER.warning(
                "%s not initialized or empty. Returning empty list", feature_type
            )
            return []
        choices = [{"id": value, "label": value} for value in values]
        _LOGGER.debug("Choices for %s: %s", feature_type, choices)
        return choices

    def _require_choice(self, feature_type: str, value: str) -> None:
        if value not in self.features.variables.get(feature_type, []):
            raise HomeAssistantError(f"Unknown {feature_type[:-1]}: {value}")

    async def _async_run_action(
        self,
        description: str,
        send: Callable[[SessionState], Awaitable[SessionState]],
    ) -> bool:
        """Send one state-changing request with a reserved session.

        Returns:
            True when the result belongs to the current session.
        """
        if self.status is not ConnectionStatus.OK or self.session_state is None:
            raise HomeAssistantError("Tieline gateway is not connected")

        generation = self._generation
        try:
            state = await send(self._reserve_session())
        except TielineError as err:
            if generation == self._generation and _is_connection_error(err):
                _LOGGER.warning("%s failed on %s: %s", description, self.host, err)
                self._handle_connection_failure(err)
            raise HomeAssistantError(f"{description} failed: {err}") from err

        if generation != self._generation:
            return False
        self._merge_session(state)
        return True

    async def async_route(self, *, source: str, destination: str) -> None:
        """Route a discovered source to a discovered destination."""
        self._require_choice(FEATURE_SOURCES, source)
        self._require_choice(FEATURE_DESTINATIONS, destination)

        current = await self._async_run_action(
            f"Routing {source} to {destination}",
            lambda state: self._client.async_set_route(
                state, source=source, destination=destination
            ),
        )
        if not current:
            return
        self.features = replace(
            self.features, routes={**self.features.routes, destination: source}
        )
        self.async_set_updated_data(self._build_data())

    async def async_recall_preset(self, preset: str) -> None:
        """Recall a discovered matrix preset."""
        self._require_choice(FEATURE_PRESETS, preset)

        current = await self._async_run_action(
            f"Recalling preset {preset}",
            lambda state: self._client.async_recall_preset(state, preset=preset),
        )
        if current:
            await self.async_request_refresh()

    async def _async_update_data(self) -> dict[str, Any]:
        """Re-discover matrix features with the current session.

        Returns:
            Coordinator data dict.

        Raises:
            UpdateFailed: If the gateway is not connected or discovery fails.
        """
        if self.status is not ConnectionStatus.OK or self.session_state is None:
            raise UpdateFailed("Tieline gateway is not connected")

        generation = self._generation
        try:
            state, features = await self._client.async_fetch_matrix_features(
                self._reserve_session()
            )
        except TielineError as err:
            if generation == self._generation and _is_connection_error(err):
                self._handle_connection_failure(err)
            raise UpdateFailed(f"Matrix refresh failed: {err}") from err

        if generation == self._generation:
            self._merge_session(state)
            self.features = features
        return self._build_data()
