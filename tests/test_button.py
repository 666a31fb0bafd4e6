"""Tests for Tieline Gateway button platform."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, cast
from unittest.mock import AsyncMock

import pytest
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.device_registry import DeviceInfo
from pytest_homeassistant_custom_component.common import MockConfigEntry

from custom_components.tieline_gateway.const import CONF_HOST, DOMAIN
from custom_components.tieline_gateway.coordinator import ConnectionStatus


@dataclass
class _CoordinatorStub:
    data: dict[str, Any] = field(default_factory=dict)
    status: ConnectionStatus = ConnectionStatus.OK
    device_identifier: str = "10.0.0.5"
    device_info: DeviceInfo = field(default_factory=lambda: DeviceInfo())
    listeners: list[Callable[[], None]] = field(default_factory=list)

    async_reconnect_now: AsyncMock = field(default_factory=AsyncMock)
    async_request_refresh: AsyncMock = field(default_factory=AsyncMock)

    def async_add_listener(self, cb: Callable[[], None]) -> Callable[[], None]:
        self.listeners.append(cb)

        def _unsub() -> None:
            return None

        return _unsub


async def _setup(hass, coordinator: _CoordinatorStub) -> dict[str, Any]:
    entry = MockConfigEntry(
        domain=DOMAIN,
        data={CONF_HOST: "10.0.0.5"},
        unique_id="10.0.0.5",
        title="Tieline Gateway (10.0.0.5)",
    )
    entry.add_to_hass(hass)
    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = coordinator

    added: list[Any] = []

    def _add_entities(new_entities, update_before_add: bool = False):
        added.extend(list(new_entities))

    from custom_components.tieline_gateway import button

    await button.async_setup_entry(hass, cast(Any, entry), _add_entities)
    for ent in added:
        ent.hass = hass
        ent.async_write_ha_state = lambda *a, **k: None
    return {ent.unique_id: ent for ent in added}


async def test_buttons_press_coordinator_actions(hass, enable_custom_integrations):
    coordinator = _CoordinatorStub()
    buttons = await _setup(hass, coordinator)

    assert set(buttons) == {"10.0.0.5_reconnect", "10.0.0.5_refresh_matrix"}

    await buttons["10.0.0.5_reconnect"].async_press()
    coordinator.async_reconnect_now.assert_awaited_once()

    await buttons["10.0.0.5_refresh_matrix"].async_press()
    coordinator.async_request_refresh.assert_awaited_once()


async def test_refresh_button_unavailable_while_disconnected(
    hass, enable_custom_integrations
):
    coordinator = _CoordinatorStub(status=ConnectionStatus.CONNECTION_FAILURE)
    buttons = await _setup(hass, coordinator)

    assert buttons["10.0.0.5_refresh_matrix"].available is False
    assert buttons["10.0.0.5_reconnect"].available is True

    coordinator.status = ConnectionStatus.OK
    await buttons["10.0.0.5_refresh_matrix"].async_added_to_hass()
    assert buttons["10.0.0.5_refresh_matrix"].available is True


async def test_button_press_wraps_unexpected_errors(hass, enable_custom_integrations):
    coordinator = _CoordinatorStub()
    coordinator.async_reconnect_now.side_effect = RuntimeError("boom")
    buttons = await _setup(hass, coordinator)

    with pytest.raises(HomeAssistantError, match="Reconnect"):
        await buttons["10.0.0.5_reconnect"].async_press()
