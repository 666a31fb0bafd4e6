"""Tests for the Tieline Gateway select platform.

These tests validate matrix select creation, option mapping and routing calls
via a stubbed coordinator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, cast
from unittest.mock import AsyncMock, MagicMock

from homeassistant.helpers.device_registry import DeviceInfo
from pytest_homeassistant_custom_component.common import MockConfigEntry

from custom_components.tieline_gateway.const import (
    CONF_HOST,
    CONF_PASSWORD,
    CONF_USERNAME,
    DOMAIN,
)
from custom_components.tieline_gateway.coordinator import ConnectionStatus


@dataclass
class _CoordinatorStub:
    """Minimal coordinator stub used by select-platform tests.

    Attributes:
        data: Coordinator payload.
        status: Connection status.
        last_update_success: Whether the last update succeeded.
        device_identifier: Device identifier used for unique ids.
    """

    data: dict[str, Any]
    status: ConnectionStatus = ConnectionStatus.OK
    last_update_success: bool = True
    device_identifier: str = "10.0.0.5"
    device_info: DeviceInfo = field(
        default_factory=lambda: DeviceInfo(identifiers={(DOMAIN, "10.0.0.5")})
    )
    async_route: AsyncMock = field(default_factory=AsyncMock)
    async_recall_preset: AsyncMock = field(default_factory=AsyncMock)

    def __post_init__(self) -> None:
        """Initialize mutable listener tracking."""
        self._listeners: list[Callable[[], None]] = []

    def async_add_listener(
        self, update_callback: Callable[[], None]
    ) -> Callable[[], None]:
        self._listeners.append(update_callback)

        def _unsub() -> None:
            self._listeners.remove(update_callback)

        return _unsub

    def fire_update(self) -> None:
        """Invoke all registered listeners."""
        for cb in list(self._listeners):
            cb()

    def get_variable_choices(self, feature_type: str) -> list[dict[str, str]]:
        values = (self.data.get("variables") or {}).get(feature_type) or []
        return [{"id": v, "label": v} for v in values]


def _data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "variables": {
            "sources": ["Mic 1", "Mic 2"],
            "destinations": ["PGM"],
            "presets": [],
        },
        "routes": {"PGM": "Mic 1"},
    }
    data.update(overrides)
    return data


def _entry(hass) -> MockConfigEntry:
    entry = MockConfigEntry(
        domain=DOMAIN,
        data={CONF_HOST: "10.0.0.5", CONF_USERNAME: "admin", CONF_PASSWORD: "pw"},
        unique_id="10.0.0.5",
        title="Tieline Gateway (10.0.0.5)",
    )
    entry.add_to_hass(hass)
    return entry


async def test_select_setup_entry_adds_new_destinations_and_presets(
    hass, enable_custom_integrations
):
    entry = _entry(hass)
    coordinator = _CoordinatorStub(data=_data())
    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = coordinator

    added: list[Any] = []

    def _add_entities(new_entities, update_before_add: bool = False):
        added.extend(list(new_entities))

    from custom_components.tieline_gateway import select

    await select.async_setup_entry(hass, cast(Any, entry), _add_entities)
    assert [type(e).__name__ for e in added] == ["TielineRouteSelect"]

    coordinator.data["variables"]["destinations"].append("Studio")
    coordinator.data["variables"]["presets"] = ["Morning"]
    coordinator.fire_update()
    coordinator.fire_update()

    assert [type(e).__name__ for e in added] == [
        "TielineRouteSelect",
        "TielineRouteSelect",
        "TielinePresetSelect",
    ]
    assert added[1].unique_id == "10.0.0.5_route_studio"


async def test_route_select_reflects_routes_and_routes_on_select(
    hass, enable_custom_integrations
):
    entry = _entry(hass)
    coordinator = _CoordinatorStub(data=_data())

    from custom_components.tieline_gateway.select import TielineRouteSelect

    ent = TielineRouteSelect(cast(Any, coordinator), entry, destination="PGM")
    ent.hass = hass
    ent.async_write_ha_state = lambda *a, **k: None

    assert ent.unique_id == "10.0.0.5_route_pgm"
    assert ent.name == "PGM source"
    assert ent.options == ["Mic 1", "Mic 2"]
    assert ent.current_option == "Mic 1"
    assert ent.available is True

    await ent.async_select_option("Mic 2")
    coordinator.async_route.assert_awaited_once_with(source="Mic 2", destination="PGM")

    coordinator.data["routes"] = {"PGM": "Gone"}
    coordinator.status = ConnectionStatus.CONNECTION_FAILURE
    await ent.async_added_to_hass()

    assert ent.current_option is None
    assert ent.available is False
    assert coordinator._listeners == [ent._handle_coordinator_update]


async def test_preset_select_recalls_and_has_no_current_option(
    hass, enable_custom_integrations
):
    entry = _entry(hass)
    coordinator = _CoordinatorStub(data=_data(variables={"presets": ["Morning", "Evening"]}))

    from custom_components.tieline_gateway.select import TielinePresetSelect

    ent = TielinePresetSelect(cast(Any, coordinator), entry)
    ent.hass = hass
    ent.async_write_ha_state = lambda *a, **k: None

    assert ent.options == ["Morning", "Evening"]
    assert ent.current_option is None

    await ent.async_select_option("Evening")
    coordinator.async_recall_preset.assert_awaited_once_with("Evening")
    assert ent.current_option is None


async def test_preset_select_unavailable_when_presets_disappear(
    hass, enable_custom_integrations, caplog
):
    entry = _entry(hass)
    coordinator = _CoordinatorStub(data=_data(variables={"presets": ["Morning"]}))
    coordinator.get_variable_choices = MagicMock(return_value=[])

    from custom_components.tieline_gateway.select import TielinePresetSelect

    ent = TielinePresetSelect(cast(Any, coordinator), entry)
    ent.hass = hass
    ent.async_write_ha_state = lambda *a, **k: None
    await ent.async_added_to_hass()
    assert ent.available is True

    caplog.set_level(logging.WARNING)
    coordinator.data["variables"]["presets"] = []
    coordinator.fire_update()
    coordinator.fire_update()

    assert ent.options == []
    assert ent.available is False
    coordinator.get_variable_choices.assert_not_called()
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
