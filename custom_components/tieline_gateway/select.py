"""Select entities for Tieline Gateway.

This platform exposes the routing matrix:
- One source select per discovered destination
- One preset select when the gateway reports presets

Selecting an option sends the request through the coordinator, which signs it
with the current Digest session.
"""

from __future__ import annotations

import logging
from typing import Any, cast

from homeassistant.components.select import SelectEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import DOMAIN, LOGGER_NAME
from .coordinator import ConnectionStatus, TielineGatewayCoordinator
from .tieline.matrix import FEATURE_DESTINATIONS, FEATURE_PRESETS, FEATURE_SOURCES
from .tieline.util import slugify_label

_LOGGER = logging.getLogger(LOGGER_NAME)


def _variables_from_data(data: dict[str, Any], feature_type: str) -> list[str]:
    variables_any: Any = (data or {}).get("variables")
    if not isinstance(variables_any, dict):
        return []
    values_any: Any = cast(dict[str, Any], variables_any).get(feature_type)
    if not isinstance(values_any, list):
        return []
    return [str(v) for v in cast(list[Any], values_any)]


def _is_connected(coordinator: TielineGatewayCoordinator) -> bool:
    if not bool(getattr(coordinator, "last_update_success", True)):
        return False
    return getattr(coordinator, "status", None) == ConnectionStatus.OK


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    coordinator: TielineGatewayCoordinator = hass.data[DOMAIN][entry.entry_id]

    added_destinations: set[str] = set()
    added_presets: set[str] = set()

    def _add_matrix_selects() -> None:
        data = coordinator.data or {}
        new_entities: list[SelectEntity] = []

        for destination in _variables_from_data(data, FEATURE_DESTINATIONS):
            if destination in added_destinations:
                continue
            new_entities.append(
                TielineRouteSelect(coordinator, entry, destination=destination)
            )
            added_destinations.add(destination)

        if _variables_from_data(data, FEATURE_PRESETS) and not added_presets:
            new_entities.append(TielinePresetSelect(coordinator, entry))
            added_presets.add(FEATURE_PRESETS)

        if new_entities:
            _LOGGER.debug("Adding %s matrix selects", len(new_entities))
            async_add_entities(new_entities)

    _add_matrix_selects()
    remove = coordinator.async_add_listener(_add_matrix_selects)
    entry.async_on_unload(remove)


class TielineRouteSelect(SelectEntity):
    """Source routed to one matrix destination."""

    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_icon = "mdi:swap-horizontal"

    def __init__(
        self,
        coordinator: TielineGatewayCoordinator,
        entry: ConfigEntry,
        *,
        destination: str,
    ) -> None:
        super().__init__()
        self._coordinator = coordinator
        self._entry = entry
        self._destination = destination

        dest_slug = slugify_label(destination) or "destination"
        self._attr_unique_id = (
            f"{coordinator.device_identifier}_route_{dest_slug}".lower()
        )
        self._attr_name = f"{destination} source"
        self._attr_device_info = coordinator.device_info
        self._attr_extra_state_attributes = {"destination": destination}

        self._attr_options = []
        self._attr_current_option = None
        self._refresh_from_coordinator()

    def _refresh_from_coordinator(self) -> None:
        self._attr_available = _is_connected(self._coordinator)
        self._attr_options = [
            choice["label"]
            for choice in self._coordinator.get_variable_choices(FEATURE_SOURCES)
        ]

        routes_any: Any = (self._coordinator.data or {}).get("routes")
        routes = cast(dict[str, Any], routes_any) if isinstance(routes_any, dict) else {}
        routed = routes.get(self._destination)
        if routed is not None and str(routed) in self._attr_options:
            self._attr_current_option = str(routed)
        else:
            self._attr_current_option = None

    async def async_select_option(self, option: str) -> None:
        await self._coordinator.async_route(
            source=option, destination=self._destination
        )

    def _handle_coordinator_update(self) -> None:
        self._refresh_from_coordinator()
        self.async_write_ha_state()

    async def async_added_to_hass(self) -> None:
        self.async_on_remove(
            self._coordinator.async_add_listener(self._handle_coordinator_update)
        )
        self._handle_coordinator_update()


class TielinePresetSelect(SelectEntity):
    """Momentary matrix preset recall.

    The gateway does not report which preset is active, so the current option
    always reads back as unknown.
    """

    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_icon = "mdi:playlist-play"

    def __init__(
        self, coordinator: TielineGatewayCoordinator, entry: ConfigEntry
    ) -> None:
        super().__init__()
        self._coordinator = coordinator
        self._entry = entry

        self._attr_unique_id = f"{coordinator.device_identifier}_preset".lower()
        self._attr_name = "Preset"
        self._attr_device_info = coordinator.device_info
        self._attr_current_option = None
        self._attr_options = []
        self._refresh_from_coordinator()

    def _refresh_from_coordinator(self) -> None:
        presets = _variables_from_data(self._coordinator.data or {}, FEATURE_PRESETS)
        self._attr_available = _is_connected(self._coordinator) and bool(presets)
        self._attr_options = presets

    async def async_select_option(self, option: str) -> None:
        await self._coordinator.async_recall_preset(option)

    def _handle_coordinator_update(self) -> None:
        self._refresh_from_coordinator()
        self.async_write_ha_state()

    async def async_added_to_hass(self) -> None:
        self.async_on_remove(
            self._coordinator.async_add_listener(self._handle_coordinator_update)
        )
        self._handle_coordinator_update()
