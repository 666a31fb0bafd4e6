"""Sensors for Tieline Gateway.

This platform exposes connection diagnostics for the gateway and one
routed-source sensor per discovered matrix destination.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, cast

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.typing import StateType
from homeassistant.util import dt as dt_util

from .const import DOMAIN
from .coordinator import ConnectionStatus, TielineGatewayCoordinator
from .tieline.matrix import FEATURE_DESTINATIONS
from .tieline.util import slugify_label


def _last_auth_time(coordinator: TielineGatewayCoordinator) -> Any:
    state = coordinator.session_state
    if state is None or state.last_auth_time is None:
        return None
    return dt_util.utc_from_timestamp(state.last_auth_time)


@dataclass(frozen=True)
class _GatewaySensorRef:
    """Reference to a coordinator connection attribute."""

    key: str
    name: str
    icon: str | None
    value_fn: Callable[[TielineGatewayCoordinator], Any]
    device_class: SensorDeviceClass | None = None
    state_class: SensorStateClass | None = None
    entity_category: EntityCategory | None = None
    options: list[str] | None = None


_GATEWAY_SENSORS: tuple[_GatewaySensorRef, ...] = (
    _GatewaySensorRef(
        key="connection_status",
        name="Connection status",
        icon="mdi:lan",
        value_fn=lambda c: c.status.value,
        device_class=SensorDeviceClass.ENUM,
        options=[s.value for s in ConnectionStatus],
    ),
    _GatewaySensorRef(
        key="reconnect_attempts",
        name="Reconnect attempts",
        icon="mdi:restart",
        value_fn=lambda c: c.reconnect_attempts,
        state_class=SensorStateClass.MEASUREMENT,
        entity_category=EntityCategory.DIAGNOSTIC,
    ),
    _GatewaySensorRef(
        key="last_authenticated",
        name="Last authenticated",
        icon="mdi:key-chain",
        value_fn=_last_auth_time,
        device_class=SensorDeviceClass.TIMESTAMP,
        entity_category=EntityCategory.DIAGNOSTIC,
    ),
)


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    """Set up gateway sensors and per-destination route sensors."""
    coordinator: TielineGatewayCoordinator = hass.data[DOMAIN][entry.entry_id]

    async_add_entities(
        [TielineGatewaySensor(coordinator, entry, ref=ref) for ref in _GATEWAY_SENSORS]
    )

    added_destinations: set[str] = set()

    def _add_route_sensors() -> None:
        variables_any: Any = (coordinator.data or {}).get("variables")
        variables = (
            cast(dict[str, Any], variables_any) if isinstance(variables_any, dict) else {}
        )
        destinations_any: Any = variables.get(FEATURE_DESTINATIONS)
        if not isinstance(destinations_any, list):
            return

        new_entities: list[SensorEntity] = []
        for destination_any in cast(list[Any], destinations_any):
            destination = str(destination_any)
            if destination in added_destinations:
                continue
            new_entities.append(
                TielineRoutedSourceSensor(coordinator, entry, destination=destination)
            )
            added_destinations.add(destination)

        if new_entities:
            async_add_entities(new_entities)

    _add_route_sensors()
    remove = coordinator.async_add_listener(_add_route_sensors)
    entry.async_on_unload(remove)


class TielineGatewaySensor(SensorEntity):
    """Sensor exposing connection state.

    These stay available while disconnected so the failure itself is visible.
    """

    _attr_has_entity_name = True
    _attr_should_poll = False

    def __init__(
        self,
        coordinator: TielineGatewayCoordinator,
        entry: ConfigEntry,
        *,
        ref: _GatewaySensorRef,
    ) -> None:
        """Initialize the sensor.

        Args:
            coordinator: Gateway coordinator.
            entry: Config entry.
            ref: Sensor description.
        """
        super().__init__()
        self._coordinator = coordinator
        self._entry = entry
        self._ref = ref

        self._attr_unique_id = f"{coordinator.device_identifier}_{ref.key}".lower()
        self._attr_name = ref.name
        self._attr_icon = ref.icon
        self._attr_device_class = ref.device_class
        self._attr_state_class = ref.state_class
        self._attr_entity_category = ref.entity_category
        if ref.options is not None:
            self._attr_options = list(ref.options)
        self._attr_device_info = coordinator.device_info
        self._attr_native_value = self._read_value()

    def _read_value(self) -> StateType:
        return cast(StateType, self._ref.value_fn(self._coordinator))

    def _handle_coordinator_update(self) -> None:
        self._attr_native_value = self._read_value()
        self.async_write_ha_state()

    async def async_added_to_hass(self) -> None:
        self.async_on_remove(
            self._coordinator.async_add_listener(self._handle_coordinator_update)
        )
        self._handle_coordinator_update()


class TielineRoutedSourceSensor(SensorEntity):
    """Source currently routed to one destination."""

    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_icon = "mdi:import"

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
            f"{coordinator.device_identifier}_routed_source_{dest_slug}".lower()
        )
        self._attr_name = f"{destination} routed source"
        self._attr_device_info = coordinator.device_info
        self._attr_extra_state_attributes = {"destination": destination}
        self._refresh_from_coordinator()

    def _refresh_from_coordinator(self) -> None:
        self._attr_available = bool(
            getattr(self._coordinator, "last_update_success", True)
        ) and (getattr(self._coordinator, "status", None) == ConnectionStatus.OK)

        routes_any: Any = (self._coordinator.data or {}).get("routes")
        routes = cast(dict[str, Any], routes_any) if isinstance(routes_any, dict) else {}
        routed = routes.get(self._destination)
        self._attr_native_value = str(routed) if routed is not None else None

    def _handle_coordinator_update(self) -> None:
        self._refresh_from_coordinator()
        self.async_write_ha_state()

    async def async_added_to_hass(self) -> None:
        self.async_on_remove(
            self._coordinator.async_add_listener(self._handle_coordinator_update)
        )
        self._handle_coordinator_update()
