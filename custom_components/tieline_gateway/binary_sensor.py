"""Binary sensors for Tieline Gateway.

This platform exposes gateway connectivity and whether each discovered matrix
destination currently has a source routed to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, cast

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import DOMAIN
from .coordinator import ConnectionStatus, TielineGatewayCoordinator
from .tieline.matrix import FEATURE_DESTINATIONS
from .tieline.util import slugify_label


@dataclass(frozen=True)
class _BinaryRef:
    """Reference to a coordinator boolean field."""

    key: str
    name: str
    icon: str | None
    value_fn: Callable[[TielineGatewayCoordinator], bool | None]
    requires_connection: bool = True
    device_class: BinarySensorDeviceClass | None = None
    entity_category: EntityCategory | None = None


def _routed_value_fn(destination: str) -> Callable[[TielineGatewayCoordinator], bool]:
    def _value(coordinator: TielineGatewayCoordinator) -> bool:
        routes_any: Any = (coordinator.data or {}).get("routes")
        if not isinstance(routes_any, dict):
            return False
        return cast(dict[str, Any], routes_any).get(destination) is not None

    return _value


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    """Set up gateway binary sensors."""
    coordinator: TielineGatewayCoordinator = hass.data[DOMAIN][entry.entry_id]

    async_add_entities(
        [
            TielineBinarySensor(
                coordinator,
                entry,
                ref=_BinaryRef(
                    key="connected",
                    name="Connected",
                    icon=None,
                    value_fn=lambda c: c.status == ConnectionStatus.OK,
                    requires_connection=False,
                    device_class=BinarySensorDeviceClass.CONNECTIVITY,
                    entity_category=EntityCategory.DIAGNOSTIC,
                ),
            )
        ]
    )

    added_destinations: set[str] = set()

    def _add_routed_sensors() -> None:
        variables_any: Any = (coordinator.data or {}).get("variables")
        if not isinstance(variables_any, dict):
            return
        destinations_any: Any = cast(dict[str, Any], variables_any).get(
            FEATURE_DESTINATIONS
        )
        if not isinstance(destinations_any, list):
            return

        new_entities: list[BinarySensorEntity] = []
        for destination_any in cast(list[Any], destinations_any):
            destination = str(destination_any)
            if destination in added_destinations:
                continue
            dest_slug = slugify_label(destination) or "destination"
            new_entities.append(
                TielineBinarySensor(
                    coordinator,
                    entry,
                    ref=_BinaryRef(
                        key=f"routed_{dest_slug}",
                        name=f"{destination} routed",
                        icon="mdi:transit-connection-variant",
                        value_fn=_routed_value_fn(destination),
                    ),
                )
            )
            added_destinations.add(destination)

        if new_entities:
            async_add_entities(new_entities)

    _add_routed_sensors()
    remove = coordinator.async_add_listener(_add_routed_sensors)
    entry.async_on_unload(remove)


class TielineBinarySensor(BinarySensorEntity):
    """Binary sensor backed by the gateway coordinator."""

    _attr_has_entity_name = True
    _attr_should_poll = False

    def __init__(
        self,
        coordinator: TielineGatewayCoordinator,
        entry: ConfigEntry,
        *,
        ref: _BinaryRef,
    ) -> None:
        """Initialize the binary sensor."""
        super().__init__()
        self._coordinator = coordinator
        self._entry = entry
        self._ref = ref

        self._attr_unique_id = f"{coordinator.device_identifier}_{ref.key}".lower()
        self._attr_name = ref.name
        self._attr_icon = ref.icon
        self._attr_device_class = ref.device_class
        self._attr_entity_category = ref.entity_category
        self._attr_device_info = coordinator.device_info

        self._attr_available = self._read_available()
        self._attr_is_on = self._read_value()

    def _read_available(self) -> bool:
        if not self._ref.requires_connection:
            return True
        return bool(getattr(self._coordinator, "last_update_success", True)) and (
            getattr(self._coordinator, "status", None) == ConnectionStatus.OK
        )

    def _read_value(self) -> bool | None:
        """Read boolean state from coordinator."""
        return self._ref.value_fn(self._coordinator)

    def _handle_coordinator_update(self) -> None:
        """Update state from coordinator."""
        self._attr_available = self._read_available()
        self._attr_is_on = self._read_value()
        self.async_write_ha_state()

    async def async_added_to_hass(self) -> None:
        """Register coordinator listener."""
        self.async_on_remove(
            self._coordinator.async_add_listener(self._handle_coordinator_update)
        )
        self._handle_coordinator_update()
