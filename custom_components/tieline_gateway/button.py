"""Buttons for Tieline Gateway.

This platform exposes connection maintenance controls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, cast

from homeassistant.components.button import ButtonEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import DOMAIN
from .coordinator import ConnectionStatus, TielineGatewayCoordinator


@dataclass(frozen=True)
class _GatewayButtonRef:
    key: str
    name: str
    icon: str
    press_fn: Callable[[TielineGatewayCoordinator], Any]
    requires_connection: bool = False


_BUTTONS: tuple[_GatewayButtonRef, ...] = (
    _GatewayButtonRef(
        key="reconnect",
        name="Reconnect",
        icon="mdi:lan-connect",
        press_fn=lambda c: c.async_reconnect_now(),
    ),
    # Re-reads the feature document without a new Digest handshake.
    _GatewayButtonRef(
        key="refresh_matrix",
        name="Refresh matrix",
        icon="mdi:refresh",
        press_fn=lambda c: c.async_request_refresh(),
        requires_connection=True,
    ),
)


async def async_setup_entry(
    hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback
) -> None:
    """Set up gateway buttons."""
    coordinator: TielineGatewayCoordinator = hass.data[DOMAIN][entry.entry_id]
    async_add_entities(
        [TielineGatewayButton(coordinator, entry, ref=ref) for ref in _BUTTONS]
    )


class TielineGatewayButton(ButtonEntity):
    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_entity_category = EntityCategory.CONFIG

    def __init__(
        self,
        coordinator: TielineGatewayCoordinator,
        entry: ConfigEntry,
        *,
        ref: _GatewayButtonRef,
    ) -> None:
        super().__init__()
        self._coordinator = coordinator
        self._entry = entry
        self._ref = ref

        self._attr_unique_id = f"{coordinator.device_identifier}_{ref.key}".lower()
        self._attr_name = ref.name
        self._attr_icon = ref.icon
        self._attr_device_info = coordinator.device_info
        self._attr_available = self._read_available()

    def _read_available(self) -> bool:
        if not self._ref.requires_connection:
            return True
        return getattr(self._coordinator, "status", None) == ConnectionStatus.OK

    async def async_press(self) -> None:
        try:
            await cast(Any, self._ref.press_fn)(self._coordinator)
        except HomeAssistantError:
            raise
        except Exception as err:
            raise HomeAssistantError(f"Error running {self._ref.name}: {err}") from err

    def _handle_coordinator_update(self) -> None:
        self._attr_available = self._read_available()
        self.async_write_ha_state()

    async def async_added_to_hass(self) -> None:
        self.async_on_remove(
            self._coordinator.async_add_listener(self._handle_coordinator_update)
        )
        self._handle_coordinator_update()
