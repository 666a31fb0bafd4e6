"""The Tieline Gateway integration.

This integration controls the audio routing matrix of a Tieline gateway over
its Digest-authenticated HTTP API.
"""

from __future__ import annotations

import logging

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from .const import DOMAIN, LOGGER_NAME, PLATFORMS
from .coordinator import TielineGatewayCoordinator, config_from_entry

_LOGGER = logging.getLogger(LOGGER_NAME)


async def _async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Apply changed entry data/options to the running connection.

    Args:
        hass: Home Assistant instance.
        entry: The updated config entry.
    """
    coordinator: TielineGatewayCoordinator | None = hass.data.get(DOMAIN, {}).get(
        entry.entry_id
    )
    if coordinator is None:
        return
    _LOGGER.debug("Configuration updated for %s; reconnecting", entry.title)
    await coordinator.async_config_updated(config_from_entry(entry))


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up a Tieline gateway from a config entry.

    Connection failures do not fail setup: the coordinator keeps retrying with
    backoff and entities stay unavailable until it connects.

    Args:
        hass: Home Assistant instance.
        entry: The config entry.

    Returns:
        True if setup succeeds.
    """
    coordinator = TielineGatewayCoordinator(hass, entry=entry)
    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = coordinator

    await coordinator.async_start()

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    entry.async_on_unload(entry.add_update_listener(_async_update_listener))

    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry.

    Args:
        hass: Home Assistant instance.
        entry: The config entry.

    Returns:
        True if the entry was unloaded.
    """
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        coordinator = hass.data.get(DOMAIN, {}).pop(entry.entry_id, None)
        if coordinator is not None:
            await coordinator.async_shutdown()
    return unload_ok
