"""Config flow for the Tieline Gateway integration.

This module implements configuration, re-auth, reconfigure and options flows
and validates credentials by running the Digest handshake against the gateway.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import urlparse

import voluptuous as vol
from homeassistant import config_entries
from homeassistant.config_entries import ConfigEntry, ConfigFlowResult
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from .const import (
    CONF_HOST,
    CONF_PASSWORD,
    CONF_PORT,
    CONF_TIMEOUT,
    CONF_USERNAME,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USERNAME,
    DOMAIN,
    LOGGER_NAME,
)
from .tieline.client import TielineClient
from .tieline.exceptions import TielineAuthError, TielineConfigError, TielineError

_LOGGER = logging.getLogger(LOGGER_NAME)


STEP_USER_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_HOST): str,
        vol.Required(CONF_USERNAME, default=DEFAULT_USERNAME): str,
        vol.Required(CONF_PASSWORD): str,
        vol.Optional(CONF_PORT, default=DEFAULT_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
    }
)


STEP_REAUTH_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_USERNAME, default=DEFAULT_USERNAME): str,
        vol.Required(CONF_PASSWORD): str,
    }
)


def _step_reconfigure_schema(existing: Mapping[str, Any]) -> vol.Schema:
    """Build the reconfigure schema with sensible defaults.

    Args:
        existing: Existing config entry data merged with its options.

    Returns:
        Voluptuous schema used to prompt for updated host/credentials.
    """
    host_default = _normalize_host(str(existing.get(CONF_HOST, "")))
    username_default = str(
        existing.get(CONF_USERNAME, DEFAULT_USERNAME) or DEFAULT_USERNAME
    )
    port_default = int(existing.get(CONF_PORT) or DEFAULT_PORT)

    # Password has no default so leaving it blank won't overwrite an existing one.
    return vol.Schema(
        {
            vol.Required(CONF_HOST, default=host_default): str,
            vol.Required(CONF_USERNAME, default=username_default): str,
            vol.Optional(CONF_PASSWORD): str,
            vol.Optional(CONF_PORT, default=port_default): vol.All(
                vol.Coerce(int), vol.Range(min=1, max=65535)
            ),
        }
    )


def _normalize_host(host: str) -> str:
    """Normalize a host field to a hostname/IP.

    Users sometimes paste URLs (e.g., http://10.0.0.5/). This integration
    stores only the host portion and assumes http.

    Args:
        host: Raw host input.

    Returns:
        Hostname/IP without scheme/path.
    """
    raw = (host or "").strip()
    if not raw:
        return raw

    if raw.startswith("http://") or raw.startswith("https://"):
        parsed = urlparse(raw)
        return (parsed.hostname or parsed.netloc or raw).strip()

    return raw.rstrip("/")


class CannotConnect(HomeAssistantError):
    """Error raised when the gateway cannot be reached."""


class InvalidAuth(HomeAssistantError):
    """Error raised when authentication fails."""


async def _async_validate_input(
    hass: HomeAssistant, data: Mapping[str, Any]
) -> dict[str, str]:
    """Validate user input by authenticating against the gateway.

    Args:
        hass: Home Assistant instance.
        data: User-provided config data.

    Returns:
        A dict containing a display title and unique_id.

    Raises:
        CannotConnect: If the gateway cannot be reached.
        InvalidAuth: If authentication fails.
    """
    host = _normalize_host(str(data.get(CONF_HOST, "")))
    username = str(data.get(CONF_USERNAME) or "")

    _LOGGER.debug("Validating Tieline connection host=%s user=%s", host, username)

    client = TielineClient(
        host=host,
        username=username,
        password=str(data.get(CONF_PASSWORD) or ""),
        port=int(data.get(CONF_PORT) or DEFAULT_PORT),
        timeout_seconds=int(data.get(CONF_TIMEOUT) or DEFAULT_TIMEOUT_SECONDS),
        session=async_get_clientsession(hass),
    )

    try:
        await client.async_authenticate()
    except (TielineConfigError, TielineAuthError) as err:
        _LOGGER.debug("Tieline validation rejected host=%s: %s", host, err)
        raise InvalidAuth from err
    except TielineError as err:
        _LOGGER.debug("Tieline validation failed host=%s: %s", host, err)
        raise CannotConnect from err

    return {"title": f"Tieline Gateway ({host})", "unique_id": host}


class TielineGatewayConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Handle a config flow for Tieline Gateway."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> TielineGatewayOptionsFlow:
        """Return the options flow handler."""
        return TielineGatewayOptionsFlow()

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle the initial step.

        Args:
            user_input: Optional dict of user-provided values.

        Returns:
            A Home Assistant config flow result.
        """
        errors: dict[str, str] = {}

        if user_input is not None:
            data = dict(user_input)
            data[CONF_HOST] = _normalize_host(str(data.get(CONF_HOST, "")))
            try:
                info = await _async_validate_input(self.hass, data)
            except CannotConnect:
                errors["base"] = "cannot_connect"
            except InvalidAuth:
                errors["base"] = "invalid_auth"
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected exception during setup")
                errors["base"] = "unknown"
            else:
                await self.async_set_unique_id(info["unique_id"])
                self._abort_if_unique_id_configured()
                return self.async_create_entry(title=info["title"], data=data)

        return self.async_show_form(
            step_id="user", data_schema=STEP_USER_SCHEMA, errors=errors
        )

    async def async_step_reauth(
        self, entry_data: Mapping[str, Any]
    ) -> ConfigFlowResult:
        """Start a reauth flow when stored credentials stop working.

        Args:
            entry_data: Existing entry data.

        Returns:
            A Home Assistant config flow result.
        """
        return await self.async_step_reauth_confirm()

    async def async_step_reauth_confirm(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Prompt for updated credentials.

        Args:
            user_input: Optional dict of user-provided values.

        Returns:
            A Home Assistant config flow result.
        """
        entry = self.hass.config_entries.async_get_entry(
            str((self.context or {}).get("entry_id") or "")
        )
        if entry is None:
            return self.async_abort(reason="unknown")

        errors: dict[str, str] = {}

        if user_input is not None:
            merged: dict[str, Any] = dict(entry.data)
            merged.update(user_input)
            try:
                await _async_validate_input(self.hass, merged)
            except CannotConnect:
                errors["base"] = "cannot_connect"
            except InvalidAuth:
                errors["base"] = "invalid_auth"
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected exception during reauth")
                errors["base"] = "unknown"
            else:
                # The entry update listener reconnects with the new credentials.
                self.hass.config_entries.async_update_entry(entry, data=merged)
                return self.async_abort(reason="reauth_successful")

        return self.async_show_form(
            step_id="reauth_confirm",
            data_schema=STEP_REAUTH_SCHEMA,
            errors=errors,
            description_placeholders={CONF_HOST: str(entry.data.get(CONF_HOST, ""))},
        )

    async def async_step_reconfigure(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Prompt for updated host/credentials.

        Args:
            user_input: Optional dict of user-provided values.

        Returns:
            A Home Assistant config flow result.
        """
        entry = self.hass.config_entries.async_get_entry(
            str((self.context or {}).get("entry_id") or "")
        )
        if entry is None:
            return self.async_abort(reason="unknown")

        errors: dict[str, str] = {}

        if user_input is not None:
            merged: dict[str, Any] = dict(entry.data)
            merged.update(user_input)
            merged[CONF_HOST] = _normalize_host(str(merged.get(CONF_HOST, "")))

            # If the user leaves password empty/omitted, keep the existing one.
            # The HA frontend commonly submits empty strings for optional fields.
            pw_any: Any = user_input.get(CONF_PASSWORD)
            if CONF_PASSWORD not in user_input or (
                isinstance(pw_any, str) and not pw_any.strip()
            ):
                merged[CONF_PASSWORD] = entry.data.get(CONF_PASSWORD, "")

            try:
                info = await _async_validate_input(self.hass, merged)
            except CannotConnect:
                errors["base"] = "cannot_connect"
            except InvalidAuth:
                errors["base"] = "invalid_auth"
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected exception during reconfigure")
                errors["base"] = "unknown"
            else:
                if info["unique_id"] != entry.unique_id and any(
                    e.entry_id != entry.entry_id
                    and str(e.unique_id or "") == info["unique_id"]
                    for e in self.hass.config_entries.async_entries(DOMAIN)
                ):
                    return self.async_abort(reason="already_configured")

                # Options override data, so a port saved there must follow this step.
                options: dict[str, Any] = dict(entry.options)
                if CONF_PORT in options and CONF_PORT in merged:
                    options[CONF_PORT] = merged[CONF_PORT]

                self.hass.config_entries.async_update_entry(
                    entry,
                    data=merged,
                    options=options,
                    title=info["title"],
                    unique_id=info["unique_id"],
                )
                return self.async_abort(reason="reconfigure_successful")

        return self.async_show_form(
            step_id="reconfigure",
            data_schema=_step_reconfigure_schema({**entry.data, **entry.options}),
            errors=errors,
            description_placeholders={CONF_HOST: str(entry.data.get(CONF_HOST, ""))},
        )


class TielineGatewayOptionsFlow(config_entries.OptionsFlow):
    """Edit optional connection parameters."""

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        if user_input is not None:
            return self.async_create_entry(title="", data=user_input)

        current = {**self.config_entry.data, **self.config_entry.options}
        schema = vol.Schema(
            {
                vol.Optional(
                    CONF_PORT, default=int(current.get(CONF_PORT) or DEFAULT_PORT)
                ): vol.All(vol.Coerce(int), vol.Range(min=1, max=65535)),
                vol.Optional(
                    CONF_TIMEOUT,
                    default=int(current.get(CONF_TIMEOUT) or DEFAULT_TIMEOUT_SECONDS),
                ): vol.All(vol.Coerce(int), vol.Range(min=1, max=120)),
            }
        )
        return self.async_show_form(step_id="init", data_schema=schema)
