"""
Configuration flow for TFIAC air conditioner integration.

This module handles the setup of a TFIAC unit through Home Assistant's
config flow system. The device is probed with a status query before the
entry is created.
"""

import dataclasses
import logging
from typing import Any

import voluptuous as vol
from homeassistant.config_entries import ConfigFlow, ConfigFlowResult
from homeassistant.const import CONF_HOST, CONF_NAME, CONF_PORT, UnitOfTemperature

from .api import (
    TfiacApiClient,
    TfiacApiClientError,
    TfiacNetworkError,
    TfiacParseError,
    TfiacTimeoutError,
)
from .const import (
    CONF_TEMPERATURE_UNIT,
    DEFAULT_NAME,
    DEFAULT_PORT,
    DOMAIN,
    ERROR_CANNOT_CONNECT,
    ERROR_INVALID_RESPONSE,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
)
from .models import TfiacDeviceConfig

_LOGGER = logging.getLogger(__name__)

DATA_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_HOST): str,
        vol.Optional(CONF_PORT, default=DEFAULT_PORT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=65535)
        ),
        vol.Optional(CONF_NAME, default=DEFAULT_NAME): str,
        vol.Optional(
            CONF_TEMPERATURE_UNIT, default=UnitOfTemperature.FAHRENHEIT
        ): vol.In([UnitOfTemperature.FAHRENHEIT, UnitOfTemperature.CELSIUS]),
    }
)


async def async_probe_device(config: TfiacDeviceConfig) -> None:
    """
    Query the device status once to check it answers.

    Args:
        config: Configuration built from the user input.

    Raises:
        TfiacApiClientError: If the device cannot be read.

    """
    client = TfiacApiClient(dataclasses.replace(config, retries=0))
    try:
        status = await client.async_update_state()
        _LOGGER.debug("Probe of %s:%s returned %s", config.host, config.port, status)
    finally:
        client.cleanup()


class TfiacConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle configuration flow for TFIAC air conditioner integration."""

    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """
        Handle the initial step of the config flow.

        Args:
            user_input: User input data containing host, port, name and unit.

        Returns:
            ConfigFlowResult indicating the next step or errors.

        """
        errors: dict[str, str] = {}

        if user_input is not None:
            host = user_input[CONF_HOST].strip()
            data = {
                CONF_HOST: host,
                CONF_PORT: user_input.get(CONF_PORT, DEFAULT_PORT),
                CONF_NAME: user_input.get(CONF_NAME, DEFAULT_NAME),
                CONF_TEMPERATURE_UNIT: user_input.get(
                    CONF_TEMPERATURE_UNIT, UnitOfTemperature.FAHRENHEIT
                ),
            }

            try:
                await async_probe_device(TfiacDeviceConfig.from_entry_data(data))
                _LOGGER.info("Successfully contacted TFIAC unit at %s", host)

            except TfiacTimeoutError:
                _LOGGER.warning("Timeout probing %s (%s)", host, ERROR_TIMEOUT)
                errors["base"] = ERROR_TIMEOUT
            except TfiacNetworkError:
                _LOGGER.exception("Connection error (%s)", ERROR_CANNOT_CONNECT)
                errors["base"] = ERROR_CANNOT_CONNECT
            except TfiacParseError:
                _LOGGER.exception("Invalid device response (%s)", ERROR_INVALID_RESPONSE)
                errors["base"] = ERROR_INVALID_RESPONSE
            except TfiacApiClientError:
                _LOGGER.exception("API client error (%s)", ERROR_CANNOT_CONNECT)
                errors["base"] = ERROR_CANNOT_CONNECT
            except Exception:
                _LOGGER.exception(
                    "Unexpected error while probing device (%s)",
                    ERROR_UNKNOWN,
                )
                errors["base"] = ERROR_UNKNOWN

            else:
                await self.async_set_unique_id(f"{host}:{data[CONF_PORT]}")
                self._abort_if_unique_id_configured()

                return self.async_create_entry(
                    title=data[CONF_NAME],
                    data=data,
                )

        return self.async_show_form(
            step_id="user",
            data_schema=DATA_SCHEMA,
            errors=errors,
        )
