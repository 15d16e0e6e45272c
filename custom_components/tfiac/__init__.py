from __future__ import annotations

import logging

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady

from .api import TfiacApiClientError
from .const import DOMAIN
from .coordinator import TfiacDeviceCoordinator
from .models import TfiacDeviceConfig

_LOGGER = logging.getLogger(__name__)

PLATFORMS = [Platform.CLIMATE]


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Setting up TFIAC integration for entry %s", entry.entry_id)

    try:
        config = TfiacDeviceConfig.from_entry_data({**entry.data, **entry.options})
    except (KeyError, ValueError) as err:
        _LOGGER.error("Invalid configuration for entry %s: %s", entry.entry_id, err)
        return False

    coordinator = TfiacDeviceCoordinator(hass, config, config_entry=entry)

    try:
        await coordinator.async_start()
    except TfiacApiClientError as err:
        await coordinator.async_shutdown()
        error_msg = f"Unable to reach {config.host}:{config.port}: {err}"
        raise ConfigEntryNotReady(error_msg) from err

    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = coordinator
    _LOGGER.debug("Stored coordinator for entry %s", entry.entry_id)

    try:
        await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    except Exception as err:
        _LOGGER.error("Failed to setup platforms for entry %s: %s", entry.entry_id, err)
        hass.data[DOMAIN].pop(entry.entry_id, None)
        await coordinator.async_shutdown()
        return False

    _LOGGER.info("Successfully setup TFIAC integration for entry %s", entry.entry_id)
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Unloading TFIAC integration for entry %s", entry.entry_id)

    try:
        unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    except Exception as err:
        _LOGGER.error(
            "Error unloading TFIAC integration for entry %s: %s",
            entry.entry_id,
            err,
        )
        return False

    if unload_ok:
        coordinator: TfiacDeviceCoordinator | None = hass.data.get(DOMAIN, {}).pop(
            entry.entry_id, None
        )
        if coordinator is not None:
            await coordinator.async_shutdown()
            _LOGGER.debug("Shut down coordinator for entry %s", entry.entry_id)
        _LOGGER.info(
            "Successfully unloaded TFIAC integration for entry %s", entry.entry_id
        )
    else:
        _LOGGER.warning("Failed to unload some platforms for entry %s", entry.entry_id)

    return unload_ok
