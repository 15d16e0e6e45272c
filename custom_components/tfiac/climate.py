"""Climate entity for TFIAC air conditioners.

This module exposes the canonical device state as a Home Assistant
climate entity. Every user action clones the canonical state, mutates the
clone through its setters and hands it to the coordinator, which sends
the minimal command.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from homeassistant.components.climate import (
    ClimateEntity,
    ClimateEntityFeature,
    HVACMode,
)
from homeassistant.components.climate.const import (
    ATTR_HVAC_MODE,
    FAN_AUTO,
    FAN_HIGH,
    FAN_LOW,
    FAN_MEDIUM,
    PRESET_BOOST,
    PRESET_ECO,
    PRESET_NONE,
    PRESET_SLEEP,
    SWING_BOTH,
    SWING_HORIZONTAL,
    SWING_OFF,
    SWING_VERTICAL,
)
from homeassistant.const import ATTR_TEMPERATURE, UnitOfTemperature
from homeassistant.core import callback
from homeassistant.helpers.event import async_call_later

from .const import DOMAIN, MAX_TARGET_TEMPERATURE, MIN_TARGET_TEMPERATURE
from .models import (
    FanSpeed,
    OperationMode,
    PowerState,
    SleepModeState,
    SwingMode,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import TfiacDeviceCoordinator
    from .device_state import DeviceState

_LOGGER = logging.getLogger(__name__)

FAN_SILENT = "silent"
FAN_MEDIUM_LOW = "medium_low"
FAN_MEDIUM_HIGH = "medium_high"
FAN_TURBO = "turbo"

HVAC_MODE_MAP: dict[OperationMode, HVACMode] = {
    OperationMode.COOL: HVACMode.COOL,
    OperationMode.HEAT: HVACMode.HEAT,
    OperationMode.AUTO: HVACMode.AUTO,
    OperationMode.DRY: HVACMode.DRY,
    OperationMode.FAN_ONLY: HVACMode.FAN_ONLY,
    OperationMode.SELF_FEEL: HVACMode.AUTO,
}
OPERATION_MODE_MAP: dict[HVACMode, OperationMode] = {
    HVACMode.COOL: OperationMode.COOL,
    HVACMode.HEAT: OperationMode.HEAT,
    HVACMode.AUTO: OperationMode.AUTO,
    HVACMode.DRY: OperationMode.DRY,
    HVACMode.FAN_ONLY: OperationMode.FAN_ONLY,
}
FAN_MODE_MAP: dict[FanSpeed, str] = {
    FanSpeed.AUTO: FAN_AUTO,
    FanSpeed.SILENT: FAN_SILENT,
    FanSpeed.LOW: FAN_LOW,
    FanSpeed.MEDIUM_LOW: FAN_MEDIUM_LOW,
    FanSpeed.MEDIUM: FAN_MEDIUM,
    FanSpeed.MEDIUM_HIGH: FAN_MEDIUM_HIGH,
    FanSpeed.HIGH: FAN_HIGH,
    FanSpeed.TURBO: FAN_TURBO,
}
FAN_SPEED_MAP: dict[str, FanSpeed] = {value: key for key, value in FAN_MODE_MAP.items()}
SWING_MODE_MAP: dict[SwingMode, str] = {
    SwingMode.OFF: SWING_OFF,
    SwingMode.HORIZONTAL: SWING_HORIZONTAL,
    SwingMode.VERTICAL: SWING_VERTICAL,
    SwingMode.BOTH: SWING_BOTH,
}
SWING_STATE_MAP: dict[str, SwingMode] = {
    value: key for key, value in SWING_MODE_MAP.items()
}


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up the climate entity for a TFIAC unit."""
    coordinator: TfiacDeviceCoordinator = hass.data[DOMAIN][entry.entry_id]
    async_add_entities([TfiacClimateEntity(coordinator, entry.unique_id or entry.entry_id)])


class TfiacClimateEntity(ClimateEntity):
    """Climate entity for a TFIAC air conditioner.

    State is read straight from the coordinator's canonical device state.
    After a command, updates pushed by polling are held back from the UI
    for a short while and written once the hold expires.
    """

    _attr_temperature_unit = UnitOfTemperature.CELSIUS
    _attr_target_temperature_step = 1.0
    _attr_has_entity_name = True
    _attr_should_poll = False
    _attr_min_temp = float(MIN_TARGET_TEMPERATURE)
    _attr_max_temp = float(MAX_TARGET_TEMPERATURE)

    def __init__(self, coordinator: TfiacDeviceCoordinator, unique_id: str) -> None:
        """Initialize the climate entity.

        Args:
            coordinator: Coordinator owning the device state.
            unique_id: Unique id of the entity.

        """
        self._coordinator = coordinator
        self._attr_unique_id = unique_id
        self._attr_name = coordinator.config.name
        self._listener_unsub: Callable[[], None] | None = None
        self._deferred_write_unsub: Callable[[], None] | None = None
        self._last_command_time = 0.0
        self._configure_features()

    def _configure_features(self) -> None:
        config = self._coordinator.config
        self._attr_hvac_modes = [HVACMode.OFF, *OPERATION_MODE_MAP]
        self._attr_fan_modes = [
            mode
            for speed, mode in FAN_MODE_MAP.items()
            if speed != FanSpeed.TURBO or config.enable_turbo
        ]
        features = (
            ClimateEntityFeature.TARGET_TEMPERATURE
            | ClimateEntityFeature.FAN_MODE
            | ClimateEntityFeature.TURN_OFF
            | ClimateEntityFeature.TURN_ON
        )

        if config.enable_swing:
            self._attr_swing_modes = list(SWING_MODE_MAP.values())
            features |= ClimateEntityFeature.SWING_MODE

        presets = [PRESET_NONE]
        if config.enable_sleep:
            presets.append(PRESET_SLEEP)
        if config.enable_eco:
            presets.append(PRESET_ECO)
        if config.enable_turbo:
            presets.append(PRESET_BOOST)
        if len(presets) > 1:
            self._attr_preset_modes = presets
            features |= ClimateEntityFeature.PRESET_MODE

        self._attr_supported_features = features

    @property
    def _device_state(self) -> DeviceState:
        return self._coordinator.get_device_state()

    @property
    def available(self) -> bool:
        """Return True if the device answered recently."""
        return self._coordinator.available

    @property
    def hvac_mode(self) -> HVACMode:
        """Return the current HVAC mode."""
        if self._device_state.power == PowerState.OFF:
            return HVACMode.OFF
        return HVAC_MODE_MAP[self._device_state.operation_mode]

    @property
    def current_temperature(self) -> float | None:
        """Return the indoor temperature."""
        return self._device_state.current_temperature

    @property
    def target_temperature(self) -> float:
        """Return the target temperature."""
        return self._device_state.target_temperature

    @property
    def fan_mode(self) -> str:
        """Return the current fan mode."""
        return FAN_MODE_MAP[self._device_state.fan_speed]

    @property
    def swing_mode(self) -> str:
        """Return the current swing mode."""
        return SWING_MODE_MAP[self._device_state.swing_mode]

    @property
    def preset_mode(self) -> str:
        """Return the active preset, turbo first."""
        state = self._device_state
        if state.turbo_mode == PowerState.ON:
            return PRESET_BOOST
        if state.sleep_mode == SleepModeState.ON:
            return PRESET_SLEEP
        if state.eco_mode == PowerState.ON:
            return PRESET_ECO
        return PRESET_NONE

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return options that have no climate attribute of their own."""
        state = self._device_state
        attributes: dict[str, Any] = {
            "outdoor_temperature": state.outdoor_temperature,
        }
        if self._coordinator.config.enable_display:
            attributes["display"] = str(state.display_mode)
        if self._coordinator.config.enable_beep:
            attributes["beep"] = str(state.beep_mode)
        return attributes

    def _ui_hold_remaining(self) -> float:
        elapsed = time.monotonic() - self._last_command_time
        return max(0.0, self._coordinator.config.ui_hold_seconds - elapsed)

    async def async_added_to_hass(self) -> None:
        """Subscribe to canonical state changes."""
        await super().async_added_to_hass()
        self._listener_unsub = self._coordinator.async_add_listener(
            self._handle_coordinator_update
        )

    async def async_will_remove_from_hass(self) -> None:
        """Unsubscribe from state changes and pending writes."""
        await super().async_will_remove_from_hass()

        if self._listener_unsub is not None:
            self._listener_unsub()
            self._listener_unsub = None
        if self._deferred_write_unsub is not None:
            self._deferred_write_unsub()
            self._deferred_write_unsub = None

    @callback
    def _handle_coordinator_update(self) -> None:
        """Write state for a canonical change, unless the UI is on hold."""
        remaining = self._ui_hold_remaining()
        if remaining > 0:
            _LOGGER.debug(
                "%s: holding UI update for %.1fs after command",
                self.name,
                remaining,
            )
            if self._deferred_write_unsub is None:
                self._deferred_write_unsub = async_call_later(
                    self.hass, remaining, self._handle_deferred_write
                )
            return

        _LOGGER.debug("%s: state updated", self.name)
        self.async_write_ha_state()

    @callback
    def _handle_deferred_write(self, _now: datetime) -> None:
        self._deferred_write_unsub = None
        self.async_write_ha_state()

    async def _async_apply(self, mutate: Callable[[DeviceState], None]) -> None:
        """Apply a change to a clone of the canonical state and send it."""
        desired = self._device_state.clone()
        mutate(desired)

        self._last_command_time = time.monotonic()
        result = await self._coordinator.async_apply_state_to_device(desired)
        if result is not None and not result.success:
            _LOGGER.warning(
                "Command to %s failed: %s", self.name, result.error
            )
            self._last_command_time = 0.0

        self.async_write_ha_state()

    async def async_set_hvac_mode(self, hvac_mode: HVACMode) -> None:
        """Set the HVAC mode.

        Args:
            hvac_mode: The HVAC mode to set.

        """
        if hvac_mode == HVACMode.OFF:
            await self._async_apply(lambda desired: desired.set_power(PowerState.OFF))
            return

        operation_mode = OPERATION_MODE_MAP.get(hvac_mode)
        if operation_mode is None:
            _LOGGER.warning("Unsupported HVAC mode: %s", hvac_mode)
            return

        def mutate(desired: DeviceState) -> None:
            desired.set_power(PowerState.ON)
            desired.set_operation_mode(operation_mode)

        await self._async_apply(mutate)

    async def async_set_temperature(self, **kwargs: Any) -> None:  # noqa: ANN401
        """Set the target temperature.

        Args:
            **kwargs: Keyword arguments containing temperature data.

        """
        temperature = kwargs.get(ATTR_TEMPERATURE)
        hvac_mode = kwargs.get(ATTR_HVAC_MODE)
        if temperature is None:
            return

        def mutate(desired: DeviceState) -> None:
            if hvac_mode == HVACMode.OFF:
                desired.set_power(PowerState.OFF)
            elif hvac_mode in OPERATION_MODE_MAP:
                desired.set_power(PowerState.ON)
                desired.set_operation_mode(OPERATION_MODE_MAP[hvac_mode])
            desired.set_target_temperature(temperature)

        await self._async_apply(mutate)

    async def async_set_fan_mode(self, fan_mode: str) -> None:
        """Set the fan mode.

        Args:
            fan_mode: The fan mode to set.

        """
        speed = FAN_SPEED_MAP.get(fan_mode)
        if speed is None:
            _LOGGER.warning("Unsupported fan mode: %s", fan_mode)
            return

        await self._async_apply(lambda desired: desired.set_fan_speed(speed))

    async def async_set_swing_mode(self, swing_mode: str) -> None:
        """Set the swing mode.

        Args:
            swing_mode: The swing mode to set.

        """
        swing = SWING_STATE_MAP.get(swing_mode)
        if swing is None:
            _LOGGER.warning("Unsupported swing mode: %s", swing_mode)
            return

        await self._async_apply(lambda desired: desired.set_swing_mode(swing))

    async def async_set_preset_mode(self, preset_mode: str) -> None:
        """Set the preset mode.

        Args:
            preset_mode: One of none, sleep, eco or boost.

        """
        if preset_mode not in (PRESET_NONE, PRESET_SLEEP, PRESET_ECO, PRESET_BOOST):
            _LOGGER.warning("Unsupported preset mode: %s", preset_mode)
            return

        def mutate(desired: DeviceState) -> None:
            if desired.turbo_mode == PowerState.ON and preset_mode != PRESET_BOOST:
                # Firmware can restore its cached sleep profile when turbo ends
                desired.force_sleep_clear = True
                desired.set_turbo_mode(PowerState.OFF)
            if preset_mode != PRESET_SLEEP:
                desired.set_sleep_mode(SleepModeState.OFF)
            if preset_mode != PRESET_ECO:
                desired.set_eco_mode(PowerState.OFF)

            if preset_mode == PRESET_SLEEP:
                desired.set_sleep_mode(SleepModeState.ON)
            elif preset_mode == PRESET_ECO:
                desired.set_eco_mode(PowerState.ON)
            elif preset_mode == PRESET_BOOST:
                desired.set_turbo_mode(PowerState.ON)

        await self._async_apply(mutate)

    async def async_turn_on(self) -> None:
        """Turn the device on in its last operation mode."""
        await self._async_apply(lambda desired: desired.set_power(PowerState.ON))

    async def async_turn_off(self) -> None:
        """Turn the device off."""
        await self._async_apply(lambda desired: desired.set_power(PowerState.OFF))
