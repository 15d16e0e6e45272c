"""Data models for TFIAC air conditioner integration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from homeassistant.const import (
    CONF_HOST,
    CONF_NAME,
    CONF_PORT,
    UnitOfTemperature,
)

from .const import (
    AUTO_FAN_KEEP,
    CONF_AUTO_FAN_STAND_IN,
    CONF_COMMAND_MAX_RETRIES,
    CONF_COMMAND_RETRY_DELAY,
    CONF_DEBOUNCE_DELAY,
    CONF_DEGRADED_UPDATE_INTERVAL,
    CONF_ENABLE_BEEP,
    CONF_ENABLE_DISPLAY,
    CONF_ENABLE_ECO,
    CONF_ENABLE_SLEEP,
    CONF_ENABLE_SWING,
    CONF_ENABLE_TURBO,
    CONF_MAX_CONSECUTIVE_FAILED_POLLS,
    CONF_PROTECTION_WINDOW,
    CONF_QUICK_REFRESH_DELAY,
    CONF_RETRIES,
    CONF_RETRY_DELAY,
    CONF_TEMPERATURE_UNIT,
    CONF_TIMEOUT,
    CONF_UI_HOLD_SECONDS,
    CONF_UPDATE_INTERVAL,
    DEFAULT_COMMAND_MAX_RETRIES,
    DEFAULT_COMMAND_RETRY_DELAY,
    DEFAULT_DEBOUNCE_DELAY,
    DEFAULT_DEGRADED_UPDATE_INTERVAL,
    DEFAULT_MAX_CONSECUTIVE_FAILED_POLLS,
    DEFAULT_NAME,
    DEFAULT_PORT,
    DEFAULT_PROTECTION_WINDOW,
    DEFAULT_QUICK_REFRESH_DELAY,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    DEFAULT_UI_HOLD_SECONDS,
    DEFAULT_UPDATE_INTERVAL,
    SLEEP_PROFILE_ON,
)

if TYPE_CHECKING:
    from collections.abc import Mapping


class PowerState(StrEnum):
    """Power state of the unit or of an on/off option."""

    OFF = "off"
    ON = "on"


class OperationMode(StrEnum):
    """Main operation modes, valued by their BaseMode wire token."""

    COOL = "cool"
    HEAT = "heat"
    AUTO = "auto"
    DRY = "dry"
    FAN_ONLY = "fan"
    SELF_FEEL = "selfFeel"


class FanSpeed(StrEnum):
    """Fan speeds, valued by their WindSpeed wire token."""

    AUTO = "Auto"
    SILENT = "Silent"
    LOW = "Low"
    MEDIUM_LOW = "MediumLow"
    MEDIUM = "Middle"
    MEDIUM_HIGH = "MediumHigh"
    HIGH = "High"
    TURBO = "Turbo"


class SwingMode(StrEnum):
    """Combined louver swing state."""

    OFF = "Off"
    HORIZONTAL = "Horizontal"
    VERTICAL = "Vertical"
    BOTH = "Both"


class SleepModeState(StrEnum):
    """Sleep mode state; the device expects a profile string for On."""

    OFF = "off"
    ON = SLEEP_PROFILE_ON


@dataclass(slots=True)
class StatusRecord:
    """Typed projection of a statusUpdateMsg, temperatures in Celsius."""

    power: PowerState
    operation_mode: OperationMode
    target_temperature: int
    current_temperature: int | None
    fan_speed: FanSpeed
    swing_mode: SwingMode | None = None
    turbo_mode: PowerState | None = None
    sleep_mode: str | None = None  # Raw token or "sleepModeN:..." profile
    eco_mode: PowerState | None = None
    display_mode: PowerState | None = None
    beep_mode: PowerState | None = None
    outdoor_temperature: int | None = None


@dataclass(slots=True)
class CommandEnvelope:
    """A single datagram exchange, discarded once settled."""

    sequence: int
    payload: str
    timeout: float
    retries_left: int


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Terminal outcome of a queued command."""

    command_id: int
    success: bool
    attempts: int
    error: Exception | None = None


@dataclass(slots=True)
class CacheEntry:
    """Most recent poll outcome kept by the coordinator."""

    last_status: StatusRecord | None
    fetched_at: float
    ttl: float
    consecutive_failed_polls: int = 0


def _parse_auto_fan_stand_in(value: Any) -> FanSpeed | None:  # noqa: ANN401
    if value is None or value == AUTO_FAN_KEEP:
        return None
    try:
        return FanSpeed(value)
    except ValueError:
        return FanSpeed.MEDIUM


@dataclass(frozen=True)
class TfiacDeviceConfig:
    """Immutable per-device settings handed to the core at construction.

    Attributes:
        host: Device IP address or hostname.
        port: Device UDP port.
        temperature_unit: Unit the device uses on the wire.
        auto_fan_stand_in: Fan speed sent instead of a user-requested Auto
            while turbo and sleep are off, or None to send Auto unchanged.

    """

    host: str
    port: int = DEFAULT_PORT
    name: str = DEFAULT_NAME
    temperature_unit: UnitOfTemperature = UnitOfTemperature.FAHRENHEIT
    update_interval: float = DEFAULT_UPDATE_INTERVAL
    degraded_update_interval: float = DEFAULT_DEGRADED_UPDATE_INTERVAL
    max_consecutive_failed_polls: int = DEFAULT_MAX_CONSECUTIVE_FAILED_POLLS
    quick_refresh_delay: float = DEFAULT_QUICK_REFRESH_DELAY
    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    command_max_retries: int = DEFAULT_COMMAND_MAX_RETRIES
    command_retry_delay: float = DEFAULT_COMMAND_RETRY_DELAY
    protection_window: float = DEFAULT_PROTECTION_WINDOW
    ui_hold_seconds: float = DEFAULT_UI_HOLD_SECONDS
    debounce_delay: float = DEFAULT_DEBOUNCE_DELAY
    auto_fan_stand_in: FanSpeed | None = FanSpeed.MEDIUM
    enable_sleep: bool = True
    enable_turbo: bool = True
    enable_eco: bool = True
    enable_display: bool = True
    enable_beep: bool = True
    enable_swing: bool = True

    @property
    def address(self) -> tuple[str, int]:
        """Return the (host, port) pair datagrams are sent to."""
        return (self.host, self.port)

    @property
    def uses_fahrenheit(self) -> bool:
        """Return True if the device speaks Fahrenheit on the wire."""
        return self.temperature_unit == UnitOfTemperature.FAHRENHEIT

    @classmethod
    def from_entry_data(cls, data: Mapping[str, Any]) -> TfiacDeviceConfig:
        """Build a config from config entry data, applying defaults.

        Args:
            data: Merged config entry data and options.

        Returns:
            TfiacDeviceConfig for the entry.

        """
        return cls(
            host=data[CONF_HOST],
            port=int(data.get(CONF_PORT, DEFAULT_PORT)),
            name=data.get(CONF_NAME, DEFAULT_NAME),
            temperature_unit=UnitOfTemperature(
                data.get(CONF_TEMPERATURE_UNIT, UnitOfTemperature.FAHRENHEIT)
            ),
            update_interval=float(
                data.get(CONF_UPDATE_INTERVAL, DEFAULT_UPDATE_INTERVAL)
            ),
            degraded_update_interval=float(
                data.get(
                    CONF_DEGRADED_UPDATE_INTERVAL, DEFAULT_DEGRADED_UPDATE_INTERVAL
                )
            ),
            max_consecutive_failed_polls=int(
                data.get(
                    CONF_MAX_CONSECUTIVE_FAILED_POLLS,
                    DEFAULT_MAX_CONSECUTIVE_FAILED_POLLS,
                )
            ),
            quick_refresh_delay=float(
                data.get(CONF_QUICK_REFRESH_DELAY, DEFAULT_QUICK_REFRESH_DELAY)
            ),
            timeout=float(data.get(CONF_TIMEOUT, DEFAULT_TIMEOUT)),
            retries=int(data.get(CONF_RETRIES, DEFAULT_RETRIES)),
            retry_delay=float(data.get(CONF_RETRY_DELAY, DEFAULT_RETRY_DELAY)),
            command_max_retries=int(
                data.get(CONF_COMMAND_MAX_RETRIES, DEFAULT_COMMAND_MAX_RETRIES)
            ),
            command_retry_delay=float(
                data.get(CONF_COMMAND_RETRY_DELAY, DEFAULT_COMMAND_RETRY_DELAY)
            ),
            protection_window=float(
                data.get(CONF_PROTECTION_WINDOW, DEFAULT_PROTECTION_WINDOW)
            ),
            ui_hold_seconds=float(
                data.get(CONF_UI_HOLD_SECONDS, DEFAULT_UI_HOLD_SECONDS)
            ),
            debounce_delay=float(data.get(CONF_DEBOUNCE_DELAY, DEFAULT_DEBOUNCE_DELAY)),
            auto_fan_stand_in=_parse_auto_fan_stand_in(
                data.get(CONF_AUTO_FAN_STAND_IN, FanSpeed.MEDIUM)
            ),
            enable_sleep=bool(data.get(CONF_ENABLE_SLEEP, True)),
            enable_turbo=bool(data.get(CONF_ENABLE_TURBO, True)),
            enable_eco=bool(data.get(CONF_ENABLE_ECO, True)),
            enable_display=bool(data.get(CONF_ENABLE_DISPLAY, True)),
            enable_beep=bool(data.get(CONF_ENABLE_BEEP, True)),
            enable_swing=bool(data.get(CONF_ENABLE_SWING, True)),
        )
