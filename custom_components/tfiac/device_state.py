"""Canonical device state for TFIAC air conditioners.

A single DeviceState per device is the source of truth for the unit's
logical configuration. It keeps interdependent fields consistent
(harmonization), distrusts device reports that contradict a local command
for a short protection window, and notifies subscribers once per
external call that changed anything.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from .api import is_sleep_active
from .const import (
    DEFAULT_PROTECTION_WINDOW,
    DEFAULT_TARGET_TEMPERATURE,
    MAX_TARGET_TEMPERATURE,
    MIN_TARGET_TEMPERATURE,
)
from .models import (
    FanSpeed,
    OperationMode,
    PowerState,
    SleepModeState,
    StatusRecord,
    SwingMode,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from enum import StrEnum

_LOGGER = logging.getLogger(__name__)

_E = TypeVar("_E", bound="StrEnum")

COMMAND_FIELDS = (
    "power",
    "operation_mode",
    "target_temperature",
    "fan_speed",
    "swing_mode",
    "turbo_mode",
    "sleep_mode",
    "eco_mode",
    "display_mode",
    "beep_mode",
)
_SNAPSHOT_FIELDS = (*COMMAND_FIELDS, "current_temperature", "outdoor_temperature")


def clamp_target_temperature(value: float) -> int:
    """Round a temperature to whole degrees and clamp it to the device range."""
    rounded = math.floor(value + 0.5)
    return max(MIN_TARGET_TEMPERATURE, min(MAX_TARGET_TEMPERATURE, rounded))


class DeviceState:
    """In-memory authoritative state of one air conditioner.

    Two ingestion paths exist. User-origin setters apply the full
    harmonization rule set. Device-origin merges (ingest_wire_status)
    trust the device per field, enforce only the structural invariants,
    and ignore flips reported shortly after a matching local command.

    Attributes:
        force_sleep_clear: One-shot flag asking the coordinator to send
            sleep explicitly even when it did not change.

    """

    def __init__(
        self,
        *,
        protection_window: float = DEFAULT_PROTECTION_WINDOW,
        auto_fan_stand_in: FanSpeed | None = FanSpeed.MEDIUM,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the state with device defaults.

        Args:
            protection_window: Seconds during which contradicting device
                reports are ignored after a local command.
            auto_fan_stand_in: Fan speed substituted for a user-requested
                Auto while turbo and sleep are off, or None to keep Auto.
            clock: Monotonic time source, mainly for tests.

        """
        self._protection_window = protection_window
        self._auto_fan_stand_in = auto_fan_stand_in
        self._clock = clock or time.monotonic

        self._power = PowerState.OFF
        self._operation_mode = OperationMode.AUTO
        self._target_temperature = DEFAULT_TARGET_TEMPERATURE
        self._current_temperature: int | None = None
        self._outdoor_temperature: int | None = None
        self._fan_speed = FanSpeed.AUTO
        self._swing_mode = SwingMode.OFF
        self._turbo_mode = PowerState.OFF
        self._sleep_mode = SleepModeState.OFF
        self._eco_mode = PowerState.OFF
        self._display_mode = PowerState.ON
        self._beep_mode = PowerState.ON
        self._last_updated = datetime.now(UTC)

        self._last_turbo_change_at: float | None = None
        self._last_sleep_relevant_change_at: float | None = None
        self._last_fan_speed_cmd_at: float | None = None
        self._last_power_off_cmd_at: float | None = None

        self.force_sleep_clear = False
        self._listeners: list[Callable[[dict[str, Any]], None]] = []

    @property
    def power(self) -> PowerState:
        """Return the power state."""
        return self._power

    @property
    def operation_mode(self) -> OperationMode:
        """Return the operation mode."""
        return self._operation_mode

    @property
    def target_temperature(self) -> int:
        """Return the target temperature in Celsius."""
        return self._target_temperature

    @property
    def current_temperature(self) -> int | None:
        """Return the indoor temperature in Celsius."""
        return self._current_temperature

    @property
    def outdoor_temperature(self) -> int | None:
        """Return the outdoor temperature in Celsius, if reported."""
        return self._outdoor_temperature

    @property
    def fan_speed(self) -> FanSpeed:
        """Return the fan speed."""
        return self._fan_speed

    @property
    def swing_mode(self) -> SwingMode:
        """Return the swing mode."""
        return self._swing_mode

    @property
    def turbo_mode(self) -> PowerState:
        """Return the turbo state."""
        return self._turbo_mode

    @property
    def sleep_mode(self) -> SleepModeState:
        """Return the sleep state."""
        return self._sleep_mode

    @property
    def eco_mode(self) -> PowerState:
        """Return the eco state."""
        return self._eco_mode

    @property
    def display_mode(self) -> PowerState:
        """Return the display state."""
        return self._display_mode

    @property
    def beep_mode(self) -> PowerState:
        """Return the beep state."""
        return self._beep_mode

    @property
    def last_updated(self) -> datetime:
        """Return when any field last changed."""
        return self._last_updated

    @property
    def last_turbo_change_at(self) -> float | None:
        """Return the monotonic time of the last local turbo change."""
        return self._last_turbo_change_at

    @property
    def last_sleep_relevant_change_at(self) -> float | None:
        """Return the monotonic time of the last local change affecting sleep."""
        return self._last_sleep_relevant_change_at

    @property
    def last_fan_speed_cmd_at(self) -> float | None:
        """Return the monotonic time of the last local fan speed change."""
        return self._last_fan_speed_cmd_at

    @property
    def last_power_off_cmd_at(self) -> float | None:
        """Return the monotonic time of the last local power-off."""
        return self._last_power_off_cmd_at

    def add_listener(
        self, callback: Callable[[dict[str, Any]], None]
    ) -> Callable[[], None]:
        """Register a callback for state changes.

        Args:
            callback: Function called with a plain snapshot after a change.

        Returns:
            A function to unregister the callback.

        """
        self._listeners.append(callback)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    def _notify(self) -> None:
        snapshot = self.to_plain_dict()
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception:
                _LOGGER.exception("Error in state change callback")

    def _snapshot(self) -> tuple[Any, ...]:
        return tuple(getattr(self, f"_{field}") for field in _SNAPSHOT_FIELDS)

    def _within_window(self, timestamp: float | None) -> bool:
        if timestamp is None:
            return False
        return self._clock() - timestamp < self._protection_window

    def _finish(self, before: tuple[Any, ...], context: str) -> bool:
        after = self._snapshot()
        if after == before:
            return False

        changes = [
            f"{field}: {old} -> {new}"
            for field, old, new in zip(_SNAPSHOT_FIELDS, before, after, strict=True)
            if old != new
        ]
        _LOGGER.debug("[%s] Changes: %s", context, ", ".join(changes))
        self._last_updated = datetime.now(UTC)
        self._notify()
        return True

    @staticmethod
    def _coerce(enum_cls: type[_E], value: Any, field: str) -> _E | None:  # noqa: ANN401
        try:
            return enum_cls(value)
        except ValueError:
            _LOGGER.warning("Ignoring invalid %s value: %r", field, value)
            return None

    @staticmethod
    def _coerce_sleep(value: Any) -> SleepModeState | None:  # noqa: ANN401
        text = str(value)
        if text in (SleepModeState.OFF, PowerState.OFF):
            return SleepModeState.OFF
        if is_sleep_active(text):
            return SleepModeState.ON
        _LOGGER.warning("Ignoring invalid sleep_mode value: %r", value)
        return None

    def _reset_for_power_off(self) -> None:
        self._operation_mode = OperationMode.AUTO
        self._fan_speed = FanSpeed.AUTO
        self._turbo_mode = PowerState.OFF
        self._sleep_mode = SleepModeState.OFF
        self._eco_mode = PowerState.OFF
        self._swing_mode = SwingMode.OFF

    def _enforce_turbo_fan(self) -> None:
        if self._turbo_mode == PowerState.ON:
            self._fan_speed = FanSpeed.TURBO
        elif self._fan_speed == FanSpeed.TURBO:
            self._fan_speed = FanSpeed.AUTO

    def _harmonize_user(self, changed: set[str], previous_fan: FanSpeed) -> None:
        if self._power == PowerState.OFF:
            self._reset_for_power_off()
            return

        turbo_requested = "turbo_mode" in changed or (
            "fan_speed" in changed and self._fan_speed == FanSpeed.TURBO
        )

        if self._operation_mode == OperationMode.DRY:
            if "operation_mode" in changed:
                self._fan_speed = FanSpeed.LOW
                self._turbo_mode = PowerState.OFF
            elif turbo_requested:
                _LOGGER.debug("Turbo is not available in dry mode, ignoring request")
                self._turbo_mode = PowerState.OFF
                if self._fan_speed == FanSpeed.TURBO:
                    self._fan_speed = FanSpeed.LOW
            turbo_requested = False

        if "fan_speed" in changed and "turbo_mode" not in changed:
            if self._fan_speed == FanSpeed.TURBO:
                self._turbo_mode = PowerState.ON
            elif self._turbo_mode == PowerState.ON:
                self._turbo_mode = PowerState.OFF

        if self._eco_mode == PowerState.ON and self._turbo_mode == PowerState.ON:
            if turbo_requested and "eco_mode" not in changed:
                self._eco_mode = PowerState.OFF
            else:
                self._turbo_mode = PowerState.OFF

        if self._sleep_mode == SleepModeState.ON and self._turbo_mode == PowerState.ON:
            if turbo_requested and "sleep_mode" not in changed:
                self._sleep_mode = SleepModeState.OFF
            else:
                self._turbo_mode = PowerState.OFF

        self._enforce_turbo_fan()

        if self._sleep_mode == SleepModeState.ON and "sleep_mode" in changed:
            self._fan_speed = FanSpeed.LOW

        if (
            self._auto_fan_stand_in is not None
            and self._fan_speed == FanSpeed.AUTO
            and previous_fan != FanSpeed.AUTO
            and self._turbo_mode == PowerState.OFF
            and self._sleep_mode == SleepModeState.OFF
        ):
            # Some firmware silently rejects Auto unless turbo or sleep is on
            _LOGGER.debug(
                "Turbo and sleep are off, sending %s instead of Auto fan speed",
                self._auto_fan_stand_in,
            )
            self._fan_speed = self._auto_fan_stand_in

    def _stamp_provenance(self, before: tuple[Any, ...]) -> None:
        previous = dict(zip(_SNAPSHOT_FIELDS, before, strict=True))
        now = self._clock()

        if self._turbo_mode != previous["turbo_mode"]:
            self._last_turbo_change_at = now
            self._last_sleep_relevant_change_at = now
        if self._sleep_mode != previous["sleep_mode"]:
            self._last_sleep_relevant_change_at = now
        if self._fan_speed != previous["fan_speed"]:
            self._last_fan_speed_cmd_at = now
        if self._power != previous["power"]:
            if self._power == PowerState.OFF:
                self._last_power_off_cmd_at = now
            else:
                # Firmware may restore a cached sleep profile on power-on
                self._last_sleep_relevant_change_at = now

    def _apply_user_changes(self, requested: dict[str, Any]) -> None:
        changed = {
            field
            for field, value in requested.items()
            if getattr(self, f"_{field}") != value
        }
        if not changed:
            return

        before = self._snapshot()
        previous_fan = self._fan_speed
        for field in changed:
            setattr(self, f"_{field}", requested[field])
        self._harmonize_user(changed, previous_fan)
        self._stamp_provenance(before)
        self._finish(before, "User")

    def set_power(self, value: PowerState | str) -> None:
        """Switch the unit on or off; off resets dependent options."""
        power = self._coerce(PowerState, value, "power")
        if power is not None:
            self._apply_user_changes({"power": power})

    def set_operation_mode(self, value: OperationMode | str) -> None:
        """Set the operation mode."""
        mode = self._coerce(OperationMode, value, "operation_mode")
        if mode is not None:
            self._apply_user_changes({"operation_mode": mode})

    def set_target_temperature(self, value: float) -> None:
        """Set the target temperature in Celsius, clamped to 16-30."""
        if isinstance(value, bool) or not isinstance(value, int | float):
            _LOGGER.warning("Ignoring invalid target_temperature value: %r", value)
            return
        if math.isnan(value):
            _LOGGER.warning("Ignoring NaN target_temperature")
            return
        self._apply_user_changes({"target_temperature": clamp_target_temperature(value)})

    def set_fan_speed(self, value: FanSpeed | str) -> None:
        """Set the fan speed; Turbo also switches turbo mode on."""
        speed = self._coerce(FanSpeed, value, "fan_speed")
        if speed is not None:
            self._apply_user_changes({"fan_speed": speed})

    def set_swing_mode(self, value: SwingMode | str) -> None:
        """Set the swing mode."""
        swing = self._coerce(SwingMode, value, "swing_mode")
        if swing is not None:
            self._apply_user_changes({"swing_mode": swing})

    def set_turbo_mode(self, value: PowerState | str) -> None:
        """Switch turbo on or off; on forces Turbo fan and clears sleep."""
        turbo = self._coerce(PowerState, value, "turbo_mode")
        if turbo is not None:
            self._apply_user_changes({"turbo_mode": turbo})

    def set_sleep_mode(self, value: SleepModeState | str) -> None:
        """Switch sleep on or off; accepts on/off tokens and profile strings."""
        sleep = self._coerce_sleep(value)
        if sleep is not None:
            self._apply_user_changes({"sleep_mode": sleep})

    def set_eco_mode(self, value: PowerState | str) -> None:
        """Switch eco on or off."""
        eco = self._coerce(PowerState, value, "eco_mode")
        if eco is not None:
            self._apply_user_changes({"eco_mode": eco})

    def set_display_mode(self, value: PowerState | str) -> None:
        """Switch the front display on or off."""
        display = self._coerce(PowerState, value, "display_mode")
        if display is not None:
            self._apply_user_changes({"display_mode": display})

    def set_beep_mode(self, value: PowerState | str) -> None:
        """Switch the confirmation beep on or off."""
        beep = self._coerce(PowerState, value, "beep_mode")
        if beep is not None:
            self._apply_user_changes({"beep_mode": beep})

    def _accept_device_value(
        self, field: str, value: Any, timestamp: float | None  # noqa: ANN401
    ) -> bool:
        if value is None or value == getattr(self, f"_{field}"):
            return False
        if self._within_window(timestamp):
            _LOGGER.debug(
                "Ignoring transient %s=%s reported within %.1fs of local command",
                field,
                value,
                self._protection_window,
            )
            return False
        setattr(self, f"_{field}", value)
        return True

    def ingest_wire_status(self, status: StatusRecord | None) -> bool:
        """Merge a device report into the canonical state.

        Args:
            status: Parsed device status, or None for an empty poll.

        Returns:
            True if any field changed.

        """
        if status is None:
            return False

        before = self._snapshot()

        if not (
            status.power == PowerState.ON
            and self._power == PowerState.OFF
            and self._within_window(self._last_power_off_cmd_at)
        ):
            self._accept_device_value("power", status.power, None)
        else:
            _LOGGER.debug("Ignoring transient power-on reported after local power-off")

        self._accept_device_value("operation_mode", status.operation_mode, None)
        self._accept_device_value(
            "target_temperature",
            clamp_target_temperature(status.target_temperature),
            None,
        )
        self._accept_device_value("swing_mode", status.swing_mode, None)
        self._accept_device_value("eco_mode", status.eco_mode, None)
        self._accept_device_value("display_mode", status.display_mode, None)
        self._accept_device_value("beep_mode", status.beep_mode, None)
        self._current_temperature = status.current_temperature
        if status.outdoor_temperature is not None:
            self._outdoor_temperature = status.outdoor_temperature

        turbo_reported = self._accept_device_value(
            "turbo_mode", status.turbo_mode, self._last_turbo_change_at
        )
        sleep = None
        if status.sleep_mode is not None:
            sleep = (
                SleepModeState.ON
                if is_sleep_active(status.sleep_mode)
                else SleepModeState.OFF
            )
        sleep_reported = self._accept_device_value(
            "sleep_mode", sleep, self._last_sleep_relevant_change_at
        )
        self._accept_device_value(
            "fan_speed", status.fan_speed, self._last_fan_speed_cmd_at
        )

        self._harmonize_device(
            turbo_reported=turbo_reported,
            sleep_reported=sleep_reported,
            turbo_known=status.turbo_mode is not None,
        )
        return self._finish(before, "Device")

    def _harmonize_device(
        self, *, turbo_reported: bool, sleep_reported: bool, turbo_known: bool
    ) -> None:
        if self._power == PowerState.OFF:
            self._reset_for_power_off()
            return

        if (
            self._fan_speed == FanSpeed.TURBO
            and self._turbo_mode == PowerState.OFF
            and not turbo_known
        ):
            self._turbo_mode = PowerState.ON
            turbo_reported = True

        if self._sleep_mode == SleepModeState.ON and self._turbo_mode == PowerState.ON:
            if turbo_reported and not sleep_reported:
                self._sleep_mode = SleepModeState.OFF
            else:
                self._turbo_mode = PowerState.OFF

        # Auto reported while turbo is on is a firmware quirk; keep Turbo
        self._enforce_turbo_fan()

    def ingest_canonical_snapshot(
        self, other: DeviceState, fields: Iterable[str] | None = None
    ) -> bool:
        """Adopt command fields of an already harmonized state.

        Used for optimistic updates once a command has been acknowledged.
        Only the fields that were actually sent should be adopted, so that
        concurrent commands built from the same baseline do not revert each
        other. Provenance timestamps are stamped for every adopted change.

        Args:
            other: State whose command fields are copied.
            fields: Names of the fields to copy, or None for all of them.

        Returns:
            True if any field changed.

        """
        before = self._snapshot()
        if fields is None:
            adopted = COMMAND_FIELDS
        else:
            wanted = set(fields)
            adopted = tuple(field for field in COMMAND_FIELDS if field in wanted)
        for field in adopted:
            setattr(self, f"_{field}", getattr(other, field))

        if fields is None:
            if self._power == PowerState.OFF:
                self._reset_for_power_off()
        else:
            self._harmonize_device(
                turbo_reported="turbo_mode" in adopted
                and other.turbo_mode == PowerState.ON,
                sleep_reported="sleep_mode" in adopted
                and other.sleep_mode == SleepModeState.ON,
                turbo_known=True,
            )
        self._stamp_provenance(before)
        return self._finish(before, "Snapshot")

    def diff(self, other: DeviceState) -> dict[str, Any]:
        """Return the command fields where other differs, with other's values.

        Args:
            other: The desired state.

        Returns:
            Mapping of canonical field name to the desired value.

        """
        return {
            field: getattr(other, field)
            for field in COMMAND_FIELDS
            if getattr(self, field) != getattr(other, field)
        }

    def clone(self) -> DeviceState:
        """Return an independent copy including provenance timestamps."""
        cloned = DeviceState(
            protection_window=self._protection_window,
            auto_fan_stand_in=self._auto_fan_stand_in,
            clock=self._clock,
        )
        for field in _SNAPSHOT_FIELDS:
            setattr(cloned, f"_{field}", getattr(self, f"_{field}"))
        cloned._last_updated = self._last_updated  # noqa: SLF001
        cloned._last_turbo_change_at = self._last_turbo_change_at  # noqa: SLF001
        cloned._last_sleep_relevant_change_at = (  # noqa: SLF001
            self._last_sleep_relevant_change_at
        )
        cloned._last_fan_speed_cmd_at = self._last_fan_speed_cmd_at  # noqa: SLF001
        cloned._last_power_off_cmd_at = self._last_power_off_cmd_at  # noqa: SLF001
        return cloned

    def to_wire_status(self) -> StatusRecord:
        """Project the state onto a StatusRecord (Celsius)."""
        return StatusRecord(
            power=self._power,
            operation_mode=self._operation_mode,
            target_temperature=self._target_temperature,
            current_temperature=self._current_temperature,
            fan_speed=self._fan_speed,
            swing_mode=self._swing_mode,
            turbo_mode=self._turbo_mode,
            sleep_mode=str(self._sleep_mode),
            eco_mode=self._eco_mode,
            display_mode=self._display_mode,
            beep_mode=self._beep_mode,
            outdoor_temperature=self._outdoor_temperature,
        )

    def to_plain_dict(self) -> dict[str, Any]:
        """Return a plain dictionary snapshot of every field."""
        snapshot = {
            field: getattr(self, f"_{field}") for field in _SNAPSHOT_FIELDS
        }
        snapshot["last_updated"] = self._last_updated
        return snapshot

    def __str__(self) -> str:
        """Return a debug representation."""
        fields = ", ".join(
            f"{field}={value}" for field, value in self.to_plain_dict().items()
        )
        return f"DeviceState({fields})"
