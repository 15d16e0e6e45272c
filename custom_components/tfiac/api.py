"""API client for TFIAC air conditioners.

This module implements the local UDP/XML protocol spoken by TFIAC based
units: message framing, sequence correlation, status parsing, unit
conversion, and a retrying client that tracks device availability.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, TypeVar
from xml.sax.saxutils import escape

from homeassistant.const import UnitOfTemperature

from .const import (
    ACK_OK,
    MSG_SET,
    MSG_SET_ACK,
    MSG_STATUS_REQUEST,
    MSG_STATUS_UPDATE,
    REQUIRED_STATUS_TAGS,
    SLEEP_PROFILE_PREFIX,
    TAG_BASE_MODE,
    TAG_INDOOR_TEMP,
    TAG_OPT_BEEP,
    TAG_OPT_DISPLAY,
    TAG_OPT_ECO,
    TAG_OPT_ECO_LEGACY,
    TAG_OPT_SLEEP_MODE,
    TAG_OPT_SUPER,
    TAG_OUTDOOR_TEMP,
    TAG_RETURN,
    TAG_SET_TEMP,
    TAG_TURN_ON,
    TAG_WIND_DIRECTION_H,
    TAG_WIND_DIRECTION_V,
    TAG_WIND_SPEED,
)
from .models import (
    CommandEnvelope,
    FanSpeed,
    OperationMode,
    PowerState,
    SleepModeState,
    StatusRecord,
    SwingMode,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from .models import TfiacDeviceConfig

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

_SEQUENCE_PATTERN = re.compile(r'\bseq="(\d+)"')

OPERATION_MODE_ALIASES = {
    **{mode.value.lower(): mode for mode in OperationMode},
    "dehumi": OperationMode.DRY,
    "fan_only": OperationMode.FAN_ONLY,
    "selffeel": OperationMode.SELF_FEEL,
}
FAN_SPEED_ALIASES = {
    **{speed.value.lower(): speed for speed in FanSpeed},
    "medium": FanSpeed.MEDIUM,
}

# Canonical command field -> wire tag, in the order they are serialized
COMMAND_FIELD_TAGS = {
    "power": TAG_TURN_ON,
    "operation_mode": TAG_BASE_MODE,
    "target_temperature": TAG_SET_TEMP,
    "fan_speed": TAG_WIND_SPEED,
    "swing_mode": (TAG_WIND_DIRECTION_H, TAG_WIND_DIRECTION_V),
    "turbo_mode": TAG_OPT_SUPER,
    "sleep_mode": TAG_OPT_SLEEP_MODE,
    "eco_mode": TAG_OPT_ECO,
    "display_mode": TAG_OPT_DISPLAY,
    "beep_mode": TAG_OPT_BEEP,
}


class TfiacApiClientError(Exception):
    """Base exception for TFIAC API client errors."""


class TfiacNetworkError(TfiacApiClientError):
    """Exception raised when the UDP socket cannot be used."""


class TfiacTimeoutError(TfiacApiClientError):
    """Exception raised when no correlated response arrives in time."""


class TfiacParseError(TfiacApiClientError):
    """Exception raised for empty, malformed, or incomplete responses."""


class TfiacCommandRejectedError(TfiacApiClientError):
    """Exception raised when the device acknowledges a command with an error."""


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def fahrenheit_to_celsius(fahrenheit: float) -> int:
    """Convert a Fahrenheit reading to the nearest whole Celsius degree.

    Args:
        fahrenheit: Temperature in Fahrenheit.

    Returns:
        Temperature in Celsius, rounded half up.

    """
    return _round_half_up((fahrenheit - 32) * 5 / 9)


def celsius_to_fahrenheit(celsius: float) -> int:
    """Convert a Celsius value to the nearest whole Fahrenheit degree.

    Args:
        celsius: Temperature in Celsius.

    Returns:
        Temperature in Fahrenheit, rounded half up.

    """
    return _round_half_up(celsius * 9 / 5 + 32)


def device_to_celsius(value: float, unit: UnitOfTemperature) -> int:
    """Convert a wire temperature to Celsius."""
    if unit == UnitOfTemperature.FAHRENHEIT:
        return fahrenheit_to_celsius(value)
    return _round_half_up(value)


def celsius_to_device(value: float, unit: UnitOfTemperature) -> int:
    """Convert a Celsius temperature to the device's wire unit."""
    if unit == UnitOfTemperature.FAHRENHEIT:
        return celsius_to_fahrenheit(value)
    return _round_half_up(value)


def is_sleep_active(value: str | None) -> bool:
    """Check whether a sleep wire value means sleep is on.

    Only the leading token decides: a bare "on" or any "sleepModeN:..."
    profile string is on; anything else is off.

    Args:
        value: Raw Opt_sleepMode value.

    Returns:
        True if sleep is on, False otherwise.

    """
    if not value:
        return False
    token = value.strip().split(":", 1)[0]
    return token == PowerState.ON or token.startswith(SLEEP_PROFILE_PREFIX)


def swing_from_directions(horizontal: bool, vertical: bool) -> SwingMode:
    """Combine the WindDirection_H/V pair into a swing mode."""
    if horizontal and vertical:
        return SwingMode.BOTH
    if horizontal:
        return SwingMode.HORIZONTAL
    if vertical:
        return SwingMode.VERTICAL
    return SwingMode.OFF


def directions_from_swing(swing_mode: SwingMode) -> tuple[PowerState, PowerState]:
    """Split a swing mode into (horizontal, vertical) on/off values."""
    horizontal = swing_mode in (SwingMode.HORIZONTAL, SwingMode.BOTH)
    vertical = swing_mode in (SwingMode.VERTICAL, SwingMode.BOTH)
    return (
        PowerState.ON if horizontal else PowerState.OFF,
        PowerState.ON if vertical else PowerState.OFF,
    )


def build_message(msgid: str, sequence: int, body: str = "") -> str:
    """Wrap a body into a sequenced protocol envelope.

    Args:
        msgid: Message id, also used as the inner element name.
        sequence: Sequence id the response must carry.
        body: Inner XML.

    Returns:
        Serialized request.

    """
    return (
        f'<msg msgid="{msgid}" type="Control" seq="{sequence}">'
        f"<{msgid}>{body}</{msgid}></msg>"
    )


def _wire_sleep_value(value: Any) -> str:  # noqa: ANN401
    text = str(value)
    if is_sleep_active(text):
        # Profile strings are echoed verbatim, a bare "on" becomes the default
        return text if text.startswith(SLEEP_PROFILE_PREFIX) else SleepModeState.ON
    return SleepModeState.OFF


def build_set_message_body(
    changes: Mapping[str, Any], unit: UnitOfTemperature
) -> str:
    """Serialize only the given canonical fields into SetMessage tags.

    Args:
        changes: Mapping of canonical field name to value.
        unit: Device wire temperature unit.

    Returns:
        Inner XML for a SetMessage.

    Raises:
        ValueError: If a field name is unknown.

    """
    unknown = set(changes) - set(COMMAND_FIELD_TAGS)
    if unknown:
        error_msg = f"Unknown command fields: {sorted(unknown)}"
        raise ValueError(error_msg)

    parts: list[str] = []
    for field, tag in COMMAND_FIELD_TAGS.items():
        if field not in changes:
            continue
        value = changes[field]
        if field == "swing_mode":
            horizontal, vertical = directions_from_swing(SwingMode(value))
            parts.append(f"<{tag[0]}>{horizontal}</{tag[0]}>")
            parts.append(f"<{tag[1]}>{vertical}</{tag[1]}>")
            continue
        if field == "target_temperature":
            text = str(celsius_to_device(value, unit))
        elif field == "sleep_mode":
            text = _wire_sleep_value(value)
        else:
            text = str(value)
        parts.append(f"<{tag}>{escape(text)}</{tag}>")
    return "".join(parts)


def extract_sequence(message: str) -> int | None:
    """Return the seq attribute of a raw message, or None if absent."""
    match = _SEQUENCE_PATTERN.search(message)
    return int(match.group(1)) if match else None


def parse_xml(message: str) -> ET.Element:
    """Parse a raw response into an element tree.

    Raises:
        TfiacParseError: If the payload is empty or not well-formed.

    """
    if not message or not message.strip():
        error_msg = "Empty response from device"
        raise TfiacParseError(error_msg)
    try:
        return ET.fromstring(message.strip())  # noqa: S314
    except ET.ParseError as err:
        error_msg = f"Malformed XML response: {err}"
        raise TfiacParseError(error_msg) from err


def _find_text(element: ET.Element, *tags: str) -> str | None:
    for tag in tags:
        child = element.find(tag)
        if child is not None and child.text is not None:
            return child.text.strip()
    return None


def _parse_int(element: ET.Element, tag: str) -> int:
    text = _find_text(element, tag)
    try:
        return _round_half_up(float(text))
    except (TypeError, ValueError) as err:
        error_msg = f"Invalid numeric value for {tag}: {text!r}"
        raise TfiacParseError(error_msg) from err


def _parse_power(text: str | None) -> PowerState | None:
    if text is None:
        return None
    return PowerState.ON if text.lower() == PowerState.ON else PowerState.OFF


def _parse_operation_mode(text: str) -> OperationMode:
    try:
        return OperationMode(text)
    except ValueError:
        mode = OPERATION_MODE_ALIASES.get(text.lower())
        if mode is None:
            _LOGGER.warning("Unknown BaseMode %r, defaulting to auto", text)
            return OperationMode.AUTO
        return mode


def _parse_fan_speed(text: str) -> FanSpeed:
    try:
        return FanSpeed(text)
    except ValueError:
        speed = FAN_SPEED_ALIASES.get(text.lower())
        if speed is None:
            _LOGGER.warning("Unknown WindSpeed %r, defaulting to Auto", text)
            return FanSpeed.AUTO
        return speed


def parse_status_response(message: str, unit: UnitOfTemperature) -> StatusRecord:
    """Decode a statusUpdateMsg response into a StatusRecord.

    Temperatures are converted from the device unit to Celsius. Unknown
    elements are ignored.

    Args:
        message: Raw XML response.
        unit: Device wire temperature unit.

    Returns:
        StatusRecord with the reported fields.

    Raises:
        TfiacParseError: If the payload is malformed or a required field
            is missing.

    """
    root = parse_xml(message)
    status = root if root.tag == MSG_STATUS_UPDATE else root.find(f".//{MSG_STATUS_UPDATE}")
    if status is None:
        error_msg = f"Response does not contain {MSG_STATUS_UPDATE}"
        raise TfiacParseError(error_msg)

    missing = [tag for tag in REQUIRED_STATUS_TAGS if _find_text(status, tag) is None]
    if missing:
        error_msg = f"Status response missing required fields: {', '.join(missing)}"
        raise TfiacParseError(error_msg)

    outdoor_text = _find_text(status, TAG_OUTDOOR_TEMP)
    outdoor = None
    if outdoor_text is not None:
        outdoor = device_to_celsius(_parse_int(status, TAG_OUTDOOR_TEMP), unit)

    horizontal = _parse_power(_find_text(status, TAG_WIND_DIRECTION_H))
    vertical = _parse_power(_find_text(status, TAG_WIND_DIRECTION_V))
    swing_mode = None
    if horizontal is not None or vertical is not None:
        swing_mode = swing_from_directions(
            horizontal == PowerState.ON, vertical == PowerState.ON
        )

    return StatusRecord(
        power=_parse_power(_find_text(status, TAG_TURN_ON)),
        operation_mode=_parse_operation_mode(_find_text(status, TAG_BASE_MODE)),
        target_temperature=device_to_celsius(_parse_int(status, TAG_SET_TEMP), unit),
        current_temperature=device_to_celsius(
            _parse_int(status, TAG_INDOOR_TEMP), unit
        ),
        fan_speed=_parse_fan_speed(_find_text(status, TAG_WIND_SPEED)),
        swing_mode=swing_mode,
        turbo_mode=_parse_power(_find_text(status, TAG_OPT_SUPER)),
        sleep_mode=_find_text(status, TAG_OPT_SLEEP_MODE),
        eco_mode=_parse_power(_find_text(status, TAG_OPT_ECO, TAG_OPT_ECO_LEGACY)),
        display_mode=_parse_power(_find_text(status, TAG_OPT_DISPLAY)),
        beep_mode=_parse_power(_find_text(status, TAG_OPT_BEEP)),
        outdoor_temperature=outdoor,
    )


def parse_ack_response(message: str) -> None:
    """Validate the device's answer to a SetMessage.

    Raises:
        TfiacParseError: If the payload is malformed.
        TfiacCommandRejectedError: If the device returned anything but "ok".

    """
    root = parse_xml(message)
    ack = root if root.tag == MSG_SET_ACK else root.find(f".//{MSG_SET_ACK}")
    if ack is None:
        # Some firmware answers a SetMessage with a plain status update
        return
    result = _find_text(ack, TAG_RETURN)
    if result is not None and result.lower() != ACK_OK:
        error_msg = f"Device rejected command: {result}"
        raise TfiacCommandRejectedError(error_msg)


class _TfiacDatagramProtocol(asyncio.DatagramProtocol):
    """Resolves a future with the first datagram carrying our sequence id."""

    def __init__(self, sequence: int, response: asyncio.Future[str]) -> None:
        self._sequence = sequence
        self._response = response

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if self._response.done():
            return
        try:
            message = data.decode("utf-8")
        except UnicodeDecodeError as err:
            _LOGGER.debug("Discarding undecodable datagram from %s: %s", addr, err)
            return

        sequence = extract_sequence(message)
        if sequence is not None and sequence != self._sequence:
            _LOGGER.debug(
                "Discarding response with seq %d while waiting for seq %d",
                sequence,
                self._sequence,
            )
            return
        self._response.set_result(message)

    def error_received(self, exc: Exception) -> None:
        if not self._response.done():
            error_msg = f"Socket error: {exc}"
            self._response.set_exception(TfiacNetworkError(error_msg))

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None and not self._response.done():
            error_msg = f"Connection lost: {exc}"
            self._response.set_exception(TfiacNetworkError(error_msg))


class TfiacApiClient:
    """UDP client for a single TFIAC device.

    Each exchange opens its own datagram endpoint, sends one sequenced
    message and waits for the matching response. Network and timeout
    failures are retried with backoff; exhausting the retries marks the
    device unavailable until the next successful round-trip.
    """

    def __init__(self, config: TfiacDeviceConfig) -> None:
        """Initialize the client.

        Args:
            config: Device configuration.

        """
        self._config = config
        self._sequence = 0
        self._available = True
        self._closed = False
        self._transports: set[asyncio.DatagramTransport] = set()
        self._pending: set[asyncio.Future[Any]] = set()
        self._backoff_timers: set[asyncio.TimerHandle] = set()

    @property
    def available(self) -> bool:
        """Return True unless the last operation exhausted its retries."""
        return self._available

    @property
    def closed(self) -> bool:
        """Return True once cleanup() has run."""
        return self._closed

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _set_available(self, available: bool) -> None:
        if available == self._available:
            return
        self._available = available
        if available:
            _LOGGER.info("Device %s:%s is reachable again", *self._config.address)
        else:
            _LOGGER.warning("Device %s:%s is unavailable", *self._config.address)

    async def async_send_command(
        self,
        msgid: str,
        body: str = "",
        timeout: float | None = None,
    ) -> str:
        """Send one sequenced message and wait for its response.

        Args:
            msgid: Message id of the request.
            body: Inner XML of the request.
            timeout: Seconds to wait, defaults to the configured timeout.

        Returns:
            Raw XML of the correlated response.

        Raises:
            TfiacNetworkError: If the socket cannot be opened or used.
            TfiacTimeoutError: If no matching response arrives in time.

        """
        if self._closed:
            error_msg = "Client has been cleaned up"
            raise TfiacNetworkError(error_msg)

        loop = asyncio.get_running_loop()
        envelope = CommandEnvelope(
            sequence=self._next_sequence(),
            payload="",
            timeout=self._config.timeout if timeout is None else timeout,
            retries_left=self._config.retries,
        )
        envelope.payload = build_message(msgid, envelope.sequence, body)
        response: asyncio.Future[str] = loop.create_future()
        self._pending.add(response)
        transport: asyncio.DatagramTransport | None = None

        try:
            try:
                transport, _ = await loop.create_datagram_endpoint(
                    lambda: _TfiacDatagramProtocol(envelope.sequence, response),
                    remote_addr=self._config.address,
                )
            except OSError as err:
                error_msg = (
                    f"Unable to open socket to {self._config.host}:"
                    f"{self._config.port}: {err}"
                )
                raise TfiacNetworkError(error_msg) from err

            self._transports.add(transport)
            _LOGGER.debug(
                "[seq %d] SENT to %s:%s: %s",
                envelope.sequence,
                self._config.host,
                self._config.port,
                envelope.payload,
            )
            try:
                transport.sendto(envelope.payload.encode("utf-8"))
            except OSError as err:
                error_msg = f"Failed to send datagram: {err}"
                raise TfiacNetworkError(error_msg) from err

            try:
                message = await asyncio.wait_for(response, envelope.timeout)
            except TimeoutError as err:
                _LOGGER.debug("[seq %d] TIMED_OUT", envelope.sequence)
                error_msg = (
                    f"No response to {msgid} (seq {envelope.sequence}) "
                    f"within {envelope.timeout}s"
                )
                raise TfiacTimeoutError(error_msg) from err
        finally:
            self._pending.discard(response)
            if transport is not None:
                transport.close()
                self._transports.discard(transport)

        _LOGGER.debug("[seq %d] ACKED: %s", envelope.sequence, message)
        return message

    async def _async_backoff(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            if not waiter.done():
                waiter.set_result(None)

        handle = loop.call_later(delay, _wake)
        self._backoff_timers.add(handle)
        self._pending.add(waiter)
        try:
            await waiter
        finally:
            handle.cancel()
            self._backoff_timers.discard(handle)
            self._pending.discard(waiter)

    async def _async_with_retry(
        self,
        description: str,
        operation: Callable[[], Awaitable[_T]],
    ) -> _T:
        """Run an exchange, retrying network and timeout failures.

        Args:
            description: Human readable name used in logs.
            operation: Coroutine factory performing one attempt.

        Returns:
            The operation's result.

        Raises:
            TfiacNetworkError: If every attempt failed at socket level.
            TfiacTimeoutError: If every attempt timed out.

        """
        attempts = self._config.retries + 1
        last_error: TfiacApiClientError | None = None

        for attempt in range(1, attempts + 1):
            try:
                result = await operation()
            except (TfiacNetworkError, TfiacTimeoutError) as err:
                last_error = err
                if attempt >= attempts or self._closed:
                    break
                delay = self._config.retry_delay * 2 ** (attempt - 1)
                _LOGGER.debug(
                    "%s failed (attempt %d/%d): %s; RETRY in %.1fs",
                    description,
                    attempt,
                    attempts,
                    err,
                    delay,
                )
                await self._async_backoff(delay)
            else:
                self._set_available(True)
                return result

        _LOGGER.error(
            "%s failed after %d attempts (TERMINAL): %s",
            description,
            attempts,
            last_error,
        )
        self._set_available(False)
        raise last_error

    async def async_update_state(self) -> StatusRecord:
        """Query and decode the device status.

        Returns:
            StatusRecord with temperatures in Celsius.

        Raises:
            TfiacNetworkError: If the device cannot be reached.
            TfiacTimeoutError: If the device does not answer.
            TfiacParseError: If the answer is malformed or incomplete.

        """

        async def _query() -> str:
            return await self.async_send_command(MSG_STATUS_REQUEST)

        message = await self._async_with_retry("Status query", _query)
        status = parse_status_response(message, self._config.temperature_unit)
        _LOGGER.debug("Parsed status from %s: %s", self._config.host, status)
        return status

    async def async_set_options(self, changes: Mapping[str, Any]) -> None:
        """Send a SetMessage carrying only the given fields.

        Args:
            changes: Mapping of canonical field name to value.

        Raises:
            TfiacNetworkError: If the device cannot be reached.
            TfiacTimeoutError: If the device does not answer.
            TfiacParseError: If the acknowledgement is malformed.
            TfiacCommandRejectedError: If the device rejects the command.

        """
        if not changes:
            _LOGGER.debug("No fields to send to %s", self._config.host)
            return

        body = build_set_message_body(changes, self._config.temperature_unit)

        async def _set() -> str:
            return await self.async_send_command(MSG_SET, body)

        message = await self._async_with_retry("Set command", _set)
        parse_ack_response(message)
        _LOGGER.debug("Command %s acknowledged by %s", changes, self._config.host)

    async def async_turn_on(self) -> None:
        """Switch the unit on."""
        await self.async_set_options({"power": PowerState.ON})

    async def async_turn_off(self) -> None:
        """Switch the unit off."""
        await self.async_set_options({"power": PowerState.OFF})

    async def async_set_operation_mode(self, mode: OperationMode) -> None:
        """Set the operation mode."""
        await self.async_set_options({"operation_mode": mode})

    async def async_set_target_temperature(self, temperature: float) -> None:
        """Set the target temperature in Celsius."""
        await self.async_set_options({"target_temperature": temperature})

    async def async_set_fan_speed(self, speed: FanSpeed) -> None:
        """Set the fan speed."""
        await self.async_set_options({"fan_speed": speed})

    async def async_set_swing_mode(self, swing_mode: SwingMode) -> None:
        """Set both louver directions at once."""
        await self.async_set_options({"swing_mode": swing_mode})

    async def async_set_turbo_mode(self, state: PowerState) -> None:
        """Switch turbo on or off."""
        await self.async_set_options({"turbo_mode": state})

    async def async_set_sleep_mode(self, state: SleepModeState | str) -> None:
        """Switch sleep on (with a profile string) or off."""
        await self.async_set_options({"sleep_mode": state})

    async def async_set_eco_mode(self, state: PowerState) -> None:
        """Switch eco on or off."""
        await self.async_set_options({"eco_mode": state})

    async def async_set_display_mode(self, state: PowerState) -> None:
        """Switch the front display on or off."""
        await self.async_set_options({"display_mode": state})

    async def async_set_beep_mode(self, state: PowerState) -> None:
        """Switch the confirmation beep on or off."""
        await self.async_set_options({"beep_mode": state})

    def cleanup(self) -> None:
        """Cancel pending waits and close open sockets. Safe to call repeatedly."""
        if not self._closed:
            _LOGGER.debug("Cleaning up client for %s:%s", *self._config.address)
        self._closed = True

        for handle in list(self._backoff_timers):
            handle.cancel()
        self._backoff_timers.clear()

        for future in list(self._pending):
            if not future.done():
                future.cancel()
        self._pending.clear()

        for transport in list(self._transports):
            transport.close()
        self._transports.clear()
