"""Tests for the TFIAC API client."""

import asyncio
import dataclasses
from unittest.mock import AsyncMock, patch

import pytest
from homeassistant.const import UnitOfTemperature

from custom_components.tfiac import api
from custom_components.tfiac.api import (
    TfiacApiClient,
    TfiacApiClientError,
    TfiacCommandRejectedError,
    TfiacNetworkError,
    TfiacParseError,
    TfiacTimeoutError,
)
from custom_components.tfiac.const import MSG_SET, MSG_STATUS_REQUEST, SLEEP_PROFILE_ON
from custom_components.tfiac.models import (
    FanSpeed,
    OperationMode,
    PowerState,
    SleepModeState,
    SwingMode,
    TfiacDeviceConfig,
)

from .conftest import build_status_xml

FAHRENHEIT = UnitOfTemperature.FAHRENHEIT
CELSIUS = UnitOfTemperature.CELSIUS
EXPECTED_ATTEMPTS = 3


class FakeDeviceProtocol(asyncio.DatagramProtocol):
    """Local UDP endpoint answering like a TFIAC unit."""

    def __init__(self, *, reply: bool = True, send_stale_first: bool = False) -> None:
        """Initialize the fake device."""
        self.reply = reply
        self.send_stale_first = send_stale_first
        self.received: list[str] = []
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        """Store the transport."""
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        """Answer with a status update carrying the request's sequence."""
        message = data.decode()
        self.received.append(message)
        if not self.reply:
            return
        sequence = api.extract_sequence(message)
        if self.send_stale_first:
            stale = build_status_xml(seq=sequence + 100, set_temp="90")
            self.transport.sendto(stale.encode(), addr)
        self.transport.sendto(build_status_xml(seq=sequence).encode(), addr)


async def start_fake_device(
    protocol: FakeDeviceProtocol,
) -> tuple[asyncio.DatagramTransport, int]:
    """Start a fake device on a free localhost port."""
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: protocol, local_addr=("127.0.0.1", 0)
    )
    return transport, transport.get_extra_info("sockname")[1]


class TestTfiacApiErrors:
    """Tests for the exception hierarchy."""

    def test_errors_share_base_class(self) -> None:
        """Test that every codec error is a TfiacApiClientError."""
        for error_cls in (
            TfiacNetworkError,
            TfiacTimeoutError,
            TfiacParseError,
            TfiacCommandRejectedError,
        ):
            assert issubclass(error_cls, TfiacApiClientError)


class TestTemperatureConversion:
    """Tests for unit conversion helpers."""

    def test_fahrenheit_to_celsius_rounds_to_nearest(self) -> None:
        """Test that 70F converts to 21C."""
        assert api.fahrenheit_to_celsius(70) == 21

    def test_celsius_to_fahrenheit_rounds_to_nearest(self) -> None:
        """Test that 22C converts to 72F."""
        assert api.celsius_to_fahrenheit(22) == 72

    def test_rounding_is_half_up(self) -> None:
        """Test that exact halves round up."""
        assert api.fahrenheit_to_celsius(36.5) == 3  # 2.5C
        assert api.celsius_to_fahrenheit(2.5) == 37  # 36.5F

    def test_device_conversion_is_noop_for_celsius(self) -> None:
        """Test that Celsius devices are passed through."""
        assert api.device_to_celsius(22, CELSIUS) == 22
        assert api.celsius_to_device(22, CELSIUS) == 22

    def test_device_conversion_for_fahrenheit(self) -> None:
        """Test that Fahrenheit devices are converted both ways."""
        assert api.device_to_celsius(70, FAHRENHEIT) == 21
        assert api.celsius_to_device(22, FAHRENHEIT) == 72


class TestIsSleepActive:
    """Tests for is_sleep_active."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("on", True),
            ("off", False),
            (SLEEP_PROFILE_ON, True),
            ("sleepMode3:1:2:3", True),
            ("off:0:0", False),
            ("", False),
            (None, False),
        ],
    )
    def test_only_leading_token_decides(self, value: str | None, expected: bool) -> None:
        """Test that only the leading token determines the sleep state."""
        assert api.is_sleep_active(value) is expected


class TestSwingConversion:
    """Tests for swing direction helpers."""

    def test_swing_from_directions(self) -> None:
        """Test that the H/V pair maps to the four swing modes."""
        assert api.swing_from_directions(False, False) == SwingMode.OFF
        assert api.swing_from_directions(True, False) == SwingMode.HORIZONTAL
        assert api.swing_from_directions(False, True) == SwingMode.VERTICAL
        assert api.swing_from_directions(True, True) == SwingMode.BOTH

    def test_directions_from_swing(self) -> None:
        """Test that swing modes split into the H/V pair."""
        assert api.directions_from_swing(SwingMode.BOTH) == (
            PowerState.ON,
            PowerState.ON,
        )
        assert api.directions_from_swing(SwingMode.VERTICAL) == (
            PowerState.OFF,
            PowerState.ON,
        )


class TestBuildMessages:
    """Tests for request serialization."""

    def test_build_message_wraps_body(self) -> None:
        """Test the request envelope format."""
        assert api.build_message(MSG_STATUS_REQUEST, 7) == (
            '<msg msgid="SyncStatusReq" type="Control" seq="7">'
            "<SyncStatusReq></SyncStatusReq></msg>"
        )

    def test_set_body_contains_only_given_fields(self) -> None:
        """Test that a single change produces a single tag."""
        body = api.build_set_message_body({"target_temperature": 22}, FAHRENHEIT)
        assert body == "<SetTemp>72</SetTemp>"

    def test_set_body_uses_celsius_for_celsius_devices(self) -> None:
        """Test that Celsius devices receive Celsius values."""
        body = api.build_set_message_body({"target_temperature": 22}, CELSIUS)
        assert body == "<SetTemp>22</SetTemp>"

    def test_set_body_follows_wire_order(self) -> None:
        """Test that fields are serialized in a fixed order."""
        body = api.build_set_message_body(
            {"sleep_mode": SleepModeState.OFF, "power": PowerState.ON},
            FAHRENHEIT,
        )
        assert body == "<TurnOn>on</TurnOn><Opt_sleepMode>off</Opt_sleepMode>"

    def test_set_body_splits_swing(self) -> None:
        """Test that swing becomes the direction pair."""
        body = api.build_set_message_body({"swing_mode": SwingMode.BOTH}, FAHRENHEIT)
        assert body == (
            "<WindDirection_H>on</WindDirection_H><WindDirection_V>on</WindDirection_V>"
        )

    def test_set_body_sends_profile_for_sleep_on(self) -> None:
        """Test that sleep on is sent as the default profile."""
        body = api.build_set_message_body({"sleep_mode": "on"}, FAHRENHEIT)
        assert body == f"<Opt_sleepMode>{SLEEP_PROFILE_ON}</Opt_sleepMode>"

    def test_set_body_echoes_custom_profile(self) -> None:
        """Test that an explicit profile string is sent verbatim."""
        profile = "sleepMode2:1:2:3"
        body = api.build_set_message_body({"sleep_mode": profile}, FAHRENHEIT)
        assert body == f"<Opt_sleepMode>{profile}</Opt_sleepMode>"

    def test_set_body_uses_wire_tokens(self) -> None:
        """Test enum values are written as wire tokens."""
        body = api.build_set_message_body(
            {
                "operation_mode": OperationMode.FAN_ONLY,
                "fan_speed": FanSpeed.MEDIUM,
                "turbo_mode": PowerState.OFF,
                "eco_mode": PowerState.ON,
            },
            FAHRENHEIT,
        )
        assert body == (
            "<BaseMode>fan</BaseMode><WindSpeed>Middle</WindSpeed>"
            "<Opt_super>off</Opt_super><Opt_eco>on</Opt_eco>"
        )

    def test_set_body_rejects_unknown_fields(self) -> None:
        """Test that unknown fields raise ValueError."""
        with pytest.raises(ValueError, match="Unknown command fields"):
            api.build_set_message_body({"colour": "blue"}, FAHRENHEIT)

    def test_extract_sequence(self) -> None:
        """Test reading the seq attribute."""
        assert api.extract_sequence(build_status_xml(seq=42)) == 42
        assert api.extract_sequence(build_status_xml(seq=None)) is None


class TestParseStatusResponse:
    """Tests for parse_status_response."""

    def test_parses_complete_status(self, sample_status_xml: str) -> None:
        """Test that every field is decoded and converted to Celsius."""
        status = api.parse_status_response(sample_status_xml, FAHRENHEIT)
        assert status.power == PowerState.ON
        assert status.operation_mode == OperationMode.COOL
        assert status.target_temperature == 22
        assert status.current_temperature == 24
        assert status.fan_speed == FanSpeed.LOW
        assert status.swing_mode == SwingMode.VERTICAL
        assert status.turbo_mode == PowerState.OFF
        assert status.sleep_mode == "off"
        assert status.eco_mode == PowerState.OFF
        assert status.display_mode == PowerState.ON
        assert status.beep_mode == PowerState.ON
        assert status.outdoor_temperature == 30

    def test_converts_seventy_fahrenheit(self) -> None:
        """Test that SetTemp 70 under Fahrenheit becomes 21C."""
        status = api.parse_status_response(build_status_xml(set_temp="70"), FAHRENHEIT)
        assert status.target_temperature == 21

    def test_celsius_device_values_pass_through(self) -> None:
        """Test that Celsius devices are not converted."""
        status = api.parse_status_response(
            build_status_xml(set_temp="22", indoor_temp="25"), CELSIUS
        )
        assert status.target_temperature == 22
        assert status.current_temperature == 25

    def test_optional_fields_default_to_none(self) -> None:
        """Test that absent optional fields are None."""
        status = api.parse_status_response(build_status_xml(), FAHRENHEIT)
        assert status.swing_mode is None
        assert status.turbo_mode is None
        assert status.sleep_mode is None
        assert status.eco_mode is None
        assert status.outdoor_temperature is None

    def test_accepts_bare_status_element(self) -> None:
        """Test that statusUpdateMsg may be the root element."""
        message = (
            "<statusUpdateMsg><TurnOn>off</TurnOn><BaseMode>heat</BaseMode>"
            "<SetTemp>68</SetTemp><IndoorTemp>66</IndoorTemp>"
            "<WindSpeed>High</WindSpeed></statusUpdateMsg>"
        )
        status = api.parse_status_response(message, FAHRENHEIT)
        assert status.power == PowerState.OFF
        assert status.operation_mode == OperationMode.HEAT
        assert status.fan_speed == FanSpeed.HIGH

    def test_malformed_xml_raises_parse_error(self) -> None:
        """Test that malformed XML is rejected, not partially parsed."""
        with pytest.raises(TfiacParseError, match="Malformed"):
            api.parse_status_response(
                "<msg><statusUpdateMsg><Invalid XML", FAHRENHEIT
            )

    @pytest.mark.parametrize("message", ["", "   "])
    def test_empty_response_raises_parse_error(self, message: str) -> None:
        """Test that an empty payload is a protocol error."""
        with pytest.raises(TfiacParseError, match="Empty"):
            api.parse_status_response(message, FAHRENHEIT)

    def test_missing_status_element_raises_parse_error(self) -> None:
        """Test that a response without statusUpdateMsg is rejected."""
        with pytest.raises(TfiacParseError, match="statusUpdateMsg"):
            api.parse_status_response("<msg><other/></msg>", FAHRENHEIT)

    def test_missing_required_field_raises_parse_error(self) -> None:
        """Test that missing required fields are a ParseError."""
        message = build_status_xml().replace("<WindSpeed>Low</WindSpeed>", "")
        with pytest.raises(TfiacParseError, match="WindSpeed"):
            api.parse_status_response(message, FAHRENHEIT)

    def test_non_numeric_temperature_raises_parse_error(self) -> None:
        """Test that a non-numeric SetTemp is a ParseError."""
        with pytest.raises(TfiacParseError, match="SetTemp"):
            api.parse_status_response(build_status_xml(set_temp="warm"), FAHRENHEIT)

    def test_unknown_base_mode_defaults_to_auto(self) -> None:
        """Test that an unknown BaseMode becomes auto."""
        status = api.parse_status_response(
            build_status_xml(base_mode="turbo_cool"), FAHRENHEIT
        )
        assert status.operation_mode == OperationMode.AUTO

    def test_base_mode_aliases(self) -> None:
        """Test that legacy and differently cased tokens are recognized."""
        assert (
            api.parse_status_response(
                build_status_xml(base_mode="dehumi"), FAHRENHEIT
            ).operation_mode
            == OperationMode.DRY
        )
        assert (
            api.parse_status_response(
                build_status_xml(base_mode="Cool"), FAHRENHEIT
            ).operation_mode
            == OperationMode.COOL
        )

    def test_unknown_wind_speed_defaults_to_auto(self) -> None:
        """Test that an unknown WindSpeed becomes Auto."""
        status = api.parse_status_response(
            build_status_xml(wind_speed="Hurricane"), FAHRENHEIT
        )
        assert status.fan_speed == FanSpeed.AUTO

    def test_medium_alias(self) -> None:
        """Test that Medium is read as the middle speed."""
        status = api.parse_status_response(
            build_status_xml(wind_speed="Medium"), FAHRENHEIT
        )
        assert status.fan_speed == FanSpeed.MEDIUM

    def test_legacy_eco_tag(self) -> None:
        """Test that Opt_ECO is read when Opt_eco is absent."""
        status = api.parse_status_response(
            build_status_xml(extra="<Opt_ECO>on</Opt_ECO>"), FAHRENHEIT
        )
        assert status.eco_mode == PowerState.ON

    def test_sleep_profile_is_kept_raw(self) -> None:
        """Test that the sleep profile string is preserved."""
        status = api.parse_status_response(
            build_status_xml(extra=f"<Opt_sleepMode>{SLEEP_PROFILE_ON}</Opt_sleepMode>"),
            FAHRENHEIT,
        )
        assert status.sleep_mode == SLEEP_PROFILE_ON


class TestParseAckResponse:
    """Tests for parse_ack_response."""

    def test_ok_ack_is_accepted(self, sample_ack_xml: str) -> None:
        """Test that an ok acknowledgement passes."""
        api.parse_ack_response(sample_ack_xml)

    def test_rejected_ack_raises(self) -> None:
        """Test that a non-ok Return raises TfiacCommandRejectedError."""
        message = "<msg><ACKSetMessage><Return>fail</Return></ACKSetMessage></msg>"
        with pytest.raises(TfiacCommandRejectedError, match="fail"):
            api.parse_ack_response(message)

    def test_status_reply_is_accepted(self, sample_status_xml: str) -> None:
        """Test that firmware answering with a status update is accepted."""
        api.parse_ack_response(sample_status_xml)

    def test_malformed_ack_raises(self) -> None:
        """Test that a malformed acknowledgement is a ParseError."""
        with pytest.raises(TfiacParseError):
            api.parse_ack_response("<msg><ACKSetMessage>")


class TestDatagramProtocol:
    """Tests for response correlation."""

    @pytest.mark.asyncio
    async def test_discards_other_sequences(self) -> None:
        """Test that responses for another sequence are ignored."""
        response = asyncio.get_running_loop().create_future()
        protocol = api._TfiacDatagramProtocol(5, response)

        protocol.datagram_received(build_status_xml(seq=4).encode(), ("h", 1))
        assert not response.done()

        protocol.datagram_received(build_status_xml(seq=5).encode(), ("h", 1))
        assert response.result() == build_status_xml(seq=5)

    @pytest.mark.asyncio
    async def test_accepts_response_without_sequence(self) -> None:
        """Test that firmware omitting seq is still answered."""
        response = asyncio.get_running_loop().create_future()
        protocol = api._TfiacDatagramProtocol(5, response)

        protocol.datagram_received(build_status_xml(seq=None).encode(), ("h", 1))
        assert response.done()

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_discarded(self) -> None:
        """Test that a non UTF-8 datagram does not fail the exchange."""
        response = asyncio.get_running_loop().create_future()
        protocol = api._TfiacDatagramProtocol(1, response)

        protocol.datagram_received(b"\xff\xfe\xfa", ("h", 1))
        assert not response.done()

        protocol.datagram_received(build_status_xml(seq=1).encode(), ("h", 1))
        assert response.result() == build_status_xml(seq=1)

    @pytest.mark.asyncio
    async def test_socket_error_is_network_error(self) -> None:
        """Test that socket errors fail with NetworkError."""
        response = asyncio.get_running_loop().create_future()
        protocol = api._TfiacDatagramProtocol(1, response)

        protocol.error_received(ConnectionRefusedError("refused"))
        with pytest.raises(TfiacNetworkError, match="refused"):
            response.result()


class TestTfiacApiClientRetries:
    """Tests for the retry wrapper and availability tracking."""

    @pytest.mark.asyncio
    async def test_update_state_retries_transient_failures(
        self, device_config: TfiacDeviceConfig, sample_status_xml: str
    ) -> None:
        """Test that a timeout followed by success returns the status."""
        client = TfiacApiClient(device_config)
        with patch.object(
            client,
            "async_send_command",
            AsyncMock(side_effect=[TfiacTimeoutError("late"), sample_status_xml]),
        ) as send:
            status = await client.async_update_state()

        assert status.power == PowerState.ON
        assert send.await_count == 2
        send.assert_awaited_with(MSG_STATUS_REQUEST)
        assert client.available is True

    @pytest.mark.asyncio
    async def test_exhausted_retries_mark_unavailable(
        self, device_config: TfiacDeviceConfig, sample_status_xml: str
    ) -> None:
        """Test that exhausting retries flips availability until a success."""
        client = TfiacApiClient(device_config)
        with patch.object(
            client,
            "async_send_command",
            AsyncMock(side_effect=TfiacNetworkError("unreachable")),
        ) as send:
            with pytest.raises(TfiacNetworkError, match="unreachable"):
                await client.async_update_state()
            assert send.await_count == EXPECTED_ATTEMPTS

        assert client.available is False

        with patch.object(
            client, "async_send_command", AsyncMock(return_value=sample_status_xml)
        ):
            await client.async_update_state()

        assert client.available is True

    @pytest.mark.asyncio
    async def test_parse_errors_are_not_retried(
        self, device_config: TfiacDeviceConfig
    ) -> None:
        """Test that a malformed reply fails immediately."""
        client = TfiacApiClient(device_config)
        with patch.object(
            client, "async_send_command", AsyncMock(return_value="<msg><broken")
        ) as send:
            with pytest.raises(TfiacParseError):
                await client.async_update_state()

        assert send.await_count == 1

    @pytest.mark.asyncio
    async def test_set_options_sends_minimal_command(
        self, device_config: TfiacDeviceConfig, sample_ack_xml: str
    ) -> None:
        """Test that set helpers send only their field."""
        client = TfiacApiClient(device_config)
        with patch.object(
            client, "async_send_command", AsyncMock(return_value=sample_ack_xml)
        ) as send:
            await client.async_set_target_temperature(22)

        send.assert_awaited_once_with(MSG_SET, "<SetTemp>72</SetTemp>")

    @pytest.mark.asyncio
    async def test_set_helpers_map_to_fields(
        self, device_config: TfiacDeviceConfig, sample_ack_xml: str
    ) -> None:
        """Test that turn on/off and option helpers build the right tags."""
        client = TfiacApiClient(device_config)
        with patch.object(
            client, "async_send_command", AsyncMock(return_value=sample_ack_xml)
        ) as send:
            await client.async_turn_off()
            await client.async_set_turbo_mode(PowerState.ON)
            await client.async_set_display_mode(PowerState.OFF)

        bodies = [call.args[1] for call in send.await_args_list]
        assert bodies == [
            "<TurnOn>off</TurnOn>",
            "<Opt_super>on</Opt_super>",
            "<Opt_display>off</Opt_display>",
        ]

    @pytest.mark.asyncio
    async def test_set_options_with_no_changes_sends_nothing(
        self, device_config: TfiacDeviceConfig
    ) -> None:
        """Test that an empty change set is a no-op."""
        client = TfiacApiClient(device_config)
        with patch.object(client, "async_send_command", AsyncMock()) as send:
            await client.async_set_options({})

        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_options_raises_on_rejection(
        self, device_config: TfiacDeviceConfig
    ) -> None:
        """Test that a rejected command raises TfiacCommandRejectedError."""
        client = TfiacApiClient(device_config)
        rejection = "<msg><ACKSetMessage><Return>error</Return></ACKSetMessage></msg>"
        with (
            patch.object(
                client, "async_send_command", AsyncMock(return_value=rejection)
            ),
            pytest.raises(TfiacCommandRejectedError),
        ):
            await client.async_turn_on()


class TestTfiacApiClientTransport:
    """Tests exchanging datagrams with a local fake device."""

    @pytest.mark.asyncio
    async def test_round_trip_with_fake_device(
        self, device_config: TfiacDeviceConfig
    ) -> None:
        """Test a status query against a local UDP endpoint."""
        protocol = FakeDeviceProtocol()
        server, port = await start_fake_device(protocol)
        client = TfiacApiClient(
            dataclasses.replace(device_config, host="127.0.0.1", port=port)
        )
        try:
            status = await client.async_update_state()
        finally:
            client.cleanup()
            server.close()

        assert status.target_temperature == 22
        assert 'msgid="SyncStatusReq"' in protocol.received[0]
        assert 'seq="1"' in protocol.received[0]

    @pytest.mark.asyncio
    async def test_stale_sequence_is_discarded(
        self, device_config: TfiacDeviceConfig
    ) -> None:
        """Test that a response for another sequence is not used."""
        protocol = FakeDeviceProtocol(send_stale_first=True)
        server, port = await start_fake_device(protocol)
        client = TfiacApiClient(
            dataclasses.replace(device_config, host="127.0.0.1", port=port)
        )
        try:
            status = await client.async_update_state()
        finally:
            client.cleanup()
            server.close()

        # The stale reply carries SetTemp 90F (32C)
        assert status.target_temperature == 22

    @pytest.mark.asyncio
    async def test_silent_device_times_out(
        self, device_config: TfiacDeviceConfig
    ) -> None:
        """Test that an unanswered query raises TfiacTimeoutError."""
        protocol = FakeDeviceProtocol(reply=False)
        server, port = await start_fake_device(protocol)
        client = TfiacApiClient(
            dataclasses.replace(
                device_config, host="127.0.0.1", port=port, timeout=0.05, retries=0
            )
        )
        try:
            with pytest.raises(TfiacTimeoutError):
                await client.async_update_state()
        finally:
            client.cleanup()
            server.close()

        assert client.available is False
        assert len(protocol.received) == 1

    @pytest.mark.asyncio
    async def test_send_after_cleanup_raises(
        self, device_config: TfiacDeviceConfig
    ) -> None:
        """Test that a cleaned up client refuses to send."""
        client = TfiacApiClient(device_config)
        client.cleanup()

        with pytest.raises(TfiacNetworkError, match="cleaned up"):
            await client.async_send_command(MSG_STATUS_REQUEST)

    def test_cleanup_is_idempotent(self, device_config: TfiacDeviceConfig) -> None:
        """Test that cleanup can be called repeatedly."""
        client = TfiacApiClient(device_config)
        client.cleanup()
        client.cleanup()

        assert client.closed is True
