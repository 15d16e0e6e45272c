"""Pytest configuration and fixtures for TFIAC tests."""

import asyncio
import inspect
from typing import Any
from unittest.mock import Mock

import pytest
from homeassistant.const import UnitOfTemperature

from custom_components.tfiac.models import TfiacDeviceConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        """Initialize the clock at the given time."""
        self.now = start

    def __call__(self) -> float:
        """Return the current time."""
        return self.now

    def advance(self, seconds: float) -> None:
        """Move the clock forward."""
        self.now += seconds


class FakeHass:
    """Minimal Home Assistant core running jobs on the current event loop."""

    def __init__(self) -> None:
        """Initialize an empty instance."""
        self.data: dict[str, Any] = {}
        self.is_stopping = False
        self.bus = Mock()
        self.config_entries = Mock()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Return the running event loop."""
        return asyncio.get_running_loop()

    def async_create_task(
        self, target: Any, name: str | None = None, **_kwargs: Any
    ) -> asyncio.Task:
        """Schedule a coroutine as a task."""
        return self.loop.create_task(target, name=name)

    async_create_background_task = async_create_task

    def async_run_hass_job(self, hassjob: Any, *args: Any, **_kwargs: Any) -> Any:
        """Run a job, wrapping coroutine results in a task."""
        result = hassjob.target(*args)
        if inspect.iscoroutine(result):
            return self.loop.create_task(result)
        return None


def build_status_xml(
    *,
    seq: int | None = 1,
    turn_on: str = "on",
    base_mode: str = "cool",
    set_temp: str = "72",
    indoor_temp: str = "75",
    wind_speed: str = "Low",
    extra: str = "",
) -> str:
    """Build a statusUpdateMsg response.

    Args:
        seq: Sequence id attribute, or None to omit it.
        turn_on: TurnOn value.
        base_mode: BaseMode value.
        set_temp: SetTemp value in the device unit.
        indoor_temp: IndoorTemp value in the device unit.
        wind_speed: WindSpeed value.
        extra: Additional raw XML inserted into the status element.

    Returns:
        A raw XML response.

    """
    seq_attr = f' seq="{seq}"' if seq is not None else ""
    return (
        f'<msg msgid="SyncStatusResp" type="Control"{seq_attr}>'
        "<statusUpdateMsg>"
        f"<TurnOn>{turn_on}</TurnOn>"
        f"<BaseMode>{base_mode}</BaseMode>"
        f"<SetTemp>{set_temp}</SetTemp>"
        f"<IndoorTemp>{indoor_temp}</IndoorTemp>"
        f"<WindSpeed>{wind_speed}</WindSpeed>"
        f"{extra}"
        "</statusUpdateMsg></msg>"
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    """Fixture providing a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def device_config() -> TfiacDeviceConfig:
    """Fixture providing a Fahrenheit device config with fast retries."""
    return TfiacDeviceConfig(
        host="192.168.1.50",
        port=7777,
        name="Living Room AC",
        temperature_unit=UnitOfTemperature.FAHRENHEIT,
        timeout=0.5,
        retries=2,
        retry_delay=0.0,
        command_max_retries=2,
        command_retry_delay=0.0,
    )


@pytest.fixture
def sample_status_xml() -> str:
    """Fixture providing a complete status response."""
    return build_status_xml(
        extra=(
            "<WindDirection_H>off</WindDirection_H>"
            "<WindDirection_V>on</WindDirection_V>"
            "<Opt_super>off</Opt_super>"
            "<Opt_sleepMode>off</Opt_sleepMode>"
            "<Opt_eco>off</Opt_eco>"
            "<Opt_display>on</Opt_display>"
            "<Opt_beep>on</Opt_beep>"
            "<OutdoorTemp>86</OutdoorTemp>"
            "<Unknown>ignored</Unknown>"
        )
    )


@pytest.fixture
def sample_ack_xml() -> str:
    """Fixture providing a successful SetMessage acknowledgement."""
    return (
        '<msg msgid="ACKSetMessage" type="Control" seq="1">'
        "<ACKSetMessage><Return>ok</Return></ACKSetMessage></msg>"
    )


@pytest.fixture
def fake_hass() -> FakeHass:
    """Fixture providing a Home Assistant double bound to the test loop."""
    return FakeHass()
