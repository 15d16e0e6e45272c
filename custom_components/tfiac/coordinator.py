"""Coordinator for TFIAC air conditioner integration."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from homeassistant.core import callback
from homeassistant.helpers.debounce import Debouncer
from homeassistant.helpers.event import async_call_later
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .api import TfiacApiClient, TfiacApiClientError
from .command_queue import CommandQueue
from .const import DOMAIN, EVENT_ERROR, EVENT_EXECUTED, EVENT_MAX_RETRIES_REACHED
from .device_state import DeviceState
from .models import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

    from .models import CommandResult, StatusRecord, TfiacDeviceConfig

_LOGGER = logging.getLogger(__name__)


class TfiacDeviceCoordinator(DataUpdateCoordinator[DeviceState]):
    """Owns the canonical state of one device and keeps it in sync.

    Polls the device on the coordinator schedule, slowing down after
    repeated failures, turns desired states into minimal set commands on the
    command queue, and re-polls shortly after every executed command.
    Polling runs while at least one listener is subscribed.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        config: TfiacDeviceConfig,
        api: TfiacApiClient | None = None,
        command_queue: CommandQueue | None = None,
        *,
        config_entry: ConfigEntry | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            hass: Home Assistant instance.
            config: Device configuration.
            api: Client to use, created from config when omitted.
            command_queue: Queue to use, created around the client when omitted.
            config_entry: Entry owning the coordinator, if any.
            clock: Monotonic time source shared with the device state.

        """
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=f"{DOMAIN}_{config.host}",
            update_interval=timedelta(seconds=config.update_interval),
            always_update=False,
        )
        self._config = config
        self._api = api or TfiacApiClient(config)
        self._queue = command_queue or CommandQueue(
            self._api,
            max_retries=config.command_max_retries,
            retry_delay=config.command_retry_delay,
        )
        self._clock = clock or time.monotonic
        self._state = DeviceState(
            protection_window=config.protection_window,
            auto_fan_stand_in=config.auto_fan_stand_in,
            clock=self._clock,
        )
        self.data = self._state
        self._state.add_listener(self._on_state_changed)

        self._cache: CacheEntry | None = None
        self._consecutive_failed_polls = 0
        self._is_updating = False
        self._closed = False
        self._unsub_quick_refresh: Callable[[], None] | None = None
        self._apply_tasks: set[asyncio.Task[Any]] = set()
        self._pending_desired: DeviceState | None = None
        self._apply_debouncer = Debouncer(
            hass,
            _LOGGER,
            cooldown=config.debounce_delay,
            immediate=False,
            function=self._flush_pending_state,
        )
        self._queue_unsubscribers = [
            self._queue.add_listener(EVENT_EXECUTED, self._on_command_executed),
            self._queue.add_listener(EVENT_ERROR, self._on_command_error),
            self._queue.add_listener(
                EVENT_MAX_RETRIES_REACHED, self._on_command_max_retries
            ),
        ]

    @property
    def config(self) -> TfiacDeviceConfig:
        """Return the device configuration."""
        return self._config

    @property
    def api(self) -> TfiacApiClient:
        """Return the protocol client."""
        return self._api

    @property
    def command_queue(self) -> CommandQueue:
        """Return the command queue."""
        return self._queue

    @property
    def available(self) -> bool:
        """Return True while the device answers."""
        return self._api.available

    @property
    def consecutive_failed_polls(self) -> int:
        """Return the number of polls failed in a row."""
        return self._consecutive_failed_polls

    @property
    def is_degraded(self) -> bool:
        """Return True while polling at the degraded interval."""
        return (
            self._consecutive_failed_polls >= self._config.max_consecutive_failed_polls
        )

    @property
    def poll_interval(self) -> float:
        """Return the delay before the next regular poll."""
        if self.is_degraded:
            return self._config.degraded_update_interval
        return self._config.update_interval

    @property
    def is_updating(self) -> bool:
        """Return True while a poll is in flight."""
        return self._is_updating

    def get_device_state(self) -> DeviceState:
        """Return the canonical state by reference; clone before mutating."""
        return self._state

    def add_listener(
        self, callback: Callable[[dict[str, Any]], None]
    ) -> Callable[[], None]:
        """Subscribe to canonical state changes with a plain snapshot.

        Args:
            callback: Function called with a plain snapshot after a change.

        Returns:
            A function to unregister the callback.

        """
        return self._state.add_listener(callback)

    @callback
    def _on_state_changed(self, _snapshot: dict[str, Any]) -> None:
        self.async_update_listeners()

    async def async_start(self) -> None:
        """Perform the first poll.

        Regular polling starts once an entity subscribes.

        Raises:
            TfiacApiClientError: If the device cannot be read.

        """
        status = await self._api.async_update_state()
        self._record_poll_success(status)
        _LOGGER.info(
            "Connected to %s at %s:%s", self._config.name, *self._config.address
        )

    async def _async_update_data(self) -> DeviceState:
        """Poll the device and merge its report into the canonical state."""
        if self._closed or self._is_updating:
            _LOGGER.debug("Update already in progress, skipping")
            return self._state

        self._is_updating = True
        try:
            status = await self._api.async_update_state()
        except TfiacApiClientError as err:
            self._record_poll_failure(str(err))
            error_msg = f"Error polling {self._config.host}: {err}"
            raise UpdateFailed(error_msg) from err
        except Exception:
            self._record_poll_failure("unexpected error")
            raise
        finally:
            self._is_updating = False

        if status is None:
            self._record_poll_failure("empty status")
            error_msg = f"Empty status from {self._config.host}"
            raise UpdateFailed(error_msg)

        self._record_poll_success(status)
        return self._state

    async def async_update_device_state(
        self, is_quick_refresh: bool = False  # noqa: FBT001, FBT002
    ) -> DeviceState:
        """Poll the device now and reschedule the regular poll.

        Overlapping calls are no-ops. Failures are logged and counted by the
        coordinator, never raised.

        Args:
            is_quick_refresh: True when triggered after an executed command.

        Returns:
            The canonical state.

        """
        if self._closed or self._is_updating:
            return self._state

        _LOGGER.debug(
            "Polling %s (%s)",
            self._config.host,
            "quick refresh" if is_quick_refresh else "on demand",
        )
        await self.async_refresh()
        return self._state

    def _record_poll_success(self, status: StatusRecord) -> None:
        if self.is_degraded:
            _LOGGER.info(
                "%s responded again, restoring %ss poll interval",
                self._config.host,
                self._config.update_interval,
            )
            self.update_interval = timedelta(seconds=self._config.update_interval)
        self._consecutive_failed_polls = 0
        self._cache = CacheEntry(
            last_status=status,
            fetched_at=self._clock(),
            ttl=self._config.update_interval,
        )
        self._state.ingest_wire_status(status)

    def _record_poll_failure(self, reason: str) -> None:
        self._consecutive_failed_polls += 1
        if self._cache is not None:
            self._cache.consecutive_failed_polls = self._consecutive_failed_polls
        _LOGGER.warning(
            "Failed to poll %s (%d in a row): %s",
            self._config.host,
            self._consecutive_failed_polls,
            reason,
        )
        if (
            self._consecutive_failed_polls
            == self._config.max_consecutive_failed_polls
        ):
            _LOGGER.warning(
                "%s unresponsive, switching to degraded %ss poll interval",
                self._config.host,
                self._config.degraded_update_interval,
            )
            self.update_interval = timedelta(
                seconds=self._config.degraded_update_interval
            )

    async def async_get_status(self) -> StatusRecord | None:
        """Return the last status, polling when the cached one has expired."""
        if (
            self._cache is not None
            and self._cache.last_status is not None
            and self._clock() - self._cache.fetched_at < self._cache.ttl
        ):
            return self._cache.last_status

        await self.async_update_device_state()
        return self._cache.last_status if self._cache is not None else None

    def clear_cache(self) -> None:
        """Forget the cached status so the next read polls the device."""
        self._cache = None

    @callback
    def schedule_refresh(self) -> None:
        """(Re)arm the regular poll."""
        if not self._closed:
            self._schedule_refresh()

    @callback
    def schedule_quick_refresh(self) -> None:
        """(Re)arm the quick refresh, replacing any pending one."""
        if self._unsub_quick_refresh is not None:
            self._unsub_quick_refresh()
            self._unsub_quick_refresh = None
        if self._closed:
            return
        self._unsub_quick_refresh = async_call_later(
            self.hass, self._config.quick_refresh_delay, self._async_quick_refresh
        )

    async def _async_quick_refresh(self, _now: datetime) -> None:
        self._unsub_quick_refresh = None
        await self.async_update_device_state(is_quick_refresh=True)

    async def async_apply_state_to_device(
        self, desired: DeviceState
    ) -> CommandResult | None:
        """Send the minimal command moving the device to the desired state.

        Only the fields actually sent are adopted into the canonical state
        once the command succeeds.

        Args:
            desired: A clone of the canonical state mutated by the caller.

        Returns:
            The command outcome, or None if nothing needed to be sent.

        Raises:
            ValueError: If desired is the canonical instance itself.

        """
        if desired is self._state:
            error_msg = "Desired state must be a clone of the canonical state"
            raise ValueError(error_msg)

        changes = self._state.diff(desired)
        force_sleep_clear = desired.force_sleep_clear
        desired.force_sleep_clear = False

        if not changes and not force_sleep_clear:
            _LOGGER.debug("Desired state matches current state, nothing to send")
            return None

        # Firmware may drop sleep as a side effect of other fields
        changes["sleep_mode"] = desired.sleep_mode
        _LOGGER.debug("Applying changes to %s: %s", self._config.host, changes)

        try:
            result = await self._queue.enqueue_command(changes)
        except TfiacApiClientError as err:
            _LOGGER.warning("Unable to queue command for %s: %s", self._config.host, err)
            return None

        if result.success:
            self._state.ingest_canonical_snapshot(desired, fields=changes)
        return result

    def clone_desired_state(self) -> DeviceState:
        """Return a clone to mutate, starting from any pending debounced state."""
        if self._pending_desired is not None:
            return self._pending_desired.clone()
        return self._state.clone()

    @callback
    def schedule_apply_state(self, desired: DeviceState) -> None:
        """Apply a desired state after the debounce delay.

        States submitted within the delay are coalesced and only the latest
        is applied. A pending sleep clear request is carried over.

        Args:
            desired: A clone of the canonical state mutated by the caller.

        """
        if desired is self._state:
            error_msg = "Desired state must be a clone of the canonical state"
            raise ValueError(error_msg)

        if self._pending_desired is not None and self._pending_desired.force_sleep_clear:
            desired.force_sleep_clear = True
        self._pending_desired = desired
        self._apply_debouncer.async_schedule_call()

    @callback
    def _flush_pending_state(self) -> None:
        desired = self._pending_desired
        self._pending_desired = None
        if desired is None or self._closed:
            return
        task = self.hass.async_create_task(
            self.async_apply_state_to_device(desired),
            f"{self.name} apply debounced state",
        )
        self._apply_tasks.add(task)
        task.add_done_callback(self._apply_tasks.discard)

    def _on_command_executed(self, payload: dict[str, Any]) -> None:
        _LOGGER.debug("Command %s executed, scheduling quick refresh", payload["command_id"])
        self.schedule_quick_refresh()

    def _on_command_error(self, payload: dict[str, Any]) -> None:
        _LOGGER.debug(
            "Command %s attempt %s failed: %s",
            payload["command_id"],
            payload["attempt"],
            payload["error"],
        )
        self.schedule_refresh()

    def _on_command_max_retries(self, payload: dict[str, Any]) -> None:
        _LOGGER.error(
            "Giving up on command %s for %s: %s",
            payload["command_id"],
            self._config.host,
            payload["error"],
        )
        self.schedule_refresh()

    async def async_shutdown(self) -> None:
        """Cancel timers and tasks and release the queue and client.

        Safe to call repeatedly.
        """
        if self._closed:
            return
        self._closed = True
        _LOGGER.debug("Shutting down coordinator for %s", self._config.host)

        if self._unsub_quick_refresh is not None:
            self._unsub_quick_refresh()
            self._unsub_quick_refresh = None
        self._apply_debouncer.async_shutdown()
        self._pending_desired = None
        for task in list(self._apply_tasks):
            task.cancel()
        self._apply_tasks.clear()

        for unsubscribe in self._queue_unsubscribers:
            unsubscribe()
        self._queue_unsubscribers.clear()

        self._queue.cleanup()
        self._api.cleanup()
        await super().async_shutdown()
