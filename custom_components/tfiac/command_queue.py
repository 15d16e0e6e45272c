"""Per-device FIFO command queue for TFIAC air conditioners."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .api import TfiacApiClientError
from .const import (
    DEFAULT_COMMAND_MAX_RETRIES,
    DEFAULT_COMMAND_RETRY_DELAY,
    EVENT_ERROR,
    EVENT_EXECUTED,
    EVENT_EXECUTING,
    EVENT_MAX_RETRIES_REACHED,
    EVENT_QUEUE_CLEARED,
    EVENT_QUEUE_EMPTY,
    EVENT_QUEUED,
    EVENT_RETRY,
)
from .models import CommandResult

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .api import TfiacApiClient

_LOGGER = logging.getLogger(__name__)

QUEUE_EVENTS = (
    EVENT_QUEUED,
    EVENT_EXECUTING,
    EVENT_EXECUTED,
    EVENT_ERROR,
    EVENT_RETRY,
    EVENT_MAX_RETRIES_REACHED,
    EVENT_QUEUE_EMPTY,
    EVENT_QUEUE_CLEARED,
)


class TfiacQueueExhaustedError(TfiacApiClientError):
    """Command still failing after all queue retries."""

    def __init__(self, message: str, last_error: Exception | None = None) -> None:
        """Initialize the error with the failure of the last attempt."""
        super().__init__(message)
        self.last_error = last_error


@dataclass(slots=True)
class _QueuedCommand:
    command_id: int
    changes: dict[str, Any]
    enqueued_at: float
    result: asyncio.Future[CommandResult] = field(repr=False)
    attempts: int = 0


class CommandQueue:
    """Serializes set commands for one device.

    Commands run strictly in enqueue order with at most one in flight.
    Failed commands are retried a bounded number of times and every command
    ends in exactly one terminal event: executed or maxRetriesReached.
    Each failed attempt that will be retried emits error, then retry.
    Lifecycle events: queued, executing (per attempt), queueEmpty once
    the worker drains, queueCleared after clear().
    """

    def __init__(
        self,
        api: TfiacApiClient,
        *,
        max_retries: int = DEFAULT_COMMAND_MAX_RETRIES,
        retry_delay: float = DEFAULT_COMMAND_RETRY_DELAY,
    ) -> None:
        """Initialize the queue.

        Args:
            api: Client used to send commands.
            max_retries: Retries after the first failed attempt.
            retry_delay: Seconds to wait between attempts.

        """
        self._api = api
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._queue: deque[_QueuedCommand] = deque()
        self._ids = itertools.count(1)
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: _QueuedCommand | None = None
        self._closed = False
        self._listeners: dict[str, list[Callable[[dict[str, Any]], None]]] = {
            event: [] for event in QUEUE_EVENTS
        }

    @property
    def pending(self) -> int:
        """Return the number of queued and in-flight commands."""
        return len(self._queue) + (1 if self._in_flight is not None else 0)

    def add_listener(
        self, event: str, callback: Callable[[dict[str, Any]], None]
    ) -> Callable[[], None]:
        """Register a callback for a queue event.

        Args:
            event: One of the names in QUEUE_EVENTS.
            callback: Function called with the event payload.

        Returns:
            A function to unregister the callback.

        Raises:
            ValueError: If the event name is unknown.

        """
        if event not in self._listeners:
            error_msg = f"Unknown queue event: {event}"
            raise ValueError(error_msg)

        callbacks = self._listeners[event]
        callbacks.append(callback)

        def unregister() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unregister

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                _LOGGER.exception("Error in %s callback", event)

    @staticmethod
    def _payload(command: _QueuedCommand, **extra: Any) -> dict[str, Any]:  # noqa: ANN401
        return {
            "command_id": command.command_id,
            "changes": command.changes,
            "attempt": command.attempts,
            **extra,
        }

    async def enqueue_command(self, changes: Mapping[str, Any]) -> CommandResult:
        """Queue a set command and wait for its terminal outcome.

        Args:
            changes: Mapping of canonical field name to value.

        Returns:
            CommandResult describing the outcome.

        Raises:
            TfiacApiClientError: If the queue has been cleaned up.

        """
        if self._closed:
            error_msg = "Command queue has been cleaned up"
            raise TfiacApiClientError(error_msg)

        loop = asyncio.get_running_loop()
        command = _QueuedCommand(
            command_id=next(self._ids),
            changes=dict(changes),
            enqueued_at=loop.time(),
            result=loop.create_future(),
        )
        self._queue.append(command)
        _LOGGER.debug(
            "Queued command %d (%d pending): %s",
            command.command_id,
            self.pending,
            command.changes,
        )
        self._emit(EVENT_QUEUED, self._payload(command))

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._async_process_queue())

        return await command.result

    async def _async_process_queue(self) -> None:
        while self._queue:
            command = self._queue.popleft()
            self._in_flight = command
            try:
                result = await self._async_execute(command)
            except Exception as err:
                _LOGGER.exception(
                    "Unexpected error executing command %d", command.command_id
                )
                result = self._give_up(command, err)
            finally:
                self._in_flight = None
            if not command.result.done():
                command.result.set_result(result)

        if not self._closed:
            _LOGGER.debug("Command queue drained")
            self._emit(EVENT_QUEUE_EMPTY, {})

    async def _async_execute(self, command: _QueuedCommand) -> CommandResult:
        attempts = self._max_retries + 1
        last_error: TfiacApiClientError | None = None

        while command.attempts < attempts:
            command.attempts += 1
            self._emit(EVENT_EXECUTING, self._payload(command))
            try:
                await self._api.async_set_options(command.changes)
            except TfiacApiClientError as err:
                last_error = err
                if command.attempts >= attempts or self._closed:
                    break
                _LOGGER.warning(
                    "Command %d failed (attempt %d/%d), retrying in %.1fs: %s",
                    command.command_id,
                    command.attempts,
                    attempts,
                    self._retry_delay,
                    err,
                )
                self._emit(EVENT_ERROR, self._payload(command, error=err))
                self._emit(EVENT_RETRY, self._payload(command, error=err))
                await asyncio.sleep(self._retry_delay)
            else:
                _LOGGER.debug(
                    "Command %d executed after %d attempt(s)",
                    command.command_id,
                    command.attempts,
                )
                self._emit(EVENT_EXECUTED, self._payload(command))
                return CommandResult(command.command_id, True, command.attempts)

        return self._give_up(command, last_error)

    def _give_up(
        self, command: _QueuedCommand, last_error: Exception | None
    ) -> CommandResult:
        error_msg = (
            f"Command {command.command_id} failed after {command.attempts} "
            f"attempt(s): {last_error}"
        )
        exhausted = TfiacQueueExhaustedError(error_msg, last_error)
        _LOGGER.error(error_msg)
        self._emit(EVENT_MAX_RETRIES_REACHED, self._payload(command, error=exhausted))
        return CommandResult(command.command_id, False, command.attempts, exhausted)

    def clear(self) -> int:
        """Fail every command that has not started yet.

        Returns:
            The number of commands removed.

        """
        cleared = 0
        while self._queue:
            command = self._queue.popleft()
            cleared += 1
            if not command.result.done():
                error_msg = f"Command {command.command_id} cleared before execution"
                command.result.set_result(
                    CommandResult(
                        command.command_id,
                        False,
                        0,
                        TfiacQueueExhaustedError(error_msg),
                    )
                )
        _LOGGER.debug("Cleared %d queued command(s)", cleared)
        self._emit(EVENT_QUEUE_CLEARED, {"cleared": cleared})
        return cleared

    def cleanup(self) -> None:
        """Cancel the worker and drop queued commands. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None

        if self._in_flight is not None and not self._in_flight.result.done():
            self._in_flight.result.cancel()
        self._in_flight = None

        for command in self._queue:
            if not command.result.done():
                command.result.cancel()
        self._queue.clear()

        for callbacks in self._listeners.values():
            callbacks.clear()
