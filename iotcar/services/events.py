"""
Notifier events and the channel that carries them out of the core.

The core never presents anything itself: it publishes events and whoever
subscribed (toast layer, log sink, tests) decides what to do with them.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionSucceeded:
    address: str


@dataclass(frozen=True)
class ConnectionFailed:
    address: str
    reason: str
    rejected: bool  # True: device said no, False: unreachable/transport fault


@dataclass(frozen=True)
class CommandFailed:
    command: str
    reason: str


@dataclass(frozen=True)
class Disconnected:
    address: str
    reason: str


Event = Union[ConnectionSucceeded, ConnectionFailed, CommandFailed, Disconnected]


class EventBus:
    """
    Ordered, non-blocking event channel.

    publish() only enqueues; delivery happens in the pump task (run()) or on
    an explicit flush(). A subscriber that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers: list[Callable[[Event], Awaitable[None] | None]] = []
        self._pump_task: asyncio.Task | None = None

    def subscribe(self, callback: Callable[[Event], Awaitable[None] | None]) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Event], Awaitable[None] | None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, event: Event) -> None:
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _deliver(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Event subscriber %r failed on %s: %s", callback, event, e)

    async def flush(self) -> None:
        """Deliver everything queued so far."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            await self._deliver(event)

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            await self._deliver(event)

    def start(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self.run(), name="iotcar-events")

    async def stop(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush()


class LoggingNotifier:
    """Subscriber writing every event to the log."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logging.getLogger("iotcar.notify")

    def __call__(self, event: Event) -> None:
        if isinstance(event, ConnectionSucceeded):
            self.log.info("Connected to device at %s", event.address)
        elif isinstance(event, ConnectionFailed):
            kind = "rejected" if event.rejected else "unreachable"
            self.log.warning("Connection to %s failed (%s): %s", event.address, kind, event.reason)
        elif isinstance(event, CommandFailed):
            self.log.warning("Command %s failed: %s", event.command, event.reason)
        elif isinstance(event, Disconnected):
            self.log.info("Disconnected from %s (%s)", event.address, event.reason)
