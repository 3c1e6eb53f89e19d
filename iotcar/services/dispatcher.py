from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from iotcar.common.logging_config import TRACE_ENABLED
from iotcar.errors import CommandError, NotConnectedError, TransportFaultError
from iotcar.services.events import CommandFailed

if TYPE_CHECKING:
    from collections.abc import Callable

    from iotcar.constants import Command
    from iotcar.services.device_client import Ack, DeviceClient
    from iotcar.services.events import EventBus
    from iotcar.state import ControlState, DeviceSession

logger = logging.getLogger(__name__)


class CommandSender:
    """
    Issues one request per command against the session's device.

    send() awaits the result and raises; dispatch() is fire-and-forget and
    reports a failure once through the event bus. At most one dispatched
    request per command is outstanding: while one is still in flight, later
    ticks skip that command instead of queueing behind it.

    Every session gets a new generation. Results that land after their
    session ended still count in `sent`/`failed` but neither touch the
    consecutive-failure count nor publish anything.
    """

    def __init__(
        self,
        session: DeviceSession,
        client: DeviceClient,
        events: EventBus,
        max_consecutive_failures: int = 0,
        on_failure_limit: Callable[[], None] | None = None,
    ) -> None:
        self.session = session
        self.client = client
        self.events = events
        self.max_consecutive_failures = max_consecutive_failures
        self.on_failure_limit = on_failure_limit
        self.consecutive_failures = 0
        self.generation = 0
        self.sent = 0
        self.failed = 0
        self.skipped = 0
        self._in_flight: set[asyncio.Task] = set()
        # Latest dispatched task per command for the current generation
        self._latest: dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def reset(self) -> None:
        """Start a new generation; called when a session opens or closes."""
        self.generation += 1
        self.consecutive_failures = 0
        self._latest.clear()

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def _require_address(self, command: Command) -> str:
        if not self.session.connected:
            raise NotConnectedError(command)
        return self.session.address

    async def _transmit(self, address: str, command: Command, generation: int) -> Ack:
        try:
            ack = await self.client.move(address, command)
        except TransportFaultError:
            self.failed += 1
            if self.is_current(generation):
                self.consecutive_failures += 1
            raise
        self.sent += 1
        if self.is_current(generation):
            self.consecutive_failures = 0
        return ack

    def _check_failure_limit(self) -> None:
        limit = self.max_consecutive_failures
        if limit <= 0 or self.consecutive_failures < limit:
            return
        logger.warning("%d consecutive command failures, giving up on session", self.consecutive_failures)
        self.consecutive_failures = 0
        if self.on_failure_limit is not None:
            self.on_failure_limit()

    async def send(self, command: Command) -> Ack:
        address = self._require_address(command)
        return await self._transmit(address, command, self.generation)

    async def _transmit_and_report(self, address: str, command: Command, generation: int) -> None:
        try:
            await self._transmit(address, command, generation)
        except CommandError as e:
            if not self.is_current(generation):
                logger.debug("Dropping %s failure from an ended session: %s", command, e.reason)
                return
            self.events.publish(CommandFailed(command=command, reason=e.reason))
            self._check_failure_limit()

    def report_failure(self, error: CommandError, generation: int | None = None) -> None:
        """Publish a failure raised by an awaited send() and apply the failure policy."""
        if generation is not None and not self.is_current(generation):
            return
        self.events.publish(CommandFailed(command=error.command, reason=error.reason))
        if isinstance(error, TransportFaultError):
            self._check_failure_limit()

    def dispatch(self, command: Command) -> asyncio.Task | None:
        """Spawn a send for `command`; None when the previous one is still in flight."""
        address = self._require_address(command)
        previous = self._latest.get(command)
        if previous is not None and not previous.done():
            self.skipped += 1
            if TRACE_ENABLED:
                logger.trace("skip %s: previous request still in flight", command)  # type: ignore[attr-defined]
            return None
        task = asyncio.create_task(
            self._transmit_and_report(address, command, self.generation),
            name=f"iotcar-send-{command}",
        )
        self._latest[command] = task
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for requests already issued; never cancels them. True when all finished."""
        pending = set(self._in_flight)
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending


class DispatchLoop:
    """
    Idle/Active ticker. While active, every tick snapshots the control state
    and dispatches one command per held direction without awaiting them.
    Directions whose previous request is still in flight are skipped.
    """

    CADENCE_TOLERANCE_S: float = 0.02

    def __init__(
        self,
        session: DeviceSession,
        control: ControlState,
        sender: CommandSender,
        interval_s: float = 0.2,
    ) -> None:
        self.session = session
        self.control = control
        self.sender = sender
        self.interval_s = interval_s
        self.ticks = 0
        self._task: asyncio.Task | None = None
        self._cadence: dict[str, float] = {}

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self._cadence = {"last_ts": 0.0, "accum": 0.0, "count": 0.0}
        self._task = asyncio.create_task(self._run(), name="iotcar-dispatch")
        logger.debug("Dispatch loop active (%.3f s)", self.interval_s)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Dispatch loop idle after %d ticks", self.ticks)

    def tick(self) -> list[asyncio.Task]:
        if not self.session.connected:
            return []
        held = self.control.snapshot()
        self.ticks += 1
        if TRACE_ENABLED:
            logger.trace("tick %d: %s", self.ticks, ",".join(held) or "-")  # type: ignore[attr-defined]
        tasks = (self.sender.dispatch(d) for d in held)
        return [t for t in tasks if t is not None]

    def _cadence_tick(self, now: float) -> None:
        stats = self._cadence
        last = stats.get("last_ts", 0.0)
        if last > 0.0:
            stats["accum"] = stats.get("accum", 0.0) + (now - last)
            stats["count"] = stats.get("count", 0.0) + 1.0
            window = max(1.0, round(1.0 / self.interval_s))
            if stats["count"] >= window:
                avg = stats["accum"] / stats["count"]
                if abs(avg - self.interval_s) > self.CADENCE_TOLERANCE_S:
                    logger.warning(
                        "[CADENCE] avg dt=%.4f s (target=%.4f s)", avg, self.interval_s
                    )
                stats["accum"] = 0.0
                stats["count"] = 0.0
        stats["last_ts"] = now

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval_s
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            now = loop.time()
            try:
                self.tick()
            except Exception as e:
                logger.error("Dispatch tick failed: %s", e)
            self._cadence_tick(now)
            next_tick += self.interval_s
            # Fell behind (blocked loop): resume the grid instead of bursting
            if next_tick <= now:
                next_tick = now + self.interval_s
