from __future__ import annotations

import asyncio
import logging

from iotcar.config import ControllerConfig
from iotcar.constants import Direction
from iotcar.errors import (
    CommandError,
    ConnectionRejectedError,
    DeviceConnectionError,
    NotConnectedError,
)
from iotcar.services.device_client import Ack, DeviceClient
from iotcar.services.dispatcher import CommandSender, DispatchLoop
from iotcar.services.events import (
    ConnectionFailed,
    ConnectionSucceeded,
    Disconnected,
    EventBus,
)
from iotcar.state import ControlState, DeviceSession, check_direction

logger = logging.getLogger(__name__)


class CarController:
    """
    Single-device remote control session.

    Public surface for input devices: connect(), disconnect(), press(),
    release(), stop_all(), plus the is_connected/address accessors. Results
    that nobody awaits (per-tick sends, connection outcomes) are published on
    `events`.
    """

    def __init__(
        self,
        config: ControllerConfig | None = None,
        client: DeviceClient | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.config = config or ControllerConfig.from_env()
        self.client = client or DeviceClient(timeout=self.config.request_timeout_s)
        self.events = events or EventBus()
        self.session = DeviceSession()
        self.control = ControlState()
        self.sender = CommandSender(
            self.session,
            self.client,
            self.events,
            max_consecutive_failures=self.config.max_consecutive_failures,
            on_failure_limit=lambda: self.disconnect(reason="transport"),
        )
        self.loop = DispatchLoop(
            self.session, self.control, self.sender, interval_s=self.config.tick_interval_s
        )

    # ---- Read accessors ----

    @property
    def is_connected(self) -> bool:
        return self.session.connected

    @property
    def address(self) -> str:
        return self.session.address

    def active_directions(self) -> tuple[Direction, ...]:
        return self.control.snapshot()

    # ---- Connection lifecycle ----

    async def connect(self, address: str) -> str:
        """Handshake with the device; on success the dispatch loop goes active."""
        address = (address or "").strip()
        if not address:
            raise ValueError("Device address is required")
        if self.session.connected:
            self.disconnect(reason="reconnect")

        try:
            confirmed = await self.client.handshake(address)
        except DeviceConnectionError as e:
            self.session.close()
            self.events.publish(
                ConnectionFailed(
                    address=address,
                    reason=e.reason,
                    rejected=isinstance(e, ConnectionRejectedError),
                )
            )
            logger.info("Connect to %s failed: %s", address, e.reason)
            raise

        # Requests go to the address we reached; the device's own ip is informational
        self.session.open(address)
        self.sender.reset()
        self.loop.start()
        self.events.publish(ConnectionSucceeded(address=confirmed))
        logger.info("Connected to %s (device reports %s)", address, confirmed)
        return confirmed

    def disconnect(self, reason: str = "user") -> None:
        """Idempotent: stop ticking, drop held input, close the session."""
        try:
            self.loop.stop()
        finally:
            self.control.clear()
            if self.session.connected:
                self.session.close()
                self.sender.reset()
                self.events.publish(Disconnected(address=self.session.address, reason=reason))
                logger.info("Disconnected from %s (%s)", self.session.address, reason)

    async def shutdown(self, timeout: float | None = None) -> None:
        """Go idle, give in-flight requests `timeout` to finish, then release the transport."""
        try:
            self.disconnect(reason="shutdown")
            if timeout is None:
                timeout = self.config.request_timeout_s
            if not await self.sender.wait_idle(timeout=timeout):
                logger.warning("%d requests still in flight at shutdown", self.sender.in_flight)
        finally:
            await self.events.stop()
            # close() waits for worker threads before closing the HTTP session
            await asyncio.to_thread(self.client.close)

    # ---- Event surface ----

    def press(self, direction: str) -> None:
        d = check_direction(direction)
        if not self.session.connected:
            raise NotConnectedError(d)
        if self.control.set(d, True):
            logger.debug("press %s", d)

    def release(self, direction: str) -> None:
        d = check_direction(direction)
        if not self.session.connected:
            raise NotConnectedError(d)
        if self.control.set(d, False):
            logger.debug("release %s", d)

    async def stop_all(self) -> Ack:
        """One immediate stop; held flags are left as they are."""
        generation = self.sender.generation
        try:
            return await self.sender.send("stop")
        except NotConnectedError:
            raise
        except CommandError as e:
            self.sender.report_failure(e, generation)
            raise
