from __future__ import annotations


class IotCarError(Exception):
    """Base class for every error raised by the controller core."""


# ---- Connection errors (terminal for the attempt) ----


class DeviceConnectionError(IotCarError):
    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"{address}: {reason}")
        self.address = address
        self.reason = reason


class ConnectionRejectedError(DeviceConnectionError):
    """The device answered the handshake but refused the session."""


class DeviceUnreachableError(DeviceConnectionError):
    """Timeout, DNS/network error or a malformed handshake response."""


# ---- Command errors ----


class CommandError(IotCarError):
    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"{command}: {reason}")
        self.command = command
        self.reason = reason


class NotConnectedError(CommandError):
    """Raised before any request is made when no session is established."""

    def __init__(self, command: str) -> None:
        super().__init__(command, "not connected")


class TransportFaultError(CommandError):
    """The move request failed in transit or got a non-success response."""
