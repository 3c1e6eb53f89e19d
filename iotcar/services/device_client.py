from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import requests
from requests.adapters import HTTPAdapter

from iotcar.constants import CONNECT_PATH, MOVE_PATH, Command
from iotcar.errors import (
    ConnectionRejectedError,
    DeviceUnreachableError,
    TransportFaultError,
)

logger = logging.getLogger(__name__)

_HEADERS = {"Content-Type": "application/json"}


@dataclass(frozen=True)
class Ack:
    command: Command
    body: str
    status_code: int


def base_url(address: str) -> str:
    """'10.0.0.5' -> 'http://10.0.0.5'; an explicit scheme is kept."""
    address = address.strip().rstrip("/")
    if address.startswith(("http://", "https://")):
        return address
    return f"http://{address}"


class DeviceClient:
    """
    HTTP transport for the car's command API.

    - GET /connect               -> {"success": bool, "ip": str}
    - GET /move?direction=<cmd>  -> opaque text acknowledgement

    requests is blocking, so every call runs on a fixed pool of worker threads
    and the caller's event loop never waits on the socket. `timeout` bounds a
    call's whole lifetime, including time spent waiting for a free worker; a
    call that has not started by then is dropped and never reaches the device.
    """

    def __init__(self, timeout: float = 2.0, pool_size: int = 8) -> None:
        self.timeout = timeout
        self._session = self._create_session(pool_size)
        self._executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="iotcar-http")

    @staticmethod
    def _create_session(pool_size: int) -> requests.Session:
        session = requests.Session()
        # No transport-level retries: a failed command is reported, never replayed
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool_size, max_retries=0)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def close(self) -> None:
        """Drop queued calls, wait for running ones, then close the HTTP session."""
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._session.close()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(self._executor, fn, *args), timeout=self.timeout
        )

    # ---- Handshake ----

    def _handshake_blocking(self, address: str) -> str:
        url = base_url(address) + CONNECT_PATH
        try:
            resp = self._session.get(url, headers=_HEADERS, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise DeviceUnreachableError(address, f"timed out after {self.timeout:.1f}s") from e
        except requests.exceptions.RequestException as e:
            raise DeviceUnreachableError(address, f"network error: {e}") from e

        if not resp.ok:
            raise ConnectionRejectedError(address, f"HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise DeviceUnreachableError(address, "malformed handshake response") from e
        if not isinstance(data, dict):
            raise DeviceUnreachableError(address, "malformed handshake response")
        if not data.get("success"):
            raise ConnectionRejectedError(address, "device refused the connection")

        confirmed = data.get("ip")
        return str(confirmed) if confirmed else address

    async def handshake(self, address: str) -> str:
        """Request a session; returns the address confirmed by the device."""
        try:
            return await self._run(self._handshake_blocking, address)
        except asyncio.TimeoutError as e:
            raise DeviceUnreachableError(address, f"timed out after {self.timeout:.1f}s") from e

    # ---- Commands ----

    def _move_blocking(self, address: str, command: Command) -> Ack:
        url = base_url(address) + MOVE_PATH
        try:
            resp = self._session.get(
                url, params={"direction": command}, headers=_HEADERS, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise TransportFaultError(command, f"timed out after {self.timeout:.1f}s") from e
        except requests.exceptions.HTTPError as e:
            raise TransportFaultError(command, f"HTTP {e.response.status_code}") from e
        except requests.exceptions.RequestException as e:
            raise TransportFaultError(command, f"network error: {e}") from e
        logger.debug("%s -> %s", command, resp.text.strip())
        return Ack(command=command, body=resp.text, status_code=resp.status_code)

    async def move(self, address: str, command: Command) -> Ack:
        try:
            return await self._run(self._move_blocking, address, command)
        except asyncio.TimeoutError as e:
            raise TransportFaultError(command, f"timed out after {self.timeout:.1f}s") from e
