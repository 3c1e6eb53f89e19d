from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from iotcar.config import ControllerConfig
from iotcar.controller import CarController
from tests.utils.fake_device import DeviceBehavior, start_fake_device
from tests.utils.recorder import RecorderClient

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator


@pytest.fixture
def recorder() -> RecorderClient:
    return RecorderClient()


@pytest.fixture
def events_seen() -> list:
    return []


@pytest.fixture
async def controller(recorder: RecorderClient, events_seen: list) -> AsyncIterator[CarController]:
    """
    Controller wired to the recorder transport. The tick interval is long so
    tests drive ticks by hand via controller.loop.tick().
    """
    ctrl = CarController(
        config=ControllerConfig(tick_interval_s=60.0, request_timeout_s=1.0),
        client=recorder,  # type: ignore[arg-type]
    )
    ctrl.events.subscribe(events_seen.append)
    try:
        yield ctrl
    finally:
        await ctrl.shutdown(timeout=1.0)


@pytest.fixture
async def connected(controller: CarController) -> CarController:
    await controller.connect("10.0.0.5")
    await controller.events.flush()
    return controller


@pytest.fixture
def fake_device() -> Iterator[tuple[str, DeviceBehavior]]:
    """Real HTTP fake car on localhost; yields (address, behavior)."""
    address, behavior, stop = start_fake_device()
    try:
        yield address, behavior
    finally:
        stop()
