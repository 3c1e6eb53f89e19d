from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pytest

from iotcar.config import ControllerConfig
from iotcar.constants import DIRECTIONS
from iotcar.controller import CarController
from iotcar.errors import NotConnectedError
from iotcar.services.events import CommandFailed, Disconnected

if TYPE_CHECKING:
    from tests.utils.recorder import RecorderClient


async def _tick(ctrl: CarController) -> None:
    ctrl.loop.tick()
    await ctrl.sender.wait_idle(timeout=1.0)
    await ctrl.events.flush()


@pytest.mark.unit
@pytest.mark.parametrize("direction", DIRECTIONS)
async def test_press_release_before_tick_sends_nothing(connected, recorder, direction):
    connected.press(direction)
    connected.release(direction)
    await _tick(connected)
    assert recorder.commands == []


@pytest.mark.unit
async def test_tick_sends_exactly_the_held_set(connected, recorder):
    connected.press("left")
    connected.press("forward")
    connected.press("right")
    connected.release("forward")
    connected.press("backward")
    connected.release("backward")
    await _tick(connected)
    assert sorted(recorder.commands) == ["left", "right"]


@pytest.mark.unit
async def test_double_press_is_one_command_per_tick(connected, recorder):
    connected.press("forward")
    connected.press("forward")
    await _tick(connected)
    assert recorder.commands == ["forward"]
    connected.release("forward")
    connected.release("forward")
    await _tick(connected)
    assert recorder.commands == ["forward"]


@pytest.mark.unit
async def test_held_direction_repeats_every_tick(connected, recorder):
    connected.press("forward")
    for _ in range(3):
        await _tick(connected)
    assert recorder.commands == ["forward"] * 3
    assert connected.loop.ticks == 3


@pytest.mark.unit
async def test_stop_all_sends_one_stop_and_keeps_flags(connected, recorder):
    connected.press("forward")
    connected.press("left")
    ack = await connected.stop_all()
    assert ack.command == "stop"
    assert recorder.commands == ["stop"]
    assert connected.active_directions() == ("forward", "left")


@pytest.mark.unit
async def test_controls_fail_fast_when_disconnected(controller, recorder):
    with pytest.raises(NotConnectedError):
        controller.press("forward")
    with pytest.raises(NotConnectedError):
        controller.release("forward")
    with pytest.raises(NotConnectedError):
        await controller.stop_all()
    assert controller.active_directions() == ()
    assert recorder.request_count == 0


@pytest.mark.unit
async def test_unknown_direction_is_rejected(connected):
    with pytest.raises(ValueError):
        connected.press("up")


@pytest.mark.unit
async def test_scenario_c_left_and_right_each_tick(connected, recorder):
    connected.press("left")
    connected.press("right")
    for n in range(1, 4):
        await _tick(connected)
        assert sorted(recorder.commands[-2:]) == ["left", "right"]
        assert len(recorder.commands) == 2 * n


@pytest.mark.unit
async def test_scenario_d_fault_is_reported_once_and_loop_continues(
    connected, recorder, events_seen
):
    connected.press("forward")
    recorder.faults.append("forward")
    await _tick(connected)  # tick N fails
    await _tick(connected)  # tick N+1
    assert recorder.commands == ["forward", "forward"]
    failures = [e for e in events_seen if isinstance(e, CommandFailed)]
    assert failures == [CommandFailed(command="forward", reason="timed out after 2.0s")]
    assert connected.is_connected
    assert connected.loop.active
    assert connected.sender.failed == 1
    assert connected.sender.sent == 1


@pytest.mark.unit
async def test_repeated_faults_do_not_disconnect_by_default(connected, recorder, events_seen):
    connected.press("right")
    for _ in range(10):
        recorder.faults.append("right")
        await _tick(connected)
    assert connected.is_connected
    assert not any(isinstance(e, Disconnected) for e in events_seen)


@pytest.mark.unit
async def test_tick_does_not_wait_for_slow_sends(connected, recorder):
    recorder.delay_s = 0.5
    connected.press("forward")
    connected.press("left")
    tasks = connected.loop.tick()
    assert len(tasks) == 2
    assert connected.sender.in_flight == 2
    assert not any(t.done() for t in tasks)
    # Going idle leaves in-flight requests alone
    connected.disconnect()
    await asyncio.sleep(0)
    assert not any(t.cancelled() for t in tasks)
    await connected.sender.wait_idle(timeout=2.0)
    assert all(t.done() and not t.cancelled() for t in tasks)
    assert sorted(recorder.commands) == ["forward", "left"]


@pytest.mark.unit
async def test_slow_direction_is_not_queued_again(connected, recorder):
    recorder.delay_s = 0.3
    connected.press("forward")
    first = connected.loop.tick()
    assert len(first) == 1
    for _ in range(5):
        assert connected.loop.tick() == []
    assert connected.sender.in_flight == 1
    assert connected.sender.skipped == 5

    await connected.sender.wait_idle(timeout=2.0)
    recorder.delay_s = 0.0
    await _tick(connected)
    assert recorder.commands == ["forward", "forward"]


@pytest.mark.unit
async def test_loop_start_stop_are_idempotent(connected):
    loop = connected.loop
    assert loop.active
    task = loop._task
    loop.start()
    assert loop._task is task
    loop.stop()
    loop.stop()
    assert task is not None
    await asyncio.wait([task], timeout=1.0)
    assert not loop.active
    assert task.cancelled()


@pytest.mark.unit
async def test_disconnect_goes_idle_and_clears_held_input(connected, recorder, events_seen):
    connected.press("forward")
    connected.disconnect()
    connected.disconnect()
    await connected.events.flush()
    assert not connected.loop.active
    assert not connected.is_connected
    assert connected.active_directions() == ()
    assert connected.loop.tick() == []
    assert [e for e in events_seen if isinstance(e, Disconnected)] == [
        Disconnected(address="10.0.0.5", reason="user")
    ]


@pytest.mark.unit
async def test_auto_disconnect_after_consecutive_faults(recorder: RecorderClient, events_seen):
    ctrl = CarController(
        config=ControllerConfig(
            tick_interval_s=60.0, request_timeout_s=1.0, max_consecutive_failures=2
        ),
        client=recorder,  # type: ignore[arg-type]
    )
    ctrl.events.subscribe(events_seen.append)
    try:
        await ctrl.connect("10.0.0.5")
        ctrl.press("forward")
        recorder.faults.append("forward")
        await _tick(ctrl)
        assert ctrl.is_connected
        # A success in between resets the count
        await _tick(ctrl)
        recorder.faults.append("forward")
        await _tick(ctrl)
        assert ctrl.is_connected
        recorder.faults.append("forward")
        await _tick(ctrl)
        assert not ctrl.is_connected
        assert not ctrl.loop.active
        assert Disconnected(address="10.0.0.5", reason="transport") in events_seen
    finally:
        await ctrl.shutdown(timeout=1.0)


@pytest.mark.unit
async def test_scenario_a_timer_driven(recorder: RecorderClient):
    """Connect -> Active; a held forward is sent within one period; release silences the next tick."""
    interval = 0.1
    ctrl = CarController(
        config=ControllerConfig(tick_interval_s=interval, request_timeout_s=1.0),
        client=recorder,  # type: ignore[arg-type]
    )
    try:
        assert not ctrl.loop.active
        await ctrl.connect("10.0.0.5")
        assert ctrl.loop.active

        ctrl.press("forward")
        await asyncio.sleep(interval * 1.5)
        await ctrl.sender.wait_idle(timeout=1.0)
        assert recorder.commands == ["forward"]

        ctrl.release("forward")
        await asyncio.sleep(interval * 1.5)
        await ctrl.sender.wait_idle(timeout=1.0)
        assert recorder.commands == ["forward"]
        assert ctrl.loop.ticks >= 2
    finally:
        await ctrl.shutdown(timeout=1.0)


@pytest.mark.unit
async def test_late_failure_from_previous_session_is_ignored(
    recorder: RecorderClient, events_seen
):
    ctrl = CarController(
        config=ControllerConfig(
            tick_interval_s=60.0, request_timeout_s=1.0, max_consecutive_failures=2
        ),
        client=recorder,  # type: ignore[arg-type]
    )
    ctrl.events.subscribe(events_seen.append)
    try:
        await ctrl.connect("10.0.0.5")
        ctrl.press("forward")
        recorder.delay_s = 0.2
        recorder.faults.append("forward")
        old = ctrl.loop.tick()
        assert len(old) == 1

        await ctrl.connect("10.0.0.6")
        recorder.delay_s = 0.0
        await ctrl.sender.wait_idle(timeout=2.0)
        await ctrl.events.flush()
        assert old[0].done()
        assert ctrl.sender.failed == 1
        assert ctrl.sender.consecutive_failures == 0
        assert not any(isinstance(e, CommandFailed) for e in events_seen)

        ctrl.press("forward")
        recorder.faults.append("forward")
        await _tick(ctrl)
        assert ctrl.is_connected
        assert ctrl.sender.consecutive_failures == 1
        failures = [e for e in events_seen if isinstance(e, CommandFailed)]
        assert len(failures) == 1
        assert Disconnected(address="10.0.0.6", reason="transport") not in events_seen
        assert [a for _, a, _ in recorder.moves] == ["10.0.0.5", "10.0.0.6"]
    finally:
        await ctrl.shutdown(timeout=1.0)


@pytest.mark.unit
async def test_shutdown_waits_then_closes_transport(connected, recorder, caplog):
    recorder.delay_s = 0.5
    connected.press("forward")
    connected.loop.tick()
    with caplog.at_level(logging.WARNING, logger="iotcar.controller"):
        await connected.shutdown(timeout=0.05)
    assert "still in flight at shutdown" in caplog.text
    assert recorder.closed
