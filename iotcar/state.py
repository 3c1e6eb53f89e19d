from __future__ import annotations

import threading
from dataclasses import dataclass

from nicegui import binding

from iotcar.constants import DIRECTIONS, Direction


def check_direction(direction: str) -> Direction:
    if direction not in DIRECTIONS:
        raise ValueError(f"Unknown direction {direction!r} (expected one of {DIRECTIONS})")
    return direction  # type: ignore[return-value]


@dataclass
class DeviceSession:
    address: str = ""
    connected: bool = False

    def open(self, address: str) -> None:
        self.address = address
        self.connected = True

    def close(self) -> None:
        self.connected = False


class ControlState:
    """Held/released flag per direction; last write wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[Direction, bool] = {d: False for d in DIRECTIONS}

    def set(self, direction: Direction, active: bool) -> bool:
        """Set a flag and return whether it changed."""
        with self._lock:
            changed = self._active[direction] != active
            self._active[direction] = active
        return changed

    def is_active(self, direction: Direction) -> bool:
        with self._lock:
            return self._active[direction]

    def snapshot(self) -> tuple[Direction, ...]:
        """Directions active right now, in pad order."""
        with self._lock:
            return tuple(d for d in DIRECTIONS if self._active[d])

    def clear(self) -> None:
        with self._lock:
            for d in DIRECTIONS:
                self._active[d] = False


# Presentation-side mirror of the core state for UI bindings
@binding.bindable_dataclass
class PanelState:
    address: str = ""
    connected: bool = False
    gamepad: bool = False
    commands_failed: int = 0


# Module-level singleton
panel_state = PanelState()
