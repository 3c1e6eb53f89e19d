from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

from nicegui import ui

from iotcar.common.logging_config import attach_ui_log
from iotcar.constants import DIRECTIONS, GAMEPAD_ON_CONNECT
from iotcar.errors import IotCarError, NotConnectedError
from iotcar.services.events import (
    CommandFailed,
    ConnectionFailed,
    ConnectionSucceeded,
    Disconnected,
    Event,
)
from iotcar.state import panel_state

if TYPE_CHECKING:
    from nicegui import Client

    from iotcar.controller import CarController

_ICONS = {
    "forward": "arrow_upward",
    "backward": "arrow_downward",
    "left": "arrow_back",
    "right": "arrow_forward",
}


def describe_event(event: Event) -> tuple[str, str]:
    """Toast text and Quasar color for a controller event."""
    if isinstance(event, ConnectionSucceeded):
        return f"Connected to device at {event.address}", "positive"
    if isinstance(event, ConnectionFailed):
        if event.rejected:
            return "Connection failed: the device refused the connection", "negative"
        return f"Could not connect to the device: {event.reason}", "negative"
    if isinstance(event, CommandFailed):
        return f"Failed to send {event.command}: {event.reason}", "negative"
    if isinstance(event, Disconnected):
        color = "warning" if event.reason == "transport" else "info"
        return f"Disconnected from {event.address} ({event.reason})", color
    return str(event), "info"


class DrivePage:
    """Connect form, direction pad and the full-screen gamepad layout."""

    def __init__(self, controller: CarController) -> None:
        self.controller = controller
        self.address_input: ui.input | None = None
        self.response_log: ui.log | None = None
        self._client: Client | None = None
        # Buttons per direction (compact pad and gamepad layout)
        self._pad_buttons: dict[str, list[ui.button]] = {d: [] for d in DIRECTIONS}

    # ---- Event sink ----

    def on_event(self, event: Event) -> None:
        if isinstance(event, (ConnectionSucceeded, Disconnected)):
            self._sync_panel()
        elif isinstance(event, CommandFailed):
            panel_state.commands_failed += 1
        message, color = describe_event(event)
        if self._client is None:
            return
        with self._client:
            ui.notify(message, color=color)

    def _sync_panel(self) -> None:
        panel_state.connected = self.controller.is_connected
        panel_state.address = self.controller.address
        if not panel_state.connected:
            panel_state.gamepad = False
        held = set(self.controller.active_directions())
        for d in DIRECTIONS:
            self._apply_pressed_style(d, d in held)

    # ---- Handlers ----

    def _apply_pressed_style(self, direction: str, pressed: bool) -> None:
        for btn in self._pad_buttons.get(direction, []):
            if pressed:
                btn.classes(add="is-pressed")
            else:
                btn.classes(remove="is-pressed")

    async def connect(self) -> None:
        address = (self.address_input.value if self.address_input else "") or ""
        try:
            await self.controller.connect(address)
        except ValueError as e:
            ui.notify(str(e), color="warning")
        except IotCarError as e:
            # Toast arrives through the event bus
            logging.debug("Connect failed: %s", e)
        self._sync_panel()
        if self.controller.is_connected and GAMEPAD_ON_CONNECT:
            panel_state.gamepad = True

    def disconnect(self) -> None:
        self.controller.disconnect()
        self._sync_panel()

    def set_pressed(self, direction: str, is_pressed: bool) -> None:
        try:
            if is_pressed:
                self.controller.press(direction)
            else:
                self.controller.release(direction)
        except NotConnectedError:
            if is_pressed:
                ui.notify("Please connect to a device first", color="negative")
            return
        self._apply_pressed_style(direction, is_pressed)

    async def send_stop(self) -> None:
        try:
            await self.controller.stop_all()
        except NotConnectedError:
            ui.notify("Please connect to a device first", color="negative")
        except IotCarError as e:
            logging.debug("Stop failed: %s", e)

    # ---- Layout ----

    def _pad_button(self, direction: str) -> ui.button:
        btn = ui.button(icon=_ICONS[direction]).classes("dpad-btn").props("unelevated")
        btn.on("mousedown", partial(self.set_pressed, direction, True))
        btn.on("mouseup", partial(self.set_pressed, direction, False))
        btn.on("mouseleave", partial(self.set_pressed, direction, False))
        btn.on("touchstart", partial(self.set_pressed, direction, True))
        btn.on("touchend", partial(self.set_pressed, direction, False))
        btn.on("touchcancel", partial(self.set_pressed, direction, False))
        self._pad_buttons[direction].append(btn)
        return btn

    def _build_pad(self) -> None:
        with ui.element("div").classes("dpad-grid"):
            ui.element("div")
            self._pad_button("forward")
            ui.element("div")
            self._pad_button("left")
            ui.element("div")
            self._pad_button("right")
            ui.element("div")
            self._pad_button("backward")
            ui.element("div")

    def _build_connect_form(self) -> None:
        with ui.column().classes("w-full gap-4").bind_visibility_from(
            panel_state, "connected", backward=lambda c: not c
        ):
            self.address_input = ui.input(
                label="Enter Device IP Address",
                placeholder="192.168.1.100",
                value=panel_state.address,
            ).classes("w-full")
            self.address_input.on("keydown.enter", self.connect)
            ui.button("Connect", on_click=self.connect).classes("w-full")

    def _build_controls(self) -> None:
        with ui.column().classes("w-full items-center gap-4").bind_visibility_from(
            panel_state, "connected"
        ):
            ui.label().bind_text_from(
                panel_state, "address", backward=lambda a: f"Device: {a}"
            ).classes("text-sm")
            self._build_pad()
            with ui.row().classes("gap-2"):
                ui.button("Stop", icon="stop_circle", on_click=self.send_stop).props(
                    "color=negative"
                )
                ui.button(
                    "Gamepad",
                    icon="sports_esports",
                    on_click=lambda: setattr(panel_state, "gamepad", True),
                ).props("outline")
                ui.button("Disconnect", on_click=self.disconnect).props("flat")
            ui.label().bind_text_from(
                panel_state,
                "commands_failed",
                backward=lambda n: f"Failed commands: {n}" if n else "",
            ).classes("text-xs")

    def _build_gamepad(self) -> None:
        with ui.element("div").classes("gamepad").bind_visibility_from(panel_state, "gamepad"):
            with ui.element("div").classes("gamepad-half"):
                self._build_pad()
            with ui.element("div").classes("gamepad-half"):
                with ui.column().classes("items-center gap-6"):
                    ui.button(icon="stop_circle", on_click=self.send_stop).classes(
                        "gamepad-stop"
                    ).props("color=negative size=xl")
                    ui.button(
                        "Exit", on_click=lambda: setattr(panel_state, "gamepad", False)
                    ).props("flat color=white")

    def build(self) -> None:
        self._client = ui.context.client
        for buttons in self._pad_buttons.values():
            buttons.clear()
        with ui.card().classes("w-full max-w-md mx-auto"):
            with ui.row().classes("w-full items-center justify-center"):
                ui.icon("directions_car", size="48px").classes("text-primary")
                ui.label("IoT Car Controller").classes("text-2xl font-bold")
            self._build_connect_form()
            self._build_controls()
        self._build_gamepad()
        with ui.expansion("Log").classes("w-full max-w-md mx-auto"):
            self.response_log = ui.log(max_lines=300).classes("w-full").style("height: 160px")
        attach_ui_log(self.response_log)
        self._sync_panel()
