from __future__ import annotations

import logging

from nicegui import ui

from iotcar.common.theme import ThemeMode, get_theme, set_theme
from iotcar.config import ControllerConfig


class SettingsPage:
    """Settings tab page."""

    def __init__(self, config: ControllerConfig) -> None:
        self.config = config

    def build(self) -> None:
        with ui.card().classes("w-full max-w-md mx-auto"):
            ui.label("Settings").classes("text-md font-medium")
            with ui.row().classes("items-center gap-2"):
                saved_mode = get_theme()
                mode_toggle = ui.toggle(
                    options=["System", "Light", "Dark"], value=saved_mode.capitalize()
                ).props("dense")

                def _on_mode() -> None:
                    mode: ThemeMode = (mode_toggle.value or "System").lower()  # type: ignore[assignment]
                    set_theme(mode)
                    logging.debug("Set theme to mode: %s", mode)

                mode_toggle.on_value_change(lambda e: _on_mode())
            ui.separator()
            ui.label(f"Command interval: {self.config.tick_interval_s * 1000:.0f} ms").classes("text-sm")
            ui.label(f"Request timeout: {self.config.request_timeout_s:.1f} s").classes("text-sm")
            limit = self.config.max_consecutive_failures
            ui.label(
                f"Auto-disconnect after {limit} failed commands" if limit else "Auto-disconnect: off"
            ).classes("text-sm")
