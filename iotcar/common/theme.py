from __future__ import annotations

import logging
from typing import Literal, cast, get_args

from nicegui import app, ui

ThemeMode = Literal["light", "dark", "system"]


def get_palette(mode: ThemeMode) -> dict[str, str]:
    if mode == "dark":
        return {
            "primary": "#2563EB",
            "secondary": "#1E40AF",
            "accent": "#60A5FA",
            "positive": "#21BA45",
            "negative": "#EF4444",
            "info": "#31CCEC",
            "warning": "#F2C037",
        }
    return {
        "primary": "#3B82F6",
        "secondary": "#2563EB",
        "accent": "#93C5FD",
        "positive": "#21BA45",
        "negative": "#DC2626",
        "info": "#31CCEC",
        "warning": "#F2C037",
    }


def apply_theme(mode: ThemeMode) -> None:
    choice = mode
    if mode == "system":
        choice = "dark" if ui.dark_mode().client.page.dark else "light"
        logging.debug("System theme: %s", choice)
    ui.colors(**get_palette(choice))
    if choice == "dark":
        ui.dark_mode().enable()
    else:
        ui.dark_mode().disable()


def set_theme(mode: ThemeMode) -> ThemeMode:
    app.storage.general["theme_mode"] = mode
    apply_theme(mode)
    return mode


def get_theme() -> ThemeMode:
    mode = app.storage.general.get("theme_mode", "system")
    if isinstance(mode, str) and mode in get_args(ThemeMode):
        return cast("ThemeMode", mode)
    return "system"


def inject_layout_css() -> None:
    ui.add_css(
        """
.dpad-btn { width: 72px; height: 72px; border-radius: 9999px; user-select: none; touch-action: none; }
.dpad-btn.is-pressed { filter: brightness(0.75); box-shadow: inset 0 0 0 3px var(--q-accent); }
.dpad-grid { display: grid; grid-template-columns: repeat(3, 72px); gap: 16px; }
.gamepad { position: fixed; inset: 0; display: flex; z-index: 10; background: #111827; }
.gamepad-half { width: 50%; display: flex; align-items: center; justify-content: center; }
.gamepad-stop { width: 128px; height: 128px; border-radius: 9999px; }
"""
    )
