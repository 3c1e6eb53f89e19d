from __future__ import annotations

import logging
import os
from typing import Literal

Direction = Literal["forward", "backward", "left", "right"]
Command = Literal["forward", "backward", "left", "right", "stop"]

# Enumeration order of the direction pad; also the per-tick dispatch order
DIRECTIONS: tuple[Direction, ...] = ("forward", "backward", "left", "right")

# Device HTTP endpoints
CONNECT_PATH = "/connect"
MOVE_PATH = "/move"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logging.warning("Ignoring invalid %s=%r (using %s)", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logging.warning("Ignoring invalid %s=%r (using %s)", name, raw, default)
        return default


# Device target (prefilled in the connect form)
DEVICE_ADDRESS: str = os.getenv("IOTCAR_DEVICE_ADDRESS", "")
# Held-control dispatch period (seconds)
TICK_INTERVAL_S: float = _env_float("IOTCAR_TICK_INTERVAL_S", 0.2)
# Per-request timeout for handshake and move requests (seconds)
REQUEST_TIMEOUT_S: float = _env_float("IOTCAR_REQUEST_TIMEOUT_S", 2.0)
# 0 disables auto-disconnect after consecutive transport faults
MAX_CONSECUTIVE_FAILURES: int = _env_int("IOTCAR_MAX_CONSECUTIVE_FAILURES", 0)

# Webserver bind (NiceGUI host/port)
SERVER_HOST: str = os.getenv("IOTCAR_SERVER_IP", "0.0.0.0")
SERVER_PORT: int = _env_int("IOTCAR_SERVER_PORT", 8080)
# Open the gamepad layout right after connecting
GAMEPAD_ON_CONNECT: bool = _env_flag("IOTCAR_GAMEPAD_ON_CONNECT", "0")


def _resolve_log_level() -> int:
    s = os.getenv("IOTCAR_LOG_LEVEL")
    if not s:
        return logging.WARNING
    name = s.strip().upper()
    if name == "TRACE":
        return 5
    mapping = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return mapping.get(name, logging.WARNING)


LOG_LEVEL: int = _resolve_log_level()
