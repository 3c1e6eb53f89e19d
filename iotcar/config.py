from __future__ import annotations

from dataclasses import dataclass

from iotcar import constants


@dataclass
class ControllerConfig:
    """Runtime configuration for the dispatch engine and the device connection."""

    tick_interval_s: float = 0.2
    request_timeout_s: float = 2.0
    max_consecutive_failures: int = 0  # 0 = keep ticking forever

    def __post_init__(self) -> None:
        if self.tick_interval_s <= 0:
            raise ValueError("tick_interval_s must be > 0")
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be > 0")
        if self.max_consecutive_failures < 0:
            raise ValueError("max_consecutive_failures must be >= 0")

    @classmethod
    def from_env(cls) -> "ControllerConfig":
        return cls(
            tick_interval_s=constants.TICK_INTERVAL_S,
            request_timeout_s=constants.REQUEST_TIMEOUT_S,
            max_consecutive_failures=constants.MAX_CONSECUTIVE_FAILURES,
        )
