"""Environment-driven configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

BROWSER_URL = os.environ.get("PAGEDRIVER_BROWSER_URL", "http://localhost:9222")
COMMAND_TIMEOUT = float(os.environ.get("PAGEDRIVER_COMMAND_TIMEOUT", "120"))
NAVIGATION_TIMEOUT = float(os.environ.get("PAGEDRIVER_NAVIGATION_TIMEOUT", "30"))
MIN_SETTLE_TIME = float(os.environ.get("PAGEDRIVER_MIN_SETTLE_TIME", "0.5"))
MAX_MESSAGE_SIZE = int(os.environ.get("PAGEDRIVER_MAX_MESSAGE_SIZE", str(10 * 1024 * 1024)))
LOG_LEVEL = os.environ.get("PAGEDRIVER_LOG_LEVEL", "WARNING")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class DriverConfig:
    """Settings shared by a browser connection and its pages."""

    browser_url: str = BROWSER_URL
    command_timeout: float | None = COMMAND_TIMEOUT
    navigation_timeout: float = NAVIGATION_TIMEOUT
    min_settle_time: float = MIN_SETTLE_TIME
    max_message_size: int = MAX_MESSAGE_SIZE
    log_level: str = LOG_LEVEL

    @classmethod
    def from_env(cls) -> DriverConfig:
        """Read settings from ``PAGEDRIVER_*`` variables at call time."""
        command_timeout: float | None = _env_float(
            "PAGEDRIVER_COMMAND_TIMEOUT", 120.0
        )
        if command_timeout is not None and command_timeout <= 0:
            command_timeout = None  # 0 disables the per-command timeout
        return cls(
            browser_url=os.environ.get("PAGEDRIVER_BROWSER_URL", "http://localhost:9222"),
            command_timeout=command_timeout,
            navigation_timeout=_env_float("PAGEDRIVER_NAVIGATION_TIMEOUT", 30.0),
            min_settle_time=_env_float("PAGEDRIVER_MIN_SETTLE_TIME", 0.5),
            max_message_size=int(
                _env_float("PAGEDRIVER_MAX_MESSAGE_SIZE", 10 * 1024 * 1024)
            ),
            log_level=os.environ.get("PAGEDRIVER_LOG_LEVEL", "WARNING"),
        )
