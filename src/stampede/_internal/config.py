"""Configuration loading for Stampede."""

from __future__ import annotations

import os
from dataclasses import dataclass

from stampede._internal.errors import ConfigurationError


@dataclass(frozen=True)
class StampedeConfig:
    """Global engine configuration.

    Attributes:
        default_target_url: Target URL used when a run names none.
        request_timeout: Per-request timeout in seconds. Keep it shorter
            than ``grace_period`` so a hung call cannot outlive shutdown.
        grace_period: Seconds virtual users get to finish their current
            iteration after the stop signal before they are abandoned.
        progress_interval: Seconds between live progress callbacks.
    """

    default_target_url: str = ""
    request_timeout: float = 10.0
    grace_period: float = 30.0
    progress_interval: float = 1.0

    def __post_init__(self) -> None:
        if not self.request_timeout > 0:
            msg = f"request_timeout must be positive, got: {self.request_timeout}"
            raise ConfigurationError(msg)
        if not self.grace_period >= 0:
            msg = f"grace_period must be non-negative, got: {self.grace_period}"
            raise ConfigurationError(msg)
        if not self.progress_interval > 0:
            msg = f"progress_interval must be positive, got: {self.progress_interval}"
            raise ConfigurationError(msg)


def _read_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigurationError(msg) from None


def load_config() -> StampedeConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        STAMPEDE_TARGET_URL: Default target URL.
        STAMPEDE_TIMEOUT: Per-request timeout in seconds (default: 10.0).
        STAMPEDE_GRACE_PERIOD: Shutdown grace period in seconds (default: 30.0).
        STAMPEDE_PROGRESS_INTERVAL: Live progress interval in seconds
            (default: 1.0).

    Returns:
        Populated StampedeConfig instance.

    Raises:
        ConfigurationError: If an environment variable has an invalid value.
    """
    timeout = _read_float("STAMPEDE_TIMEOUT", "10.0")
    if timeout <= 0:
        msg = f"STAMPEDE_TIMEOUT must be positive, got: {timeout}"
        raise ConfigurationError(msg)

    grace_period = _read_float("STAMPEDE_GRACE_PERIOD", "30.0")
    if grace_period < 0:
        msg = f"STAMPEDE_GRACE_PERIOD must be non-negative, got: {grace_period}"
        raise ConfigurationError(msg)

    progress_interval = _read_float("STAMPEDE_PROGRESS_INTERVAL", "1.0")
    if progress_interval <= 0:
        msg = f"STAMPEDE_PROGRESS_INTERVAL must be positive, got: {progress_interval}"
        raise ConfigurationError(msg)

    return StampedeConfig(
        default_target_url=os.environ.get("STAMPEDE_TARGET_URL", ""),
        request_timeout=timeout,
        grace_period=grace_period,
        progress_interval=progress_interval,
    )
