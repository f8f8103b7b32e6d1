"""Runtime configuration for task launch and polling."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(slots=True)
class ControlSettings:
    """Where per-task control directories are created."""

    root: Path | None = None
    dir_prefix: str = "durable-"


@dataclass(slots=True)
class PollingSettings:
    """Caller-side polling cadence."""

    poll_interval_seconds: float = 1.0
    wait_timeout_seconds: float = 0.0


@dataclass(slots=True)
class LaunchSettings:
    """Executables used to start the execution wrapper and script flavors."""

    shell: str = "sh"
    python_executable: str = field(default_factory=lambda: sys.executable)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    control: ControlSettings = field(default_factory=ControlSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    launch: LaunchSettings = field(default_factory=LaunchSettings)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        control_root = os.getenv("DURABLE_TASK_CONTROL_ROOT", "").strip()
        return cls(
            control=ControlSettings(
                root=Path(control_root) if control_root else None,
                dir_prefix=os.getenv("DURABLE_TASK_CONTROL_DIR_PREFIX", "durable-"),
            ),
            polling=PollingSettings(
                poll_interval_seconds=_env_float("DURABLE_TASK_POLL_INTERVAL_SECONDS", 1.0),
                wait_timeout_seconds=_env_float("DURABLE_TASK_WAIT_TIMEOUT_SECONDS", 0.0),
            ),
            launch=LaunchSettings(
                shell=os.getenv("DURABLE_TASK_SHELL", "sh"),
                python_executable=os.getenv("DURABLE_TASK_PYTHON", sys.executable),
            ),
            log_level=os.getenv("DURABLE_TASK_LOG_LEVEL", "WARNING").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.polling.poll_interval_seconds <= 0:
            raise ValueError("DURABLE_TASK_POLL_INTERVAL_SECONDS must be > 0.")
        if self.polling.wait_timeout_seconds < 0:
            raise ValueError("DURABLE_TASK_WAIT_TIMEOUT_SECONDS must be >= 0.")
        if not self.control.dir_prefix or any(sep in self.control.dir_prefix for sep in "/\\"):
            raise ValueError(
                "DURABLE_TASK_CONTROL_DIR_PREFIX must be a non-empty name without path separators.",
            )
        if not self.launch.shell.strip():
            raise ValueError("DURABLE_TASK_SHELL must not be empty.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid DURABLE_TASK_LOG_LEVEL: {self.log_level!r}. "
                f"Expected one of {', '.join(sorted(_LOG_LEVELS))}.",
            )


def configure_logging(level: str) -> None:
    """Send library logs to stderr at ``level``."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
