"""Exception types raised by controllers and tasks."""

from __future__ import annotations

from pathlib import Path


class ControllerIOError(OSError):
    """I/O-class failure while reading or writing control files.

    Callers may retry on the next poll; the controller never retries itself.
    """

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class ControllerContractError(NotImplementedError):
    """A controller implements neither the current nor the legacy operation."""


class UnsupportedCaptureError(NotImplementedError):
    """The task flavor cannot capture raw command output."""
