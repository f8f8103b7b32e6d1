"""Controller contract for tasks that keep running after launch.

A controller is a small value object: it remembers where a task keeps its
control files and how much of the log has already been delivered. It never
holds a process handle or an open file, so it can be pickled or written to a
state document and rebuilt by a different process later.

Two operations grew a ``launcher`` parameter over time. Subclasses written
against the older protocol only define ``legacy_exit_status(workspace)`` and
``legacy_stop(workspace)``; the base class detects that and forwards to them,
while callers still on the legacy entry points get a launcher synthesized for
them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any, BinaryIO, TypeVar

from durable_task.compat import is_overridden
from durable_task.errors import ControllerContractError, ControllerIOError
from durable_task.launcher import Launcher, create_launcher

logger = logging.getLogger(__name__)

ControllerT = TypeVar("ControllerT", bound="type[Controller]")

_CONTROLLER_KINDS: dict[str, type[Controller]] = {}


class Controller(ABC):
    """Handle on a launched task, safe to persist between polls."""

    kind: str = ""

    @abstractmethod
    def write_log(self, workspace: Path, sink: BinaryIO) -> bool:
        """Copy any new log output to ``sink``.

        Returns True if something was written, meaning the controller state
        changed and should be saved again.
        """

    def exit_status(self, workspace: Path, launcher: Launcher) -> int | None:
        """Return the exit code, or None while the task appears to be running."""

        if is_overridden(Controller, type(self), "legacy_exit_status"):
            return self.legacy_exit_status(workspace)
        raise ControllerContractError(
            f"{type(self).__qualname__} must implement exit_status(workspace, launcher)",
        )

    def legacy_exit_status(self, workspace: Path) -> int | None:
        """Deprecated single-argument form of :meth:`exit_status`."""

        return self.exit_status(workspace, create_launcher(workspace))

    def get_output(self, workspace: Path, launcher: Launcher) -> bytes:
        """Return the captured raw output of the finished task.

        Only meaningful after :meth:`exit_status` returned a code and only if
        output capture was requested before launch.
        """

        raise ControllerIOError(f"Did not implement get_output in {type(self).__qualname__}")

    def stop(self, workspace: Path, launcher: Launcher) -> None:
        """Try to stop the task if it is still running."""

        if is_overridden(Controller, type(self), "legacy_stop"):
            self.legacy_stop(workspace)
            return
        raise ControllerContractError(
            f"{type(self).__qualname__} must implement stop(workspace, launcher)",
        )

    def legacy_stop(self, workspace: Path) -> None:
        """Deprecated single-argument form of :meth:`stop`."""

        self.stop(workspace, create_launcher(workspace))

    @abstractmethod
    def cleanup(self, workspace: Path) -> None:
        """Delete any temporary files created for the task."""

    def get_diagnostics(self, workspace: Path, launcher: Launcher) -> str:
        """Describe the task state for troubleshooting."""

        return str(self)

    def to_state(self) -> dict[str, Any]:
        """Serialize into a JSON-compatible state document."""

        raise TypeError(f"{type(self).__qualname__} does not support state documents")

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> Controller:
        raise TypeError(f"{cls.__qualname__} does not support state documents")


def register_controller_kind(kind: str) -> Callable[[ControllerT], ControllerT]:
    """Class decorator making a controller loadable by ``controller_from_state``."""

    def decorator(cls: ControllerT) -> ControllerT:
        existing = _CONTROLLER_KINDS.get(kind)
        if existing is not None and existing is not cls:
            raise ValueError(f"Controller kind {kind!r} already registered by {existing!r}")
        cls.kind = kind
        _CONTROLLER_KINDS[kind] = cls
        return cls

    return decorator


def controller_from_state(state: dict[str, Any]) -> Controller:
    """Rebuild a controller from a state document produced by ``to_state``."""

    kind = state.get("kind")
    if not isinstance(kind, str) or not kind:
        raise ValueError("controller state must have a non-empty string 'kind'")
    cls = _CONTROLLER_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"Unknown controller kind: {kind!r}")
    logger.debug("Restoring %s controller", kind)
    return cls.from_state(state)
