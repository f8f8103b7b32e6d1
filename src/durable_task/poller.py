"""Caller-side polling loop over a controller."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from durable_task.controller import Controller
from durable_task.launcher import Launcher

logger = logging.getLogger(__name__)


def wait_for_exit(  # noqa: PLR0913
    controller: Controller,
    workspace: Path,
    launcher: Launcher,
    sink: BinaryIO,
    *,
    poll_interval_seconds: float,
    timeout_seconds: float | None = None,
    on_progress: Callable[[Controller], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int | None:
    """Stream log output until the task finishes.

    Returns the exit code, or None if ``timeout_seconds`` elapsed first.
    ``on_progress`` is called whenever new log output advanced the controller,
    so callers can persist it. Errors from the controller propagate.
    """

    deadline = clock() + timeout_seconds if timeout_seconds else None
    while True:
        if controller.write_log(workspace, sink) and on_progress is not None:
            on_progress(controller)
        status = controller.exit_status(workspace, launcher)
        if status is not None:
            # The result is written after the log is closed; drain what is left.
            if controller.write_log(workspace, sink) and on_progress is not None:
                on_progress(controller)
            logger.debug("Task finished with exit code %d", status)
            return status
        if deadline is not None and clock() >= deadline:
            logger.info("Gave up waiting after %.1fs", timeout_seconds)
            return None
        sleep(poll_interval_seconds)
