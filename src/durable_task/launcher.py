"""Execution context: starting wrappers and auxiliary processes on the worker."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProcStart:
    """One asynchronous process start request."""

    args: list[str]
    env: dict[str, str] = field(default_factory=dict)
    cwd: Path | None = None
    read_stdout: bool = False
    read_stderr: bool = False


class Launcher:
    """Starts processes on the machine that owns the workspace.

    Processes started by :meth:`launch` get their own session so they outlive
    the controlling process. :meth:`run` is for short auxiliary commands such
    as process listings.
    """

    def __init__(
        self,
        *,
        log: logging.Logger | None = None,
        os_name: str | None = None,
    ) -> None:
        self.log = log or logger
        self.os_name = os_name or os.name

    @property
    def is_unix(self) -> bool:
        return self.os_name != "nt"

    def launch(self, start: ProcStart) -> subprocess.Popen[bytes]:
        """Start ``start.args`` without waiting for it to finish."""

        env = os.environ.copy()
        env.update(start.env)
        kwargs: dict[str, object] = {}
        if self.is_unix:
            kwargs["start_new_session"] = True
        else:
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        self.log.debug("Launching %s in %s", start.args, start.cwd)
        return subprocess.Popen(  # noqa: S603
            start.args,
            env=env,
            cwd=str(start.cwd) if start.cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE if start.read_stdout else subprocess.DEVNULL,
            stderr=subprocess.PIPE if start.read_stderr else subprocess.DEVNULL,
            **kwargs,
        )

    def run(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        timeout_seconds: float = 30.0,
    ) -> subprocess.CompletedProcess[bytes]:
        """Run a short auxiliary command and capture its combined output."""

        self.log.debug("Running auxiliary command %s", args)
        return subprocess.run(  # noqa: S603
            args,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout_seconds,
            check=False,
        )

    def kill(self, pid: int) -> bool:
        """Ask the process tree rooted at ``pid`` to terminate.

        Returns False when the process is already gone.
        """

        if not self.is_unix:
            completed = self.run(["taskkill", "/PID", str(pid), "/T", "/F"])
            self.log.debug("taskkill %s exited with %s", pid, completed.returncode)
            return completed.returncode == 0
        try:
            os.killpg(pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            # Not a group leader we own; signal the single process instead.
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                return False
            self.log.debug("Sent SIGTERM to process %s", pid)
            return True
        self.log.debug("Sent SIGTERM to process group %s", pid)
        return True

    def is_alive(self, pid: int) -> bool:
        if not self.is_unix:
            completed = self.run(["tasklist", "/FI", f"PID eq {pid}", "/NH"])
            return str(pid) in completed.stdout.decode("utf-8", "replace")
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True


def create_launcher(workspace: Path) -> Launcher:
    """Synthesize an execution context for callers that did not supply one."""

    log = logging.getLogger("durable_task.controller")
    log.debug("Creating default launcher for %s", workspace)
    return Launcher(log=log)
