"""Controller that observes a task purely through its control directory.

The execution wrapper appends output to the log file while the command runs
and writes the result file last, by atomic rename. So "result file exists and
parses" also means every log byte has been flushed. Nothing here caches a
negative answer: each poll reads the files again.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

from durable_task.config import ControlSettings
from durable_task.contracts import LOG_FILE, OUTPUT_FILE, PID_FILE, RESULT_FILE, STOP_FILE
from durable_task.controller import Controller, register_controller_kind
from durable_task.errors import ControllerIOError
from durable_task.launcher import Launcher

logger = logging.getLogger(__name__)

_COPY_CHUNK_BYTES = 64 * 1024
_CREATE_ATTEMPTS = 5


def default_control_root(workspace: Path) -> Path:
    """Per-workspace scratch area kept next to, not inside, the workspace."""

    return workspace.parent / f"{workspace.name}@tmp"


@register_controller_kind("file_monitoring")
@dataclass
class FileMonitoringController(Controller):
    """Tracks one task through the files in its control directory."""

    id: str
    control_dir: str
    last_location: int = 0
    capturing_output: bool | None = False

    @classmethod
    def create(
        cls,
        workspace: Path,
        *,
        settings: ControlSettings | None = None,
        capturing_output: bool = False,
    ) -> FileMonitoringController:
        """Allocate a fresh, uniquely named control directory for one task."""

        settings = settings or ControlSettings()
        root = settings.root if settings.root is not None else default_control_root(workspace)
        root.mkdir(parents=True, exist_ok=True)
        for _ in range(_CREATE_ATTEMPTS):
            task_id = uuid.uuid4().hex
            control_dir = root / f"{settings.dir_prefix}{task_id[:8]}"
            try:
                control_dir.mkdir()
            except FileExistsError:
                logger.debug("Control directory %s already taken, retrying", control_dir)
                continue
            return cls(
                id=task_id,
                control_dir=str(control_dir.resolve()),
                capturing_output=capturing_output,
            )
        raise ControllerIOError(f"Could not allocate a control directory under {root}", path=root)

    def control_path(self, workspace: Path) -> Path:
        path = Path(self.control_dir)
        return path if path.is_absolute() else workspace / path

    def log_file(self, workspace: Path) -> Path:
        return self.control_path(workspace) / LOG_FILE

    def result_file(self, workspace: Path) -> Path:
        return self.control_path(workspace) / RESULT_FILE

    def output_file(self, workspace: Path) -> Path:
        return self.control_path(workspace) / OUTPUT_FILE

    def pid_file(self, workspace: Path) -> Path:
        return self.control_path(workspace) / PID_FILE

    def write_log(self, workspace: Path, sink: BinaryIO) -> bool:
        log_file = self._existing_control_dir(workspace) / LOG_FILE
        try:
            handle = log_file.open("rb")
        except FileNotFoundError:
            return False
        except OSError as error:
            raise ControllerIOError(
                f"Cannot open log {log_file}: {error}",
                path=log_file,
            ) from error

        with handle:
            try:
                size = os.fstat(handle.fileno()).st_size
                if size < self.last_location:
                    raise ControllerIOError(
                        f"Log {log_file} shrank to {size} bytes, "
                        f"{self.last_location} were already delivered",
                        path=log_file,
                    )
                if size == self.last_location:
                    return False
                handle.seek(self.last_location)
                remaining = size - self.last_location
                while remaining > 0:
                    chunk = handle.read(min(_COPY_CHUNK_BYTES, remaining))
                    if not chunk:
                        break
                    sink.write(chunk)
                    self.last_location += len(chunk)
                    remaining -= len(chunk)
            except ControllerIOError:
                raise
            except OSError as error:
                raise ControllerIOError(
                    f"Cannot read log {log_file}: {error}",
                    path=log_file,
                ) from error
        logger.debug("Delivered log of %s up to byte %d", self.control_dir, self.last_location)
        return True

    def exit_status(self, workspace: Path, launcher: Launcher) -> int | None:
        result_file = self._existing_control_dir(workspace) / RESULT_FILE
        try:
            raw = result_file.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as error:
            raise ControllerIOError(
                f"Cannot read result {result_file}: {error}",
                path=result_file,
            ) from error
        return _parse_exit_code(raw, result_file)

    def get_output(self, workspace: Path, launcher: Launcher) -> bytes:
        if self.capturing_output is False:
            raise ControllerIOError(
                f"Output capture was not requested before launching the task in {self.control_dir}",
            )
        output_file = self._existing_control_dir(workspace) / OUTPUT_FILE
        try:
            return output_file.read_bytes()
        except FileNotFoundError as error:
            raise ControllerIOError(
                f"No captured output at {output_file}; the task has not finished "
                "or did not capture output",
                path=output_file,
            ) from error
        except OSError as error:
            raise ControllerIOError(
                f"Cannot read output {output_file}: {error}",
                path=output_file,
            ) from error

    def stop(self, workspace: Path, launcher: Launcher) -> None:
        control_dir = self.control_path(workspace)
        if not control_dir.is_dir():
            logger.debug("Not stopping %s: control directory is gone", self.control_dir)
            return
        if (control_dir / RESULT_FILE).exists():
            logger.debug("Not stopping %s: task already finished", self.control_dir)
            return
        # The wrapper checks this marker after recording its pid, so a stop that
        # races the wrapper start is never lost.
        try:
            (control_dir / STOP_FILE).touch()
        except OSError as error:
            raise ControllerIOError(
                f"Cannot request stop in {control_dir}: {error}",
                path=control_dir,
            ) from error
        pid = _read_pid(control_dir / PID_FILE)
        if pid is None:
            logger.info("Stop requested for %s before the wrapper recorded its pid", control_dir)
            return
        if launcher.kill(pid):
            logger.info("Sent termination to wrapper %d of %s", pid, control_dir)
        else:
            logger.debug("Wrapper %d of %s already exited", pid, control_dir)

    def cleanup(self, workspace: Path) -> None:
        control_dir = self.control_path(workspace)
        try:
            shutil.rmtree(control_dir)
        except FileNotFoundError:
            if control_dir.exists():
                shutil.rmtree(control_dir, ignore_errors=True)
        except OSError as error:
            raise ControllerIOError(
                f"Cannot remove control directory {control_dir}: {error}",
                path=control_dir,
            ) from error
        logger.debug("Cleaned up %s", control_dir)

    def get_diagnostics(self, workspace: Path, launcher: Launcher) -> str:
        control_dir = self.control_path(workspace)
        if not control_dir.is_dir():
            return f"control directory {control_dir} no longer exists (task cleaned up)"

        try:
            status = self.exit_status(workspace, launcher)
        except ControllerIOError as error:
            return f"unreadable result in {control_dir}: {error}"
        if status is not None:
            return f"completed process (code {status}) in {control_dir}"

        lines = [f"awaiting process completion in {control_dir}"]
        log_file = control_dir / LOG_FILE
        try:
            stat = log_file.stat()
        except FileNotFoundError:
            lines.append("no log output yet")
        else:
            age = max(0.0, time.time() - stat.st_mtime)
            lines.append(
                f"log has {stat.st_size} bytes ({self.last_location} delivered), "
                f"last modified {age:.0f}s ago",
            )
        if (control_dir / STOP_FILE).exists():
            lines.append("stop was requested")

        pid = _read_pid(control_dir / PID_FILE)
        if pid is None:
            lines.append("wrapper has not recorded a pid")
            return "; ".join(lines)
        if not launcher.is_alive(pid):
            lines.append(f"wrapper process {pid} is no longer running but recorded no result")
            return "; ".join(lines)
        lines.append(f"wrapper process {pid} is running")
        if launcher.is_unix:
            lines.append(_process_listing(launcher, pid))
        return "; ".join(lines)

    def to_state(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "control_dir": self.control_dir,
            "last_location": self.last_location,
            "capturing_output": self.capturing_output,
        }

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> FileMonitoringController:
        task_id = state.get("id")
        control_dir = state.get("control_dir")
        last_location = state.get("last_location", 0)
        # Documents written before capture was tracked carry no flag at all.
        capturing_output = state.get("capturing_output")
        if not isinstance(task_id, str) or not task_id:
            raise ValueError("controller.id must be a non-empty string")
        if not isinstance(control_dir, str) or not control_dir:
            raise ValueError("controller.control_dir must be a non-empty string")
        if (
            not isinstance(last_location, int)
            or isinstance(last_location, bool)
            or last_location < 0
        ):
            raise ValueError("controller.last_location must be a non-negative integer")
        if capturing_output is not None and not isinstance(capturing_output, bool):
            raise ValueError("controller.capturing_output must be a boolean when provided")
        return cls(
            id=task_id,
            control_dir=control_dir,
            last_location=last_location,
            capturing_output=capturing_output,
        )

    def _existing_control_dir(self, workspace: Path) -> Path:
        control_dir = self.control_path(workspace)
        if not control_dir.is_dir():
            raise ControllerIOError(
                f"Control directory {control_dir} does not exist; was the task cleaned up?",
                path=control_dir,
            )
        return control_dir


def _parse_exit_code(raw: bytes, result_file: Path) -> int | None:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as error:
        raise ControllerIOError(
            f"Result file {result_file} holds non-text content",
            path=result_file,
        ) from error
    text = text.lstrip("\ufeff").strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        logger.debug("Result file %s not fully written yet: %r", result_file, text[:32])
        return None


def _read_pid(pid_file: Path) -> int | None:
    try:
        text = pid_file.read_text("utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as error:
        raise ControllerIOError(f"Cannot read pid {pid_file}: {error}", path=pid_file) from error
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def _process_listing(launcher: Launcher, pid: int) -> str:
    try:
        completed = launcher.run(["ps", "-o", "pid=,stat=,etime=,args=", "-p", str(pid)])
    except (OSError, subprocess.TimeoutExpired) as error:
        return f"process listing unavailable: {error}"
    listing = " | ".join(
        line.strip()
        for line in completed.stdout.decode("utf-8", "replace").splitlines()
        if line.strip()
    )
    return f"processes: {listing}" if listing else "processes: none listed"
