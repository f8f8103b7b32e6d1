"""Shared test fixtures."""

from __future__ import annotations

import signal
import subprocess
from pathlib import Path

import pytest

from durable_task.contracts import LOG_FILE, PID_FILE, RESULT_FILE
from durable_task.file_monitoring import FileMonitoringController
from durable_task.launcher import Launcher


class RecordingLauncher(Launcher):
    """Launcher that records kill requests instead of signalling processes."""

    def __init__(self, *, alive: bool = True) -> None:
        super().__init__(os_name="posix")
        self.alive = alive
        self.killed: list[int] = []
        self.commands: list[list[str]] = []

    def kill(self, pid: int) -> bool:
        self.killed.append(pid)
        return self.alive

    def is_alive(self, pid: int) -> bool:
        return self.alive

    def run(self, args, *, cwd=None, timeout_seconds=30.0):
        self.commands.append(list(args))
        return subprocess.CompletedProcess(args, 0, stdout=b"  4242 S 00:01 sh -xe script.sh\n")


class ControlDir:
    """Plays the execution wrapper's part by writing protocol files directly."""

    def __init__(self, controller: FileMonitoringController, workspace: Path) -> None:
        self.controller = controller
        self.path = controller.control_path(workspace)

    def append_log(self, data: bytes) -> None:
        with (self.path / LOG_FILE).open("ab") as handle:
            handle.write(data)

    def write_result(self, content: bytes | str) -> None:
        raw = content.encode() if isinstance(content, str) else content
        (self.path / RESULT_FILE).write_bytes(raw)

    def write_pid(self, pid: int) -> None:
        (self.path / PID_FILE).write_text(f"{pid}\n", "utf-8")


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture()
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture()
def dead_launcher() -> RecordingLauncher:
    return RecordingLauncher(alive=False)


@pytest.fixture()
def controller(workspace: Path) -> FileMonitoringController:
    return FileMonitoringController.create(workspace)


@pytest.fixture()
def control_dir(controller: FileMonitoringController, workspace: Path) -> ControlDir:
    return ControlDir(controller, workspace)


@pytest.fixture()
def restore_signals():
    """The in-process wrapper installs handlers; put pytest's back afterwards."""

    names = ("SIGTERM", "SIGINT", "SIGHUP")
    saved = {
        getattr(signal, name): signal.getsignal(getattr(signal, name))
        for name in names
        if hasattr(signal, name)
    }
    yield
    for signum, handler in saved.items():
        signal.signal(signum, handler)
