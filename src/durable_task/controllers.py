"""Controllers for durable-task CLI commands.

Every command reloads the task controller from its state file and saves it
again afterwards, so each CLI invocation behaves like a controlling process
that was restarted between polls.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from durable_task.config import Settings
from durable_task.contracts import (
    ControllerState,
    read_controller_state,
    write_controller_state,
)
from durable_task.launcher import Launcher
from durable_task.poller import wait_for_exit
from durable_task.tasks import CommandTask, FileMonitoringTask, ShellScript


@dataclass(slots=True)
class TaskLaunchCommand:
    """CLI input for launching a task."""

    state_path: Path
    workspace: Path
    command: tuple[str, ...]
    script: str | None
    capture_output: bool
    env: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskStateCommand:
    """CLI input for commands that only need the saved controller."""

    state_path: Path


@dataclass(slots=True)
class TaskWaitCommand:
    """CLI input for blocking until the task finishes."""

    state_path: Path
    timeout_seconds: float | None
    poll_interval_seconds: float | None = None


@dataclass(slots=True)
class TaskWaitResult:
    """Wait outcome to render in CLI."""

    lines: list[str]
    exit_code: int | None


class TaskCliController:
    """Coordinates launch, polling, and teardown CLI operations."""

    def __init__(self, launcher: Launcher | None = None) -> None:
        self.launcher = launcher or Launcher()

    def launch(self, command: TaskLaunchCommand) -> list[str]:
        settings = load_settings()
        task = _build_task(command, settings)
        if command.capture_output:
            task.capture_output()
        workspace = command.workspace.resolve()
        controller = task.launch(_parse_env(command.env), workspace, self.launcher)
        write_controller_state(command.state_path, workspace, controller)
        return [
            f"Task launched: control_dir={controller.control_dir} "
            f"capture_output={'yes' if command.capture_output else 'no'}",
            f"State saved to {command.state_path}",
        ]

    def log(self, command: TaskStateCommand, sink: BinaryIO) -> bool:
        state = read_controller_state(command.state_path)
        written = state.controller.write_log(state.workspace, sink)
        if written:
            _save(command.state_path, state)
        return written

    def status(self, command: TaskStateCommand) -> list[str]:
        state = read_controller_state(command.state_path)
        exit_code = state.controller.exit_status(state.workspace, self.launcher)
        if exit_code is None:
            return ["status=running"]
        return [f"status=finished exit_code={exit_code}"]

    def wait(self, command: TaskWaitCommand, sink: BinaryIO) -> TaskWaitResult:
        settings = load_settings()
        state = read_controller_state(command.state_path)
        timeout_seconds = command.timeout_seconds
        if timeout_seconds is None and settings.polling.wait_timeout_seconds > 0:
            timeout_seconds = settings.polling.wait_timeout_seconds
        exit_code = wait_for_exit(
            state.controller,
            state.workspace,
            self.launcher,
            sink,
            poll_interval_seconds=(
                command.poll_interval_seconds or settings.polling.poll_interval_seconds
            ),
            timeout_seconds=timeout_seconds,
            on_progress=lambda _controller: _save(command.state_path, state),
        )
        if exit_code is None:
            return TaskWaitResult(lines=["status=running (timed out waiting)"], exit_code=None)
        return TaskWaitResult(
            lines=[f"status=finished exit_code={exit_code}"],
            exit_code=exit_code,
        )

    def output(self, command: TaskStateCommand) -> bytes:
        state = read_controller_state(command.state_path)
        return state.controller.get_output(state.workspace, self.launcher)

    def stop(self, command: TaskStateCommand) -> list[str]:
        state = read_controller_state(command.state_path)
        state.controller.stop(state.workspace, self.launcher)
        return ["Stop requested; poll status to confirm termination."]

    def diagnostics(self, command: TaskStateCommand) -> list[str]:
        state = read_controller_state(command.state_path)
        return [state.controller.get_diagnostics(state.workspace, self.launcher)]

    def cleanup(self, command: TaskStateCommand) -> list[str]:
        state = read_controller_state(command.state_path)
        state.controller.cleanup(state.workspace)
        command.state_path.unlink(missing_ok=True)
        return [f"Task cleaned up; removed {command.state_path}"]


def load_settings() -> Settings:
    settings = Settings.from_env()
    settings.validate()
    return settings


def _build_task(command: TaskLaunchCommand, settings: Settings) -> FileMonitoringTask:
    if command.script is not None and command.command:
        raise ValueError("Pass either --script or a command after --, not both.")
    if command.script is not None:
        return ShellScript(command.script, settings=settings)
    if not command.command:
        raise ValueError("Nothing to run: pass --script or a command after --.")
    return CommandTask(command.command, settings=settings)


def _parse_env(pairs: tuple[str, ...]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        name, separator, value = pair.partition("=")
        if not separator or not name.strip():
            raise ValueError(f"Invalid --env entry: {pair!r}. Expected format 'NAME=VALUE'.")
        env[name.strip()] = value
    return env


def _save(state_path: Path, state: ControllerState) -> None:
    write_controller_state(state_path, state.workspace, state.controller)
