"""Launch side: task flavors that start an execution wrapper and return a controller."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path

from durable_task.config import Settings
from durable_task.contracts import (
    LOG_FILE,
    OUTPUT_FILE,
    PID_FILE,
    RESULT_FILE,
    SCRIPT_FILE,
    STOP_FILE,
    TEMPORARY_OUTPUT_FILE,
    WRAPPER_SPEC_FILE,
    WrapperSpec,
    write_wrapper_spec,
)
from durable_task.controller import Controller
from durable_task.errors import ControllerIOError, UnsupportedCaptureError
from durable_task.file_monitoring import FileMonitoringController
from durable_task.launcher import Launcher, ProcStart

logger = logging.getLogger(__name__)


class DurableTask(ABC):
    """A command that can be launched now and controlled from a later process."""

    def capture_output(self) -> None:
        """Request that raw command output be kept for ``Controller.get_output``.

        Must be called before :meth:`launch`.
        """

        raise UnsupportedCaptureError(f"{type(self).__qualname__} cannot capture output")

    @abstractmethod
    def launch(
        self,
        env: Mapping[str, str],
        workspace: Path,
        launcher: Launcher,
    ) -> Controller:
        """Start the task asynchronously and return a controller for it."""


class FileMonitoringTask(DurableTask):
    """Runs a command through the execution wrapper and the control-file protocol."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings()
        self.capturing_output = False

    def capture_output(self) -> None:
        self.capturing_output = True

    @abstractmethod
    def build_command(self, control_dir: Path) -> list[str]:
        """Write any flavor-specific files and return the argv to wrap."""

    def launch(
        self,
        env: Mapping[str, str],
        workspace: Path,
        launcher: Launcher,
    ) -> FileMonitoringController:
        if not workspace.is_dir():
            workspace.mkdir(parents=True, exist_ok=True)
        controller = FileMonitoringController.create(
            workspace,
            settings=self.settings.control,
            capturing_output=self.capturing_output,
        )
        control_dir = controller.control_path(workspace)
        try:
            spec = WrapperSpec(
                command=self.build_command(control_dir),
                log_path=str(control_dir / LOG_FILE),
                result_path=str(control_dir / RESULT_FILE),
                pid_path=str(control_dir / PID_FILE),
                output_path=str(control_dir / OUTPUT_FILE) if self.capturing_output else None,
                temporary_output_path=(
                    str(control_dir / TEMPORARY_OUTPUT_FILE) if self.capturing_output else None
                ),
                stop_path=str(control_dir / STOP_FILE),
            )
            spec_path = control_dir / WRAPPER_SPEC_FILE
            write_wrapper_spec(spec_path, spec)
            process = launcher.launch(
                ProcStart(
                    args=[
                        self.settings.launch.python_executable,
                        "-m",
                        "durable_task.wrapper",
                        "--spec",
                        str(spec_path),
                    ],
                    env=dict(env),
                    cwd=workspace,
                ),
            )
        except OSError as error:
            controller.cleanup(workspace)
            raise ControllerIOError(
                f"Failed to launch task in {workspace}: {error}",
                path=control_dir,
            ) from error

        logger.info(
            "[%s] Launched %s (wrapper pid %d, control dir %s)",
            workspace.name,
            type(self).__name__,
            process.pid,
            control_dir,
        )
        return controller


class CommandTask(FileMonitoringTask):
    """Runs an argv list directly, without a shell."""

    def __init__(self, command: Sequence[str], settings: Settings | None = None) -> None:
        super().__init__(settings)
        if not command:
            raise ValueError("CommandTask requires a non-empty command")
        self.command = list(command)

    def build_command(self, control_dir: Path) -> list[str]:
        return list(self.command)


class ShellScript(FileMonitoringTask):
    """Runs a Bourne shell script with tracing and fail-fast enabled."""

    def __init__(self, script: str, settings: Settings | None = None) -> None:
        super().__init__(settings)
        self.script = script

    def build_command(self, control_dir: Path) -> list[str]:
        script_file = control_dir / SCRIPT_FILE
        script_file.write_text(self.script, "utf-8")
        return [self.settings.launch.shell, "-xe", str(script_file)]
