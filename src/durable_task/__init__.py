"""Durable task control: launch commands now, poll them from any later process."""

from durable_task.controller import Controller, controller_from_state, register_controller_kind
from durable_task.errors import ControllerContractError, ControllerIOError, UnsupportedCaptureError
from durable_task.file_monitoring import FileMonitoringController
from durable_task.launcher import Launcher, ProcStart, create_launcher
from durable_task.tasks import CommandTask, DurableTask, FileMonitoringTask, ShellScript

__version__ = "0.1.0"

__all__ = [
    "CommandTask",
    "Controller",
    "ControllerContractError",
    "ControllerIOError",
    "DurableTask",
    "FileMonitoringController",
    "FileMonitoringTask",
    "Launcher",
    "ProcStart",
    "ShellScript",
    "UnsupportedCaptureError",
    "__version__",
    "controller_from_state",
    "create_launcher",
    "register_controller_kind",
]
