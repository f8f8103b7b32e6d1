"""File-based contracts shared by controllers, wrappers, and the CLI."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from durable_task.controller import Controller, controller_from_state

SCRIPT_FILE = "script.sh"
WRAPPER_SPEC_FILE = "launch.json"
LOG_FILE = "task-log.txt"
RESULT_FILE = "task-result.txt"
OUTPUT_FILE = "output.txt"
TEMPORARY_OUTPUT_FILE = "temporary-output.txt"
PID_FILE = "pid"
STOP_FILE = "stop-requested"

WRAPPER_CONTRACT_VERSION = 1
STATE_PROTOCOL_VERSION = 2


@dataclass(slots=True)
class WrapperSpec:
    """Everything the execution wrapper needs, stored as ``launch.json``."""

    command: list[str]
    log_path: str
    result_path: str
    pid_path: str
    output_path: str | None = None
    temporary_output_path: str | None = None
    stop_path: str | None = None
    contract_version: int = WRAPPER_CONTRACT_VERSION

    @property
    def capturing_output(self) -> bool:
        return self.output_path is not None


@dataclass(slots=True)
class ControllerState:
    """Workspace plus controller, as persisted between CLI invocations."""

    workspace: Path
    controller: Controller


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload so readers never observe a partial document."""

    temporary = path.with_name(f".{path.name}.tmp")
    write_json(temporary, payload)
    os.replace(temporary, path)


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def write_wrapper_spec(path: Path, spec: WrapperSpec) -> None:
    write_json_atomic(path, asdict(spec))


def read_wrapper_spec(path: Path) -> WrapperSpec:
    """Load and validate the wrapper launch file."""

    raw = load_json(path)
    required = {"command", "log_path", "result_path", "pid_path"}
    missing = [key for key in sorted(required) if key not in raw]
    if missing:
        raise ValueError(f"Wrapper spec missing required fields: {', '.join(missing)}")

    contract_version = raw.get("contract_version", 1)
    if not isinstance(contract_version, int) or contract_version < 1:
        raise ValueError("launch.contract_version must be an integer >= 1")
    if contract_version > WRAPPER_CONTRACT_VERSION:
        raise ValueError(
            f"launch.contract_version {contract_version} is newer than supported "
            f"{WRAPPER_CONTRACT_VERSION}",
        )

    command = raw["command"]
    if (
        not isinstance(command, list)
        or not command
        or not all(isinstance(part, str) for part in command)
    ):
        raise ValueError("launch.command must be a non-empty array of strings")
    for field_name in ("log_path", "result_path", "pid_path"):
        if not isinstance(raw[field_name], str) or not raw[field_name]:
            raise ValueError(f"launch.{field_name} must be a non-empty string")
    for field_name in ("output_path", "temporary_output_path", "stop_path"):
        value = raw.get(field_name)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"launch.{field_name} must be a string when provided")
    if (raw.get("output_path") is None) != (raw.get("temporary_output_path") is None):
        raise ValueError("launch.output_path and launch.temporary_output_path go together")

    return WrapperSpec(
        command=list(command),
        log_path=raw["log_path"],
        result_path=raw["result_path"],
        pid_path=raw["pid_path"],
        output_path=raw.get("output_path"),
        temporary_output_path=raw.get("temporary_output_path"),
        stop_path=raw.get("stop_path"),
        contract_version=contract_version,
    )


def write_controller_state(path: Path, workspace: Path, controller: Controller) -> None:
    """Persist a controller so another process can resume polling it."""

    write_json_atomic(
        path,
        {
            "protocol_version": STATE_PROTOCOL_VERSION,
            "workspace": str(workspace),
            "controller": controller.to_state(),
        },
    )


def read_controller_state(path: Path) -> ControllerState:
    """Load a controller state document written by any protocol version."""

    raw = load_json(path)
    protocol_version = raw.get("protocol_version", 1)
    if not isinstance(protocol_version, int) or protocol_version < 1:
        raise ValueError("state.protocol_version must be an integer >= 1")
    if protocol_version > STATE_PROTOCOL_VERSION:
        raise ValueError(
            f"state.protocol_version {protocol_version} is newer than supported "
            f"{STATE_PROTOCOL_VERSION}",
        )
    workspace = raw.get("workspace")
    if not isinstance(workspace, str) or not workspace:
        raise ValueError("state.workspace must be a non-empty string")
    controller_raw = raw.get("controller")
    if not isinstance(controller_raw, dict):
        raise TypeError("state.controller must be an object")
    return ControllerState(
        workspace=Path(workspace),
        controller=controller_from_state(controller_raw),
    )
