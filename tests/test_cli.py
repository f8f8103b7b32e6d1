from __future__ import annotations

import json
import sys
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from durable_task.controllers import TaskCliController, TaskLaunchCommand
from durable_task.main import durable_task

pytestmark = [
    allure.epic("Task Control Protocol"),
    allure.feature("CLI Ops"),
]


@pytest.fixture()
def runner(monkeypatch) -> CliRunner:
    monkeypatch.setenv("DURABLE_TASK_POLL_INTERVAL_SECONDS", "0.05")
    monkeypatch.delenv("DURABLE_TASK_CONTROL_ROOT", raising=False)
    return CliRunner()


def _launch(runner: CliRunner, state: Path, workspace: Path, *args: str):
    return runner.invoke(
        durable_task,
        ["launch", "--state", str(state), "--workspace", str(workspace), *args],
    )


def test_launch_wait_status_cleanup(runner: CliRunner, tmp_path: Path, workspace: Path) -> None:
    state = tmp_path / "state.json"

    launched = _launch(
        runner,
        state,
        workspace,
        "--",
        sys.executable,
        "-c",
        "print('hello from task')",
    )
    assert launched.exit_code == 0, launched.output
    assert "Task launched" in launched.output
    assert json.loads(state.read_text())["controller"]["kind"] == "file_monitoring"

    waited = runner.invoke(durable_task, ["wait", "--state", str(state), "--timeout", "30"])
    assert waited.exit_code == 0, waited.output
    assert "hello from task" in waited.output

    status = runner.invoke(durable_task, ["status", "--state", str(state)])
    assert status.exit_code == 0
    assert "status=finished exit_code=0" in status.output

    log = runner.invoke(durable_task, ["log", "--state", str(state)])
    assert log.exit_code == 0
    assert log.output == ""

    diagnostics = runner.invoke(durable_task, ["diagnostics", "--state", str(state)])
    assert "completed process (code 0)" in diagnostics.output

    control_dir = Path(json.loads(state.read_text())["controller"]["control_dir"])
    cleaned = runner.invoke(durable_task, ["cleanup", "--state", str(state)])
    assert cleaned.exit_code == 0
    assert not control_dir.exists()
    assert not state.exists()


def test_wait_exits_with_task_exit_code(runner: CliRunner, tmp_path: Path, workspace: Path):
    state = tmp_path / "state.json"
    _launch(runner, state, workspace, "--", sys.executable, "-c", "raise SystemExit(3)")

    waited = runner.invoke(durable_task, ["wait", "--state", str(state), "--timeout", "30"])

    assert waited.exit_code == 3
    assert "exit_code=3" in waited.output


def test_output_requires_capture(runner: CliRunner, tmp_path: Path, workspace: Path) -> None:
    state = tmp_path / "state.json"
    _launch(runner, state, workspace, "--", sys.executable, "-c", "print('x')")
    runner.invoke(durable_task, ["wait", "--state", str(state), "--timeout", "30"])

    result = runner.invoke(durable_task, ["output", "--state", str(state)])

    assert result.exit_code == 1
    assert result.stdout_bytes == b""


def test_output_with_capture(runner: CliRunner, tmp_path: Path, workspace: Path) -> None:
    state = tmp_path / "state.json"
    _launch(
        runner,
        state,
        workspace,
        "--capture-output",
        "--",
        sys.executable,
        "-c",
        "import sys; sys.stdout.write('captured')",
    )
    runner.invoke(durable_task, ["wait", "--state", str(state), "--timeout", "30"])

    result = runner.invoke(durable_task, ["output", "--state", str(state)])

    assert result.exit_code == 0
    assert result.stdout_bytes == b"captured"


def test_log_resumes_from_saved_cursor(runner: CliRunner, tmp_path: Path, workspace: Path):
    state = tmp_path / "state.json"
    _launch(runner, state, workspace, "--", sys.executable, "-c", "print('once')")
    runner.invoke(durable_task, ["wait", "--state", str(state), "--timeout", "30"])
    saved = json.loads(state.read_text())
    saved["controller"]["last_location"] = 0
    state.write_text(json.dumps(saved))

    first = runner.invoke(durable_task, ["log", "--state", str(state)])
    second = runner.invoke(durable_task, ["log", "--state", str(state)])

    assert first.stdout_bytes == b"once\n"
    assert second.stdout_bytes == b""


def test_launch_with_script_and_env(runner: CliRunner, tmp_path: Path, workspace: Path) -> None:
    state = tmp_path / "state.json"

    launched = _launch(
        runner,
        state,
        workspace,
        "--env",
        "NAME=world",
        "--script",
        f"{sys.executable} -c \"import os; print('hi', os.environ['NAME'])\"",
    )
    waited = runner.invoke(durable_task, ["wait", "--state", str(state), "--timeout", "30"])

    assert launched.exit_code == 0, launched.output
    assert waited.exit_code == 0
    assert "hi world" in waited.output


@pytest.mark.parametrize(
    ("command", "script", "env", "args", "message"),
    [
        ((), None, (), [], "Nothing to run"),
        (("echo",), "true", (), ["--script", "true", "--", "echo"], "either --script or a command"),
        (("echo",), None, ("BROKEN",), ["--env", "BROKEN", "--", "echo"], "Invalid --env entry"),
    ],
)
def test_launch_rejects_bad_input(  # noqa: PLR0913
    runner: CliRunner,
    tmp_path: Path,
    workspace: Path,
    command: tuple[str, ...],
    script: str | None,
    env: tuple[str, ...],
    args: list[str],
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        TaskCliController().launch(
            TaskLaunchCommand(
                state_path=tmp_path / "state.json",
                workspace=workspace,
                command=command,
                script=script,
                capture_output=False,
                env=env,
            ),
        )

    result = _launch(runner, tmp_path / "state.json", workspace, *args)
    assert result.exit_code == 1
    assert not (tmp_path / "state.json").exists()


def test_missing_state_file_is_reported(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(durable_task, ["status", "--state", str(tmp_path / "nope.json")])

    assert result.exit_code == 1


def test_bad_configuration_is_reported(runner: CliRunner, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DURABLE_TASK_POLL_INTERVAL_SECONDS", "never")

    result = runner.invoke(durable_task, ["status", "--state", str(tmp_path / "s.json")])

    assert result.exit_code == 1
