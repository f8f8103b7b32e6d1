"""CLI entrypoint for durable-task."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from durable_task import __version__
from durable_task.config import Settings, configure_logging
from durable_task.controllers import (
    TaskCliController,
    TaskLaunchCommand,
    TaskStateCommand,
    TaskWaitCommand,
)
from durable_task.errors import ControllerContractError, ControllerIOError

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()

_STATE_OPTION = click.option(
    "--state",
    "state_path",
    type=click.Path(path_type=Path, dir_okay=False),
    required=True,
    help="Controller state file written by `launch`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="durable-task")
def durable_task() -> None:
    """Launch long-running commands and control them from later processes."""

    with _cli_errors():
        configure_logging(Settings.from_env().log_level)


@durable_task.command(
    "launch",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@_STATE_OPTION
@click.option(
    "--workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
    show_default=True,
    help="Working directory of the task.",
)
@click.option("--script", default=None, help="Shell script text to run instead of a command.")
@click.option(
    "--capture-output/--no-capture-output",
    default=False,
    show_default=True,
    help="Keep raw stdout for the `output` command; stderr still goes to the log.",
)
@click.option(
    "--env",
    "env",
    multiple=True,
    help="Extra NAME=VALUE environment entry. Can be repeated.",
)
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def launch(  # noqa: PLR0913
    state_path: Path,
    workspace: Path,
    script: str | None,
    capture_output: bool,
    env: tuple[str, ...],
    command: tuple[str, ...],
) -> None:
    """Start a task in the background and save its controller state."""

    with _cli_errors():
        _emit_lines(
            TASK_CONTROLLER.launch(
                TaskLaunchCommand(
                    state_path=state_path,
                    workspace=workspace,
                    command=command,
                    script=script,
                    capture_output=capture_output,
                    env=env,
                ),
            ),
        )


@durable_task.command("log")
@_STATE_OPTION
def log(state_path: Path) -> None:
    """Print log output produced since the previous call."""

    with _cli_errors():
        TASK_CONTROLLER.log(
            TaskStateCommand(state_path=state_path),
            click.get_binary_stream("stdout"),
        )


@durable_task.command("status")
@_STATE_OPTION
def status(state_path: Path) -> None:
    """Show whether the task finished and with which exit code."""

    with _cli_errors():
        _emit_lines(TASK_CONTROLLER.status(TaskStateCommand(state_path=state_path)))


@durable_task.command("wait")
@_STATE_OPTION
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Give up after this many seconds. Defaults to DURABLE_TASK_WAIT_TIMEOUT_SECONDS.",
)
@click.option(
    "--poll-interval",
    "poll_interval_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between polls. Defaults to DURABLE_TASK_POLL_INTERVAL_SECONDS.",
)
def wait(
    state_path: Path,
    timeout_seconds: float | None,
    poll_interval_seconds: float | None,
) -> None:
    """Stream the log until the task finishes; exit with the task's exit code."""

    with _cli_errors():
        result = TASK_CONTROLLER.wait(
            TaskWaitCommand(
                state_path=state_path,
                timeout_seconds=timeout_seconds,
                poll_interval_seconds=poll_interval_seconds,
            ),
            click.get_binary_stream("stdout"),
        )
    _emit_lines(result.lines, err=True)
    if result.exit_code is None:
        raise click.ClickException("Task is still running.")
    if result.exit_code != 0:
        raise SystemExit(result.exit_code if 0 < result.exit_code < 256 else 1)


@durable_task.command("output")
@_STATE_OPTION
def output(state_path: Path) -> None:
    """Print the captured output of a finished task."""

    with _cli_errors():
        payload = TASK_CONTROLLER.output(TaskStateCommand(state_path=state_path))
    click.get_binary_stream("stdout").write(payload)


@durable_task.command("stop")
@_STATE_OPTION
def stop(state_path: Path) -> None:
    """Ask a running task to terminate."""

    with _cli_errors():
        _emit_lines(TASK_CONTROLLER.stop(TaskStateCommand(state_path=state_path)))


@durable_task.command("diagnostics")
@_STATE_OPTION
def diagnostics(state_path: Path) -> None:
    """Describe the task state for troubleshooting."""

    with _cli_errors():
        _emit_lines(TASK_CONTROLLER.diagnostics(TaskStateCommand(state_path=state_path)))


@durable_task.command("cleanup")
@_STATE_OPTION
def cleanup(state_path: Path) -> None:
    """Remove the task control directory and its state file."""

    with _cli_errors():
        _emit_lines(TASK_CONTROLLER.cleanup(TaskStateCommand(state_path=state_path)))


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except ControllerContractError as error:
        raise click.ClickException(f"Controller defect: {error}") from error
    except (ControllerIOError, ValueError, TypeError) as error:
        raise click.ClickException(str(error)) from error
    except FileNotFoundError as error:
        raise click.ClickException(f"No such file: {error.filename}") from error


def _emit_lines(lines: list[str], *, err: bool = False) -> None:
    for line in lines:
        click.echo(line, err=err)


if __name__ == "__main__":  # pragma: no cover
    durable_task()
